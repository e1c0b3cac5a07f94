"""
Small builders for in-memory units used across the test suite.

Instruction rows are written as (opname, *operands); offsets are
assigned 0, 1, 2, ... unless a row starts with an explicit int offset.
"""

from bcverify.frontend.unit import (
    ClassUnit,
    ExceptionHandlerEntry,
    FieldInfo,
    Instruction,
    Method,
    OBJECT,
    Opcode,
    SymbolEntry,
    TypeInfo,
)
from bcverify.structural.effects import EffectContext
from bcverify.structural.engine import run_dataflow
from bcverify.structural.frame import Frame
from bcverify.cfg.control_flow import build_cfg
from bcverify.z3model.hierarchy import ClassHierarchyOracle


UNIT_NAME = "demo/Sample"


def code(*rows):
    instructions = []
    for index, row in enumerate(rows):
        if isinstance(row[0], int):
            offset, opname, operands = row[0], row[1], row[2:]
        else:
            offset, opname, operands = index, row[0], row[1:]
        instructions.append(Instruction(offset, Opcode[opname.upper()], tuple(operands)))
    return instructions


def method(name="run", descriptor="()I", rows=(), max_stack=4, max_locals=4,
           flags=('static',), handlers=()):
    return Method(
        name=name,
        descriptor=descriptor,
        flags=frozenset(flags),
        max_stack=max_stack,
        max_locals=max_locals,
        code=code(*rows),
        handlers=[ExceptionHandlerEntry(*h) for h in handlers],
    )


def unit(*methods, name=UNIT_NAME, super_name=OBJECT, symbols=(), fields=(), types=()):
    return ClassUnit(
        name=name,
        super_name=super_name,
        symbols=[SymbolEntry(*s) for s in symbols],
        fields=[FieldInfo(*f) for f in fields],
        methods=list(methods),
        types={info.name: info for info in types},
    )


# A little hierarchy shared by several tests:
#   demo/Animal <- demo/Dog, demo/Cat; demo/Pet is an interface Dog implements
ANIMAL_TYPES = (
    TypeInfo("demo/Animal"),
    TypeInfo("demo/Dog", "demo/Animal", ("demo/Pet",)),
    TypeInfo("demo/Cat", "demo/Animal"),
    TypeInfo("demo/Pet", OBJECT, (), True),
)


def animal_oracle():
    return ClassHierarchyOracle({t.name: t for t in ANIMAL_TYPES})


def analyze(u, index=0, config=None, oracle=None):
    """Run the data-flow engine on one method of `u`."""
    m = u.methods[index]
    oracle = oracle or ClassHierarchyOracle.from_unit(u)
    return run_dataflow(build_cfg(m), Frame.entry(m, u), EffectContext(u, m, oracle), config)
