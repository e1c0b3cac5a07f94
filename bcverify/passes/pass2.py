"""
Pass 2: static, table-driven declaration checks.

Descriptors must parse, symbol-table entries used by instructions must
exist and have the expected kind, handler catch types must be
throwables, and max_locals must hold the declared parameters.  None of
these checks looks at control flow.
"""

from typing import Any, List, Optional, Set, Tuple

from ..errors import UnknownTypeError
from ..frontend.descriptors import parse_field_descriptor, parse_method_descriptor
from ..frontend.unit import (
    CLASS_SYMBOL_OPCODES,
    CONSTRUCTOR_NAME,
    FIELD_OPCODES,
    INVOKE_OPCODES,
    Opcode,
    STATIC_INITIALIZER_NAME,
    THROWABLE,
)
from .base import PassKind, PassOutcome, Stage, StageContext, passed, rejected


_SYMBOL_KINDS = frozenset({
    'class', 'string', 'int', 'float', 'long', 'double',
    'field', 'method', 'interface_method',
})


def _expected_symbol_kinds(opcode: Opcode) -> Optional[Tuple[str, ...]]:
    if opcode in CLASS_SYMBOL_OPCODES:
        return ('class',)
    if opcode in FIELD_OPCODES:
        return ('field',)
    if opcode == Opcode.INVOKEINTERFACE:
        return ('interface_method',)
    if opcode in INVOKE_OPCODES:
        return ('method', 'interface_method')
    if opcode == Opcode.LDC:
        return ('string', 'class', 'int', 'float', 'long', 'double')
    return None


class Pass2Stage(Stage):
    kind = PassKind.PASS2

    def run(self, context: StageContext, method_index: Optional[int] = None,
            **kwargs: Any) -> PassOutcome:
        unit = context.unit
        oracle = context.oracle
        warnings: List[str] = []

        if unit.super_name is not None:
            if not oracle.knows(unit.super_name):
                return rejected(f"Superclass '{unit.super_name}' of '{unit.name}' is unknown.")
            try:
                if oracle.is_subtype(unit.super_name, unit.name) and unit.super_name != unit.name:
                    return rejected(f"Circular superclass hierarchy at '{unit.name}'.")
            except UnknownTypeError as e:
                return rejected(f"Cannot resolve '{e.name}' in the superclass hierarchy.")
            if oracle.is_interface(unit.super_name):
                return rejected(f"Superclass '{unit.super_name}' is an interface.")
        for interface in unit.interfaces:
            if not oracle.knows(interface):
                warnings.append(f"Interface '{interface}' of '{unit.name}' is unknown.")

        # fields
        field_keys: Set[Tuple[str, str]] = set()
        for f in unit.fields:
            try:
                parse_field_descriptor(f.descriptor)
            except ValueError as e:
                return rejected(f"Field '{f.name}': {e}.", warnings)
            if (f.name, f.descriptor) in field_keys:
                return rejected(f"Duplicate field '{f.name}' {f.descriptor}.", warnings)
            field_keys.add((f.name, f.descriptor))

        # symbol table
        for index, entry in enumerate(unit.symbols):
            problem = self._check_symbol(entry)
            if problem:
                return rejected(f"Symbol {index}: {problem}.", warnings)
            for name in (entry.name if entry.kind == 'class' else None, entry.owner):
                if name and not name.startswith('[') and not oracle.knows(name):
                    warnings.append(f"Symbol {index} refers to unknown type '{name}'.")

        # methods
        for index, method in enumerate(unit.methods):
            where = f"method {index} ('{method}')"
            try:
                params, returns = parse_method_descriptor(method.descriptor)
            except ValueError as e:
                return rejected(f"Invalid descriptor of {where}: {e}.", warnings)
            if method.name == CONSTRUCTOR_NAME and (returns is not None or method.is_static):
                return rejected(f"Constructor {where} must be a non-static void method.", warnings)
            if method.name == STATIC_INITIALIZER_NAME and (
                    not method.is_static or params or returns is not None):
                return rejected(f"Static initializer {where} must be 'static ()V'.", warnings)
            if method.is_abstract:
                continue
            needed = len(params) + (0 if method.is_static else 1)
            if method.max_locals < needed:
                return rejected(
                    f"max_locals {method.max_locals} of {where} cannot hold its "
                    f"{needed} parameter slots.",
                    warnings,
                )
            problem = self._check_code_symbols(context, method)
            if problem:
                return rejected(f"In {where}: {problem}.", warnings)
            problem = self._check_handlers(context, method)
            if problem:
                return rejected(f"In {where}: {problem}.", warnings)

        return passed(warnings=warnings)

    @staticmethod
    def _check_symbol(entry) -> Optional[str]:
        if entry.kind not in _SYMBOL_KINDS:
            return f"unknown symbol kind '{entry.kind}'"
        if entry.kind == 'class':
            if not entry.name:
                return "class entry without a name"
            if entry.name.startswith('['):
                try:
                    parse_field_descriptor(entry.name)
                except ValueError as e:
                    return str(e)
        elif entry.is_member:
            if not (entry.owner and entry.name and entry.descriptor):
                return f"{entry.kind} entry needs owner, name and descriptor"
            try:
                if entry.kind == 'field':
                    parse_field_descriptor(entry.descriptor)
                else:
                    parse_method_descriptor(entry.descriptor)
            except ValueError as e:
                return str(e)
        return None

    @staticmethod
    def _check_code_symbols(context: StageContext, method) -> Optional[str]:
        for instr in method.code:
            kinds = _expected_symbol_kinds(instr.opcode)
            if kinds is None:
                continue
            index = instr.operand(0)
            entry = context.unit.symbol(index) if isinstance(index, int) else None
            if entry is None:
                return f"instruction at offset {instr.offset} refers to invalid symbol {index!r}"
            if entry.kind not in kinds:
                return (f"instruction at offset {instr.offset} needs a "
                        f"{' or '.join(kinds)} symbol, found {entry.kind}")
        return None

    @staticmethod
    def _check_handlers(context: StageContext, method) -> Optional[str]:
        for index, handler in enumerate(method.handlers):
            if handler.catch_type is None:
                continue
            try:
                if not context.oracle.is_subtype(handler.catch_type, THROWABLE):
                    return (f"handler {index} catches '{handler.catch_type}', "
                            f"which is not a subclass of {THROWABLE}")
            except UnknownTypeError:
                return f"handler {index} catches unknown type '{handler.catch_type}'"
        return None
