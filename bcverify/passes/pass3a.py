"""
Pass 3a: per-method control-flow and operand checks.

Builds the method's CFG (every branch, fall-through and handler target
must be an instruction) and checks each instruction in isolation: local
slot indices, operand kind codes, and the symbolic constraints on object
creation and invocation that do not depend on the frame.  Data-flow is
left to pass 3b, which reuses the CFG built here.
"""

import logging
from typing import Any, List, Optional

from ..cfg.control_flow import build_cfg
from ..errors import (
    ClassConstraintViolation,
    IllegalLocalAccess,
    TypeConstraintViolation,
    VerifierFailure,
)
from ..frontend.descriptors import MAX_ARRAY_DIMENSIONS
from ..frontend.unit import (
    CONSTRUCTOR_NAME,
    INVOKE_OPCODES,
    Instruction,
    Method,
    Opcode,
    STATIC_INITIALIZER_NAME,
)
from .base import PassKind, PassOutcome, Stage, StageContext, method_label, passed, rejected


logger = logging.getLogger(__name__)

_LOCAL_KIND_CODES = ('I', 'J', 'F', 'D', 'A')
_ARITHMETIC_KIND_CODES = ('I', 'J', 'F', 'D')
_ARRAY_KIND_CODES = ('I', 'J', 'F', 'D', 'A', 'B', 'C', 'S')
_ARITHMETIC_OPCODES = frozenset({
    Opcode.ADD, Opcode.SUB, Opcode.MUL, Opcode.DIV, Opcode.REM, Opcode.NEG,
    Opcode.SHL, Opcode.SHR, Opcode.USHR, Opcode.AND, Opcode.OR, Opcode.XOR,
})


def _check_local(method: Method, slot: Any) -> None:
    if not isinstance(slot, int) or slot < 0 or slot >= method.max_locals:
        raise IllegalLocalAccess(
            f"local index {slot!r} outside 0..{method.max_locals - 1}"
        )


def check_instruction(context: StageContext, method: Method, instr: Instruction) -> None:
    """Frame-independent constraints of a single instruction."""
    op = instr.opcode
    if op in (Opcode.LOAD, Opcode.STORE):
        code = instr.operand(0)
        if code not in _LOCAL_KIND_CODES:
            raise TypeConstraintViolation(f"invalid local kind code {code!r}")
        _check_local(method, instr.operand(1))
    elif op == Opcode.IINC:
        _check_local(method, instr.operand(0))
        if not isinstance(instr.operand(1), int):
            raise TypeConstraintViolation(f"iinc delta {instr.operand(1)!r} is not an integer")
    elif op in _ARITHMETIC_OPCODES:
        if instr.operand(0) not in _ARITHMETIC_KIND_CODES:
            raise TypeConstraintViolation(f"invalid arithmetic kind code {instr.operand(0)!r}")
    elif op in (Opcode.ARRLOAD, Opcode.ARRSTORE):
        if instr.operand(0) not in _ARRAY_KIND_CODES:
            raise TypeConstraintViolation(f"invalid array kind code {instr.operand(0)!r}")
    elif op == Opcode.NEW:
        entry = context.unit.symbol(instr.operand(0))
        if entry.name.startswith('['):
            raise ClassConstraintViolation(f"new must not name array type {entry.name}")
    elif op == Opcode.MULTIANEWARRAY:
        entry = context.unit.symbol(instr.operand(0))
        dimensions = instr.operand(1)
        if not isinstance(dimensions, int) or not 1 <= dimensions <= MAX_ARRAY_DIMENSIONS:
            raise ClassConstraintViolation(
                f"multianewarray dimension count {dimensions!r} outside 1..{MAX_ARRAY_DIMENSIONS}"
            )
        if not entry.name.startswith('[' * dimensions):
            raise ClassConstraintViolation(
                f"multianewarray type {entry.name} has fewer than {dimensions} dimensions"
            )
    elif op in INVOKE_OPCODES:
        entry = context.unit.symbol(instr.operand(0))
        if entry.name == STATIC_INITIALIZER_NAME:
            raise ClassConstraintViolation(f"{STATIC_INITIALIZER_NAME} must never be invoked")
        if entry.name == CONSTRUCTOR_NAME and op != Opcode.INVOKESPECIAL:
            raise ClassConstraintViolation(
                f"{CONSTRUCTOR_NAME} may only be invoked with invokespecial"
            )


class Pass3aStage(Stage):
    kind = PassKind.PASS3A

    def run(self, context: StageContext, method_index: Optional[int] = None,
            **kwargs: Any) -> PassOutcome:
        method = context.unit.methods[method_index]
        label = method_label(context, method_index)
        if method.is_abstract:
            return passed(f"Abstract or native method '{label}' has no code to verify.")

        warnings: List[str] = []
        try:
            cfg = build_cfg(method)
            for instr in method.code:
                try:
                    check_instruction(context, method, instr)
                except VerifierFailure as e:
                    raise type(e)(e.message, instr.offset) from None
        except VerifierFailure as e:
            logger.debug("pass 3a rejected %s: %s", label, e.failure)
            return rejected(f"Method '{label}': {e.failure}", warnings)

        if context.config.report_unreachable:
            for offset in cfg.unreachable_offsets():
                warnings.append(f"Unreachable code at offset {offset}.")
        return passed(warnings=warnings, cfg=cfg)
