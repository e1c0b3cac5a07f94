"""
Pass 1: structural well-formedness of a loaded unit.

Loading itself (and its LoadErrors) is done by the orchestrator; this
pass checks what the loader cannot: unique methods, ordered offsets,
code presence matching the method's abstract/native flags, and the
operand shape of branches, switches and two-operand instructions.
"""

from typing import Any, Optional, Set, Tuple

from ..frontend.unit import BRANCH_OPCODES, Instruction, Opcode
from .base import PassKind, PassOutcome, Stage, StageContext, passed, rejected

_TWO_OPERAND_OPCODES = frozenset({
    Opcode.LOAD, Opcode.STORE, Opcode.IINC, Opcode.CONVERT, Opcode.MULTIANEWARRAY,
})


def _is_offset(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def operand_shape_error(instr: Instruction) -> Optional[str]:
    """Describe why the operands of `instr` have the wrong shape, or None."""
    op, operands = instr.opcode, instr.operands
    if op in BRANCH_OPCODES:
        if len(operands) != 1 or not _is_offset(operands[0]):
            return "takes exactly one integer branch target"
    elif op == Opcode.SWITCH:
        if (len(operands) != 2 or not _is_offset(operands[0])
                or not isinstance(operands[1], (tuple, list))
                or not all(_is_offset(t) for t in operands[1])):
            return "takes an integer default target and a list of integer targets"
    elif op in _TWO_OPERAND_OPCODES and len(operands) != 2:
        return "takes exactly two operands"
    return None


class Pass1Stage(Stage):
    kind = PassKind.PASS1

    def run(self, context: StageContext, method_index: Optional[int] = None,
            **kwargs: Any) -> PassOutcome:
        unit = context.unit
        warnings = []
        seen: Set[Tuple[str, str]] = set()

        if not unit.name:
            return rejected("Unit has an empty name.")
        if not unit.methods:
            warnings.append(f"Unit '{unit.name}' declares no methods.")

        for index, method in enumerate(unit.methods):
            where = f"method {index} ('{method}')"
            key = (method.name, method.descriptor)
            if key in seen:
                return rejected(f"Duplicate declaration of {where}.", warnings)
            seen.add(key)

            if method.max_stack < 0 or method.max_locals < 0:
                return rejected(f"Negative max_stack or max_locals in {where}.", warnings)

            if method.is_abstract:
                if method.code:
                    return rejected(f"Abstract or native {where} must not have code.", warnings)
                continue
            if not method.code:
                return rejected(f"Non-abstract {where} has no code.", warnings)

            previous = -1
            for instr in method.code:
                if instr.offset <= previous:
                    return rejected(
                        f"Instruction offsets of {where} are not strictly increasing "
                        f"({previous} then {instr.offset}).",
                        warnings,
                    )
                previous = instr.offset
                problem = operand_shape_error(instr)
                if problem is not None:
                    return rejected(
                        f"Instruction {instr.offset} of {where} ({instr.opcode.name.lower()}) "
                        f"{problem}.",
                        warnings,
                    )

        return passed(warnings=warnings)
