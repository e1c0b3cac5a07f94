"""
Abstract machine state tracked at every instruction.

A Frame is working state of a single engine run: the engine keeps one
per CFG node and creates a fresh copy whenever an instruction's effect
is applied, so frames stored at nodes are never mutated in place.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from ..errors import (
    IllegalLocalAccess,
    SlotTypeMismatch,
    StackHeightConflict,
    StackOverflow,
    StackUnderflow,
    TypeConstraintViolation,
)
from ..frontend.unit import ClassUnit, Method, OBJECT
from ..z3model.hierarchy import TypeOracle
from .vtypes import (
    CONFLICT,
    Kind,
    THROWABLE_TYPE,
    TOP,
    UNSET,
    VerificationType,
    from_descriptor,
    merge,
    reference,
    uninitialized_this,
)


@dataclass
class Frame:
    """
    Operand stack plus local-variable slots.

    Attributes:
        max_stack: Maximum operand-stack depth
        stack: Operand stack, bottom first
        locals: One entry per local slot (UNSET when never written)
        this_uninitialized: Inside a constructor, `this` has not yet been
            passed to a super/this constructor on some path
    """
    max_stack: int
    stack: List[VerificationType] = field(default_factory=list)
    locals: List[VerificationType] = field(default_factory=list)
    this_uninitialized: bool = False

    @classmethod
    def empty(cls, max_stack: int, max_locals: int) -> 'Frame':
        return cls(max_stack=max_stack, locals=[UNSET] * max_locals)

    @classmethod
    def entry(cls, method: Method, unit: ClassUnit) -> 'Frame':
        """
        Frame on entry to `method`, derived from its declared parameters.

        Instance methods receive `this` in slot 0; inside a constructor
        of any class but java/lang/Object it starts uninitialized.

        Raises:
            IllegalLocalAccess: max_locals cannot hold the parameters
        """
        frame = cls.empty(method.max_stack, method.max_locals)
        slot = 0
        if not method.is_static:
            if method.is_constructor and unit.name != OBJECT:
                frame.store(slot, uninitialized_this(unit.name))
                frame.this_uninitialized = True
            else:
                frame.store(slot, reference(unit.name))
            slot += 1
        for param in method.parameter_types:
            frame.store(slot, from_descriptor(param))
            slot += 1
        return frame

    @property
    def max_locals(self) -> int:
        return len(self.locals)

    @property
    def depth(self) -> int:
        return len(self.stack)

    def copy(self) -> 'Frame':
        return Frame(self.max_stack, list(self.stack), list(self.locals), self.this_uninitialized)

    # ------------------------------------------------------------------
    # Operand stack
    # ------------------------------------------------------------------

    def push(self, value: VerificationType) -> None:
        if value.kind in (Kind.UNSET, Kind.CONFLICT):
            raise TypeConstraintViolation(f"cannot push {value} value")
        if len(self.stack) >= self.max_stack:
            raise StackOverflow(
                f"pushing {value} exceeds maximum stack depth {self.max_stack}"
            )
        self.stack.append(value)

    def pop(self) -> VerificationType:
        if not self.stack:
            raise StackUnderflow("cannot pop from an empty operand stack")
        return self.stack.pop()

    def peek(self, depth: int = 0) -> VerificationType:
        if depth >= len(self.stack):
            raise StackUnderflow(
                f"operand stack holds {len(self.stack)} values, needed {depth + 1}"
            )
        return self.stack[-1 - depth]

    def clear_stack(self) -> None:
        self.stack.clear()

    # ------------------------------------------------------------------
    # Local slots
    # ------------------------------------------------------------------

    def _check_slot(self, slot: int) -> None:
        if not isinstance(slot, int) or not 0 <= slot < len(self.locals):
            raise IllegalLocalAccess(
                f"local slot {slot} outside declared range 0..{len(self.locals) - 1}"
            )

    def store(self, slot: int, value: VerificationType, wide: Optional[bool] = None) -> None:
        """
        Write `value` to a slot.

        Args:
            wide: Access width the instruction asked for; None skips the check
        """
        self._check_slot(slot)
        if wide is not None and value.is_wide != wide:
            access = "wide" if wide else "narrow"
            raise SlotTypeMismatch(f"{access} store of {value} into local {slot}")
        self.locals[slot] = value

    def load(self, slot: int, wide: bool) -> VerificationType:
        self._check_slot(slot)
        value = self.locals[slot]
        if value.kind == Kind.UNSET:
            raise IllegalLocalAccess(f"local {slot} is read before it is written")
        if value.kind in (Kind.TOP, Kind.CONFLICT):
            raise TypeConstraintViolation(
                f"local {slot} holds an unusable value (incompatible types on merging paths)"
            )
        if value.is_wide != wide:
            access = "wide" if wide else "narrow"
            raise SlotTypeMismatch(f"{access} load of local {slot} holding {value}")
        return value

    # ------------------------------------------------------------------
    # Construction and exception edges
    # ------------------------------------------------------------------

    def initialize(self, marker: VerificationType, initialized: VerificationType) -> None:
        """Replace every occurrence of an uninitialized marker after its constructor ran."""
        self.stack = [initialized if v == marker else v for v in self.stack]
        self.locals = [initialized if v == marker else v for v in self.locals]
        if marker.kind == Kind.UNINITIALIZED_THIS:
            self.this_uninitialized = False

    def handler_frame(self, catch_type: Optional[str]) -> 'Frame':
        """Entry frame of an exception handler reached from this (incoming) frame."""
        frame = self.copy()
        frame.clear_stack()
        caught = reference(catch_type) if catch_type is not None else THROWABLE_TYPE
        frame.push(caught)
        return frame

    # ------------------------------------------------------------------
    # Merge
    # ------------------------------------------------------------------

    def merge(self, other: 'Frame', oracle: TypeOracle) -> 'Frame':
        """
        Element-wise lattice merge of two frames reaching the same node.

        A conflicting entry degrades to TOP; only a later use of that entry
        fails.  Differing stack heights fail immediately.

        Raises:
            StackHeightConflict: operand stacks have different heights
            OracleConflict: a reference type could not be resolved
        """
        if len(self.stack) != len(other.stack):
            raise StackHeightConflict(
                f"stack heights {len(self.stack)} and {len(other.stack)} differ at join point"
            )
        if len(self.locals) != len(other.locals):
            raise StackHeightConflict(
                f"local counts {len(self.locals)} and {len(other.locals)} differ at join point"
            )
        stack = [_degrade(merge(a, b, oracle)) for a, b in zip(self.stack, other.stack)]
        locals_ = [_degrade(merge(a, b, oracle)) for a, b in zip(self.locals, other.locals)]
        return Frame(
            max_stack=self.max_stack,
            stack=stack,
            locals=locals_,
            this_uninitialized=self.this_uninitialized or other.this_uninitialized,
        )

    def __str__(self) -> str:
        stack = ", ".join(str(v) for v in self.stack)
        locals_ = ", ".join(f"{i}={v}" for i, v in enumerate(self.locals) if v.kind != Kind.UNSET)
        return f"stack=[{stack}] locals={{{locals_}}}"


def _degrade(value: VerificationType) -> VerificationType:
    return TOP if value == CONFLICT else value
