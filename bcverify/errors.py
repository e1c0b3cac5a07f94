"""
Failure taxonomy for the bytecode verifier.

Every violation the verifier can detect is described by a FailureKind.
Rule code raises a VerifierFailure subclass; the rule dispatcher and the
engine catch it at their boundary and turn it into an explicit Failure
value, so no verification outcome ever escapes as an uncaught exception.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class FailureKind(Enum):
    """Kind of safety violation found during verification."""
    STACK_UNDERFLOW = "StackUnderflow"
    STACK_OVERFLOW = "StackOverflow"
    STACK_HEIGHT_CONFLICT = "StackHeightConflict"
    SLOT_TYPE_MISMATCH = "SlotTypeMismatch"
    ILLEGAL_LOCAL_ACCESS = "IllegalLocalAccess"
    TYPE_CONSTRAINT_VIOLATION = "TypeConstraintViolation"
    UNINITIALIZED_USE = "UninitializedUse"
    INVALID_TARGET = "InvalidTarget"
    ORACLE_CONFLICT = "OracleConflict"
    CLASS_CONSTRAINT = "ClassConstraint"
    ITERATION_LIMIT = "IterationLimit"


@dataclass(frozen=True)
class Failure:
    """
    A typed verification failure.

    Attributes:
        kind: Which invariant was violated
        message: Human-readable description of the violated constraint
        offset: Instruction offset where it was detected (None for
            method- or class-level failures)
    """
    kind: FailureKind
    message: str
    offset: Optional[int] = None

    def with_offset(self, offset: int) -> 'Failure':
        if self.offset is not None:
            return self
        return Failure(self.kind, self.message, offset)

    def __str__(self) -> str:
        if self.offset is None:
            return f"{self.kind.value}: {self.message}"
        return f"{self.kind.value} at offset {self.offset}: {self.message}"


class VerifierFailure(Exception):
    """Base class of raised verification failures."""
    kind: FailureKind = FailureKind.TYPE_CONSTRAINT_VIOLATION

    def __init__(self, message: str, offset: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.offset = offset

    @property
    def failure(self) -> Failure:
        return Failure(self.kind, self.message, self.offset)


class StackUnderflow(VerifierFailure):
    kind = FailureKind.STACK_UNDERFLOW


class StackOverflow(VerifierFailure):
    kind = FailureKind.STACK_OVERFLOW


class StackHeightConflict(VerifierFailure):
    kind = FailureKind.STACK_HEIGHT_CONFLICT


class SlotTypeMismatch(VerifierFailure):
    kind = FailureKind.SLOT_TYPE_MISMATCH


class IllegalLocalAccess(VerifierFailure):
    kind = FailureKind.ILLEGAL_LOCAL_ACCESS


class TypeConstraintViolation(VerifierFailure):
    kind = FailureKind.TYPE_CONSTRAINT_VIOLATION


class UninitializedUse(VerifierFailure):
    kind = FailureKind.UNINITIALIZED_USE


class InvalidTarget(VerifierFailure):
    kind = FailureKind.INVALID_TARGET


class OracleConflict(VerifierFailure):
    kind = FailureKind.ORACLE_CONFLICT


class ClassConstraintViolation(VerifierFailure):
    kind = FailureKind.CLASS_CONSTRAINT


class IterationLimitExceeded(VerifierFailure):
    kind = FailureKind.ITERATION_LIMIT


class UnknownTypeError(LookupError):
    """Raised by a type oracle asked about a type name it cannot resolve."""

    def __init__(self, name: str):
        super().__init__(f"unknown type '{name}'")
        self.name = name


class LoadError(Exception):
    """A unit descriptor could not be read or is structurally malformed."""
