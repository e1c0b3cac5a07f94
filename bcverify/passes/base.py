"""
Common contract of the verification passes.

The passes form a closed, ordered set:

    PASS1   unit structure (per unit)
    PASS2   static declaration checks (per unit)
    PASS3A  control-flow and operand checks (per method)
    PASS3B  data-flow verification (per method)

Each pass is a Stage with a single run() returning a PassOutcome.  The
orchestrator turns outcomes into cached VerificationResults and enforces
that every pass only runs once its prerequisite passed.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, List, Optional

from ..frontend.unit import ClassUnit
from ..z3model.hierarchy import TypeOracle

if TYPE_CHECKING:
    from ..cfg.control_flow import ControlFlowGraph


class VerificationStatus(Enum):
    OK = "VERIFIED_OK"
    FAILED = "VERIFIED_REJECTED"
    CANCELLED = "VERIFICATION_CANCELLED"


class PassKind(Enum):
    """The four passes, in execution order."""
    PASS1 = ("1", False)
    PASS2 = ("2", False)
    PASS3A = ("3a", True)
    PASS3B = ("3b", True)

    def __init__(self, number: str, per_method: bool):
        self.number = number
        self.per_method = per_method

    @property
    def label(self) -> str:
        return f"Pass {self.number}"

    @property
    def prerequisite(self) -> Optional['PassKind']:
        order = list(PassKind)
        index = order.index(self)
        return order[index - 1] if index > 0 else None


@dataclass(frozen=True)
class ResultKey:
    unit: str
    pass_kind: PassKind
    method_index: Optional[int] = None


@dataclass(frozen=True)
class VerificationResult:
    """Verdict of one pass for one unit or method."""
    status: VerificationStatus
    message: str
    key: Optional[ResultKey] = None

    @property
    def ok(self) -> bool:
        return self.status == VerificationStatus.OK

    def __str__(self) -> str:
        return f"{self.status.value}\n{self.message}"


@dataclass
class PassOutcome:
    """What a stage reports back to the orchestrator."""
    status: VerificationStatus
    message: str
    warnings: List[str] = field(default_factory=list)
    cfg: Optional['ControlFlowGraph'] = None

    @property
    def ok(self) -> bool:
        return self.status == VerificationStatus.OK


def passed(message: str = "Passed verification.", warnings: Optional[List[str]] = None,
           cfg: Optional['ControlFlowGraph'] = None) -> PassOutcome:
    return PassOutcome(VerificationStatus.OK, message, list(warnings or ()), cfg)


def rejected(message: str, warnings: Optional[List[str]] = None) -> PassOutcome:
    return PassOutcome(VerificationStatus.FAILED, message, list(warnings or ()))


def cancelled(message: str = "Verification was cancelled.") -> PassOutcome:
    return PassOutcome(VerificationStatus.CANCELLED, message)


@dataclass(frozen=True)
class StageContext:
    """Read-only inputs a stage may consult."""
    unit: ClassUnit
    oracle: TypeOracle
    config: Any      # verifier.VerifierConfig


class Stage(ABC):
    """One verification pass."""
    kind: PassKind

    @abstractmethod
    def run(self, context: StageContext, method_index: Optional[int] = None,
            **kwargs: Any) -> PassOutcome:
        ...


def method_label(context: StageContext, method_index: int) -> str:
    method = context.unit.methods[method_index]
    return f"{method.name}{method.descriptor}"
