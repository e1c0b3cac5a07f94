"""
Verification passes.

PASS1 and PASS2 look at a whole unit; PASS3A and PASS3B run per method.
"""

from .base import (
    PassKind,
    PassOutcome,
    ResultKey,
    Stage,
    StageContext,
    VerificationResult,
    VerificationStatus,
)
from .pass1 import Pass1Stage
from .pass2 import Pass2Stage
from .pass3a import Pass3aStage
from .pass3b import Pass3bStage

STAGES = {
    PassKind.PASS1: Pass1Stage(),
    PassKind.PASS2: Pass2Stage(),
    PassKind.PASS3A: Pass3aStage(),
    PassKind.PASS3B: Pass3bStage(),
}

__all__ = [
    'PassKind',
    'PassOutcome',
    'ResultKey',
    'Stage',
    'StageContext',
    'VerificationResult',
    'VerificationStatus',
    'Pass1Stage',
    'Pass2Stage',
    'Pass3aStage',
    'Pass3bStage',
    'STAGES',
]
