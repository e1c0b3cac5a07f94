"""
Pass 3b: data-flow verification of one method.

Runs the fixed-point engine over the CFG produced by pass 3a, starting
from the frame the method's descriptor implies.
"""

import logging
from typing import Any, Optional

from ..cfg.control_flow import ControlFlowGraph, build_cfg
from ..errors import VerifierFailure
from ..structural.effects import EffectContext
from ..structural.engine import EngineConfig, EngineStatus, run_dataflow
from ..structural.frame import Frame
from .base import (
    PassKind,
    PassOutcome,
    Stage,
    StageContext,
    cancelled,
    method_label,
    passed,
    rejected,
)


logger = logging.getLogger(__name__)


class Pass3bStage(Stage):
    kind = PassKind.PASS3B

    def run(self, context: StageContext, method_index: Optional[int] = None,
            cfg: Optional[ControlFlowGraph] = None, **kwargs: Any) -> PassOutcome:
        unit = context.unit
        method = unit.methods[method_index]
        label = method_label(context, method_index)
        if method.is_abstract:
            return passed(f"Abstract or native method '{label}' has no code to verify.")

        try:
            if cfg is None:
                cfg = build_cfg(method)
            entry = Frame.entry(method, unit)
        except VerifierFailure as e:
            return rejected(f"Method '{label}': {e.failure}")

        engine_config = context.config.engine_config() if context.config else EngineConfig()
        result = run_dataflow(cfg, entry, EffectContext(unit, method, context.oracle), engine_config)
        logger.debug("pass 3b %s: %s after %d iterations", label, result.status.name, result.iterations)

        if result.status == EngineStatus.CANCELLED:
            return cancelled(f"Verification of method '{label}' was cancelled.")
        if result.status == EngineStatus.FAILED:
            return rejected(f"Method '{label}': {result.failure}")
        return passed()
