"""CFG: instruction-level control-flow graph, including exception handler edges."""

from .control_flow import (
    ControlFlowGraph,
    Edge,
    EdgeType,
    InstructionNode,
    build_cfg,
    print_cfg,
)

__all__ = [
    'ControlFlowGraph',
    'Edge',
    'EdgeType',
    'InstructionNode',
    'build_cfg',
    'print_cfg',
]
