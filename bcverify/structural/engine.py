"""
Fixed-point dataflow engine for the structural verifier.

Each CFG node carries a "current" incoming Frame: unset (absent) for
every node except the entry, which starts from the method's declared
parameters.  The engine repeatedly takes a node from the work-set,
applies the node's effect rule, and merges the outgoing frame into each
successor.  A successor whose frame changed is put back in the work-set.

    frame[entry] = entry_frame
    while worklist:
        n = worklist.pop()
        out = apply_effect(frame[n], n)          # failure -> abort
        for (n, s) in edges(n):
            f = out, or handler_frame(frame[n]) on exception edges
            if merge(frame[s], f) != frame[s]:
                frame[s] = merge(frame[s], f); worklist.add(s)

Every update moves a frame strictly up the lattice, and the lattice has
finite height for a given method, so the loop terminates.  Removal order
does not change the result, only how many visits it takes; reverse
post-order is the default.
"""

import heapq
import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Callable, Deque, Dict, List, Optional, Set

from ..cfg.control_flow import ControlFlowGraph, EdgeType
from ..errors import Failure, IterationLimitExceeded, VerifierFailure
from .effects import EffectContext, apply_effect, exception_entry_frame
from .frame import Frame


logger = logging.getLogger(__name__)

# Upper bound on how often one stack/slot entry can change: UNSET, a
# handful of reference refinements, Object, TOP
LATTICE_ENTRY_HEIGHT = 16


class WorklistStrategy(Enum):
    """Order in which nodes are removed from the work-set."""
    RPO = auto()     # reverse post-order: predecessors before successors
    FIFO = auto()
    LIFO = auto()


class EngineStatus(Enum):
    VERIFIED = auto()
    FAILED = auto()
    CANCELLED = auto()


@dataclass
class EngineConfig:
    """
    Configuration for one engine run.

    Attributes:
        strategy: Work-set removal order
        max_visits_per_node: Visit bound per node; None derives it from
            the method's stack and local sizes
        cancel_check: Polled between iterations; returning True cancels
    """
    strategy: WorklistStrategy = WorklistStrategy.RPO
    max_visits_per_node: Optional[int] = None
    cancel_check: Optional[Callable[[], bool]] = None


@dataclass
class EngineResult:
    status: EngineStatus
    failure: Optional[Failure] = None
    frames: Dict[int, Frame] = field(default_factory=dict)
    visits: Dict[int, int] = field(default_factory=dict)
    iterations: int = 0

    @property
    def verified(self) -> bool:
        return self.status == EngineStatus.VERIFIED


class Worklist:
    """Set of pending node offsets with a strategy-dependent removal order."""

    def __init__(self, strategy: WorklistStrategy, priority: Dict[int, int]):
        self.strategy = strategy
        self._priority = priority
        self._members: Set[int] = set()
        self._heap: List[tuple] = []
        self._queue: Deque[int] = deque()

    def add(self, offset: int) -> None:
        if offset in self._members:
            return
        self._members.add(offset)
        if self.strategy == WorklistStrategy.RPO:
            heapq.heappush(self._heap, (self._priority.get(offset, len(self._priority)), offset))
        else:
            self._queue.append(offset)

    def pop(self) -> int:
        if self.strategy == WorklistStrategy.RPO:
            _, offset = heapq.heappop(self._heap)
        elif self.strategy == WorklistStrategy.FIFO:
            offset = self._queue.popleft()
        else:
            offset = self._queue.pop()
        self._members.discard(offset)
        return offset

    def __bool__(self) -> bool:
        return bool(self._members)

    def __len__(self) -> int:
        return len(self._members)


def visit_bound(frame: Frame) -> int:
    """Default per-node visit bound: lattice height of a whole frame, plus the first visit."""
    return (frame.max_stack + frame.max_locals + 1) * LATTICE_ENTRY_HEIGHT + 1


def _propagate(frames: Dict[int, Frame], target: int, incoming: Frame,
               context: EffectContext) -> bool:
    """Merge `incoming` into the target's frame; True if the target's frame changed."""
    prior = frames.get(target)
    if prior is None:
        frames[target] = incoming
        return True
    merged = prior.merge(incoming, context.oracle)
    if merged == prior:
        return False
    frames[target] = merged
    return True


def run_dataflow(cfg: ControlFlowGraph, entry_frame: Frame, context: EffectContext,
                 config: Optional[EngineConfig] = None) -> EngineResult:
    """
    Run the work-set algorithm to a fixed point.

    Returns:
        EngineResult: VERIFIED when the work-set empties, FAILED on the
        first typed failure (which aborts the run), CANCELLED when
        config.cancel_check asked to stop
    """
    config = config or EngineConfig()
    frames: Dict[int, Frame] = {}
    visits: Dict[int, int] = {}
    if not cfg.nodes:
        return EngineResult(EngineStatus.VERIFIED)

    priority = {offset: i for i, offset in enumerate(cfg.reverse_postorder())}
    bound = config.max_visits_per_node or visit_bound(entry_frame)
    worklist = Worklist(config.strategy, priority)
    frames[cfg.entry] = entry_frame
    worklist.add(cfg.entry)
    iterations = 0

    def failed(failure: Failure) -> EngineResult:
        logger.debug("%s: %s", cfg.method, failure)
        return EngineResult(EngineStatus.FAILED, failure, frames, visits, iterations)

    while worklist:
        if config.cancel_check is not None and config.cancel_check():
            logger.debug("%s: cancelled after %d iterations", cfg.method, iterations)
            return EngineResult(EngineStatus.CANCELLED, None, frames, visits, iterations)

        offset = worklist.pop()
        iterations += 1
        visits[offset] = visits.get(offset, 0) + 1
        if visits[offset] > bound:
            return failed(IterationLimitExceeded(
                f"node visited more than {bound} times without reaching a fixed point",
                offset,
            ).failure)

        node = cfg.node(offset)
        frame_in = frames[offset]
        logger.debug("visit %s  in: %s", node.instruction, frame_in)

        transfer = apply_effect(frame_in, node.instruction, context)
        if not transfer.ok:
            return failed(transfer.failure)

        for edge in node.successors:
            if edge.kind == EdgeType.EXCEPTION:
                handler_entry = exception_entry_frame(frame_in, edge.handler.catch_type)
                if not handler_entry.ok:
                    return failed(handler_entry.failure.with_offset(offset))
                outgoing = handler_entry.frame
            else:
                outgoing = transfer.frame
            try:
                changed = _propagate(frames, edge.target, outgoing, context)
            except VerifierFailure as e:
                return failed(Failure(
                    e.kind,
                    f"{e.message} (merging from offset {offset})",
                    edge.target,
                ))
            if changed:
                worklist.add(edge.target)

    logger.debug("%s: fixed point after %d iterations", cfg.method, iterations)
    return EngineResult(EngineStatus.VERIFIED, None, frames, visits, iterations)
