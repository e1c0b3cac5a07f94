"""
Control Flow Graph for a method body, including exceptional edges.

Nodes are individual instructions keyed by offset.  Edges:
- FALLTHROUGH: to the next instruction
- BRANCH: to each explicit target (switch default first, then cases)
- EXCEPTION: from every instruction inside a handler's protected range
  to that handler, one per covering handler, in handler-table order

The handler table order is preserved exactly: the first-declared handler
covering an instruction is its first exception successor.

The CFG provides:
1. Successor/predecessor structure with edge kinds
2. Target validation (InvalidTarget)
3. Reachability from the entry node, and the unreachable remainder
4. Reverse post-order numbering for the dataflow engine
"""

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Dict, List, Optional, Set

from ..errors import InvalidTarget
from ..frontend.unit import ExceptionHandlerEntry, Instruction, Method


class EdgeType(Enum):
    """Type of CFG edge."""
    FALLTHROUGH = auto()
    BRANCH = auto()
    EXCEPTION = auto()


@dataclass(frozen=True)
class Edge:
    target: int
    kind: EdgeType
    handler: Optional[ExceptionHandlerEntry] = None


@dataclass
class InstructionNode:
    """One instruction and its outgoing edges."""
    instruction: Instruction
    successors: List[Edge] = field(default_factory=list)
    predecessors: List[int] = field(default_factory=list)

    @property
    def offset(self) -> int:
        return self.instruction.offset

    @property
    def normal_successors(self) -> List[Edge]:
        return [e for e in self.successors if e.kind != EdgeType.EXCEPTION]

    @property
    def exception_successors(self) -> List[Edge]:
        return [e for e in self.successors if e.kind == EdgeType.EXCEPTION]


@dataclass
class ControlFlowGraph:
    """
    CFG of one method body.

    Owned by a single verification run and discarded afterwards.
    """
    method: Method
    nodes: Dict[int, InstructionNode]
    entry: int
    order: List[int] = field(default_factory=list)   # offsets in code order

    def node(self, offset: int) -> InstructionNode:
        return self.nodes[offset]

    def successors(self, offset: int) -> List[Edge]:
        return self.nodes[offset].successors

    def reachable(self) -> Set[int]:
        """Offsets reachable from the entry over normal and exception edges."""
        if self.entry not in self.nodes:
            return set()
        seen = {self.entry}
        worklist = [self.entry]
        while worklist:
            offset = worklist.pop()
            for edge in self.nodes[offset].successors:
                if edge.target not in seen:
                    seen.add(edge.target)
                    worklist.append(edge.target)
        return seen

    def unreachable_offsets(self) -> List[int]:
        reachable = self.reachable()
        return [offset for offset in self.order if offset not in reachable]

    def reverse_postorder(self) -> List[int]:
        """Reachable offsets in reverse post-order of a DFS from the entry."""
        if self.entry not in self.nodes:
            return []
        visited: Set[int] = set()
        postorder: List[int] = []
        # iterative DFS: (offset, index of next successor to visit)
        stack = [(self.entry, 0)]
        visited.add(self.entry)
        while stack:
            offset, index = stack[-1]
            successors = self.nodes[offset].successors
            if index < len(successors):
                stack[-1] = (offset, index + 1)
                target = successors[index].target
                if target not in visited:
                    visited.add(target)
                    stack.append((target, 0))
            else:
                stack.pop()
                postorder.append(offset)
        postorder.reverse()
        return postorder

    def back_edges(self) -> List[tuple]:
        """(source, target) pairs where target precedes source in reverse post-order."""
        rpo = {offset: i for i, offset in enumerate(self.reverse_postorder())}
        edges = []
        for offset, position in rpo.items():
            for edge in self.nodes[offset].successors:
                if edge.target in rpo and rpo[edge.target] <= position:
                    edges.append((offset, edge.target))
        return edges


def build_cfg(method: Method) -> ControlFlowGraph:
    """
    Build the control flow graph of a method body.

    Algorithm:
    1. Index instructions by offset
    2. Validate the exception table against instruction boundaries
    3. Connect normal edges (fallthrough, branch targets)
    4. Connect exception edges in handler declaration order

    Raises:
        InvalidTarget: a branch target, a fallthrough, or a handler offset
            does not land on an instruction boundary
    """
    nodes: Dict[int, InstructionNode] = {}
    order: List[int] = []
    for instr in method.code:
        if instr.offset in nodes:
            raise InvalidTarget(f"duplicate instruction offset {instr.offset}", instr.offset)
        nodes[instr.offset] = InstructionNode(instr)
        order.append(instr.offset)

    entry = order[0] if order else 0
    cfg = ControlFlowGraph(method=method, nodes=nodes, entry=entry, order=order)
    if not order:
        return cfg

    _validate_handlers(method.handlers, nodes, method.code_length)
    _connect_normal_edges(order, nodes)
    _connect_exception_edges(order, nodes, method.handlers)
    return cfg


def _validate_handlers(handlers: List[ExceptionHandlerEntry],
                       nodes: Dict[int, InstructionNode],
                       code_length: int) -> None:
    for index, handler in enumerate(handlers):
        if handler.start not in nodes:
            raise InvalidTarget(
                f"handler {index} range start {handler.start} is not an instruction boundary"
            )
        if handler.end not in nodes and handler.end != code_length:
            raise InvalidTarget(
                f"handler {index} range end {handler.end} is not an instruction boundary"
            )
        if handler.end <= handler.start:
            raise InvalidTarget(
                f"handler {index} has empty range [{handler.start}, {handler.end})"
            )
        if handler.handler not in nodes:
            raise InvalidTarget(
                f"handler {index} target {handler.handler} is not an instruction boundary"
            )


def _add_edge(nodes: Dict[int, InstructionNode], source: int, edge: Edge) -> None:
    node = nodes[source]
    if edge not in node.successors:
        node.successors.append(edge)
    if source not in nodes[edge.target].predecessors:
        nodes[edge.target].predecessors.append(source)


def _connect_normal_edges(order: List[int], nodes: Dict[int, InstructionNode]) -> None:
    for i, offset in enumerate(order):
        instr = nodes[offset].instruction
        if instr.falls_through:
            if i + 1 >= len(order):
                raise InvalidTarget("control falls off the end of the code", offset)
            _add_edge(nodes, offset, Edge(order[i + 1], EdgeType.FALLTHROUGH))
        for target in instr.targets:
            if not isinstance(target, int) or target not in nodes:
                raise InvalidTarget(
                    f"branch target {target} is not an instruction boundary", offset
                )
            _add_edge(nodes, offset, Edge(target, EdgeType.BRANCH))


def _connect_exception_edges(order: List[int], nodes: Dict[int, InstructionNode],
                             handlers: List[ExceptionHandlerEntry]) -> None:
    for offset in order:
        for handler in handlers:
            if handler.covers(offset):
                _add_edge(nodes, offset, Edge(handler.handler, EdgeType.EXCEPTION, handler))


def print_cfg(cfg: ControlFlowGraph) -> str:
    """Render a CFG as text (one instruction per line with its edges)."""
    lines = [f"CFG for {cfg.method} (entry {cfg.entry})"]
    for offset in cfg.order:
        node = cfg.nodes[offset]
        edges = ", ".join(f"{e.kind.name.lower()}->{e.target}" for e in node.successors)
        lines.append(f"  {node.instruction}" + (f"    [{edges}]" if edges else ""))
    return "\n".join(lines)
