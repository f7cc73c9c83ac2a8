"""
Workflow Graph — structural validation and ordering.

Validation never raises: it returns a ``ValidationReport`` whose
``errors`` and ``warnings`` are ``GraphError`` instances. Ordering
functions assume a structurally valid graph and raise ``CycleError``
when they meet a cycle.

Ordering is deterministic: whenever several nodes are eligible at
once, the smallest node id is taken first, so the result does not
depend on the order nodes were added to the canvas.
"""

from __future__ import annotations

import heapq
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Set

from docflow.exceptions import (
    CycleError,
    DanglingEdgeError,
    DisconnectedOutputError,
    DuplicateNodeError,
    GraphError,
    InvalidEdgeError,
    NoInputNodeError,
    ValidationFailed,
)
from docflow.workflow.workflow_model import NodeCategory, WorkflowDefinition


@dataclass
class ValidationReport:
    """Outcome of ``validate_workflow``."""

    errors: List[GraphError] = field(default_factory=list)
    warnings: List[GraphError] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def raise_for_errors(self) -> None:
        if self.errors:
            raise ValidationFailed(self)

    def to_dict(self) -> dict:
        return {
            "valid": self.is_valid,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
        }


# ============================================================================
# Adjacency helpers
# ============================================================================


def predecessor_map(workflow: WorkflowDefinition) -> Dict[str, List[str]]:
    """node id → sorted ids of its direct predecessors (known nodes only)."""
    known = set(workflow.node_ids())
    preds: Dict[str, Set[str]] = {nid: set() for nid in known}
    for edge in workflow.edges:
        if edge.source in known and edge.target in known:
            preds[edge.target].add(edge.source)
    return {nid: sorted(p) for nid, p in preds.items()}


def successor_map(workflow: WorkflowDefinition) -> Dict[str, List[str]]:
    """node id → sorted ids of its direct successors (known nodes only)."""
    known = set(workflow.node_ids())
    succs: Dict[str, Set[str]] = {nid: set() for nid in known}
    for edge in workflow.edges:
        if edge.source in known and edge.target in known:
            succs[edge.source].add(edge.target)
    return {nid: sorted(s) for nid, s in succs.items()}


def reachable_from(
    workflow: WorkflowDefinition, start: Iterable[str],
) -> Set[str]:
    """All nodes reachable from ``start`` (the start nodes included)."""
    succs = successor_map(workflow)
    seen: Set[str] = set()
    stack = [s for s in start if s in succs]
    while stack:
        nid = stack.pop()
        if nid in seen:
            continue
        seen.add(nid)
        stack.extend(succs[nid])
    return seen


def descendants(workflow: WorkflowDefinition, node_id: str) -> Set[str]:
    """Nodes strictly downstream of ``node_id``."""
    return reachable_from(workflow, successor_map(workflow).get(node_id, []))


def source_node_ids(workflow: WorkflowDefinition) -> List[str]:
    return sorted(n.id for n in workflow.get_source_nodes())


# ============================================================================
# Cycle detection
# ============================================================================


def find_cycle(workflow: WorkflowDefinition) -> List[str]:
    """Return one cycle as ``[a, b, ..., a]``, or ``[]`` if the graph is acyclic.

    Depth-first search visiting nodes and successors in ascending id
    order, so the reported cycle is reproducible.
    """
    succs = successor_map(workflow)
    white, grey, black = 0, 1, 2
    color = {nid: white for nid in succs}
    parent: Dict[str, str] = {}

    for root in sorted(succs):
        if color[root] != white:
            continue
        stack = [(root, iter(succs[root]))]
        color[root] = grey
        while stack:
            nid, children = stack[-1]
            advanced = False
            for child in children:
                if color[child] == white:
                    color[child] = grey
                    parent[child] = nid
                    stack.append((child, iter(succs[child])))
                    advanced = True
                    break
                if color[child] == grey:
                    # Back edge nid → child closes a cycle
                    cycle = [nid]
                    cur = nid
                    while cur != child:
                        cur = parent[cur]
                        cycle.append(cur)
                    cycle.reverse()
                    cycle.append(child)
                    return cycle
            if not advanced:
                color[nid] = black
                stack.pop()
    return []


# ============================================================================
# Validation
# ============================================================================


def validate_workflow(
    workflow: WorkflowDefinition,
    strict_outputs: bool = False,
) -> ValidationReport:
    """Validate the workflow graph structure.

    ``DisconnectedOutputError`` is reported as a warning unless
    ``strict_outputs`` is set.
    """
    report = ValidationReport()

    # Duplicate node ids
    seen: Set[str] = set()
    for node in workflow.nodes:
        if node.id in seen:
            report.errors.append(DuplicateNodeError(node.id))
        seen.add(node.id)

    # Edge references, self-loops, duplicates
    pairs: Set[tuple] = set()
    for edge in workflow.edges:
        missing = [nid for nid in (edge.source, edge.target) if nid not in seen]
        if missing:
            report.errors.append(DanglingEdgeError(edge.source, edge.target, missing))
            continue
        if edge.source == edge.target:
            report.errors.append(
                InvalidEdgeError(edge.source, edge.target, "a node cannot connect to itself")
            )
            continue
        if edge.pair in pairs:
            report.errors.append(
                InvalidEdgeError(edge.source, edge.target, "edge already exists")
            )
        pairs.add(edge.pair)

    # Cycles (self-loops already reported above)
    cycle = find_cycle(_without_self_loops(workflow))
    if cycle:
        report.errors.append(CycleError(cycle))

    # Input sources
    input_sources = [
        n.id for n in workflow.get_source_nodes() if n.category == NodeCategory.INPUT
    ]
    if not input_sources:
        report.errors.append(NoInputNodeError())

    # Output reachability
    reachable = reachable_from(
        workflow, [n.id for n in workflow.get_nodes_by_category(NodeCategory.INPUT)],
    )
    for node in workflow.get_nodes_by_category(NodeCategory.OUTPUT):
        if node.id not in reachable:
            issue = DisconnectedOutputError(node.id)
            (report.errors if strict_outputs else report.warnings).append(issue)

    return report


def _without_self_loops(workflow: WorkflowDefinition) -> WorkflowDefinition:
    if not any(e.source == e.target for e in workflow.edges):
        return workflow
    return workflow.model_copy(
        update={"edges": [e for e in workflow.edges if e.source != e.target]}
    )


# ============================================================================
# Ordering
# ============================================================================


def topological_order(workflow: WorkflowDefinition) -> List[str]:
    """Kahn's algorithm with smallest-id-first tie breaking."""
    preds = predecessor_map(workflow)
    succs = successor_map(workflow)
    remaining = {nid: len(p) for nid, p in preds.items()}

    heap = [nid for nid, count in remaining.items() if count == 0]
    heapq.heapify(heap)
    order: List[str] = []
    while heap:
        nid = heapq.heappop(heap)
        order.append(nid)
        for child in succs[nid]:
            remaining[child] -= 1
            if remaining[child] == 0:
                heapq.heappush(heap, child)

    if len(order) != len(remaining):
        raise CycleError(find_cycle(workflow) or sorted(set(remaining) - set(order)))
    return order


def topological_ranks(workflow: WorkflowDefinition) -> List[List[str]]:
    """Group nodes by longest-path depth from the sources.

    Nodes in the same rank have no dependency between them.
    """
    preds = predecessor_map(workflow)
    depth: Dict[str, int] = {}
    for nid in topological_order(workflow):
        depth[nid] = 1 + max((depth[p] for p in preds[nid]), default=-1)

    ranks: List[List[str]] = [[] for _ in range(max(depth.values(), default=-1) + 1)]
    for nid in sorted(depth):
        ranks[depth[nid]].append(nid)
    return ranks
