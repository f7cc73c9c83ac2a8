"""
Workflow Data Models — definitions, nodes, and edges.

These are the serializable data structures that describe
a user-designed extraction workflow. They are persisted by
``WorkflowStore``, validated by ``workflow_graph`` and executed
by ``WorkflowExecutor``.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, Field

from docflow.exceptions import InvalidEdgeError
from docflow.workflow.payload import deep_merge


class NodeCategory(str, Enum):
    """Role of a node in the extraction pipeline."""
    INPUT = "input"               # Documents enter the workflow
    PROCESS = "process"           # OCR, parsing, extraction
    TRANSFORM = "transform"       # Reshape / combine / validate records
    OUTPUT = "output"             # Sinks whose payloads form the result


class WorkflowNode(BaseModel):
    """A single node placed on the workflow canvas.

    ``node_type`` references a registered node type.
    ``config`` holds user-set option values; it is replaced, never
    mutated in place (see ``with_config``).
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4())[:8])
    node_type: str
    category: NodeCategory
    label: str = ""
    config: Dict[str, Any] = Field(default_factory=dict)
    position: Dict[str, float] = Field(
        default_factory=lambda: {"x": 0, "y": 0}
    )

    def with_config(self, overrides: Mapping[str, Any]) -> "WorkflowNode":
        """Return a copy whose config has ``overrides`` deep-merged in.

        No schema check happens here; ``NodeRegistry.update_node_config``
        is the validating path.
        """
        return self.model_copy(update={"config": deep_merge(self.config, overrides)})


class WorkflowEdge(BaseModel):
    """A directed data dependency between two nodes."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4())[:8])
    source: str  # source node ID
    target: str  # target node ID
    label: str = ""

    @property
    def pair(self) -> tuple:
        return (self.source, self.target)


class WorkflowDefinition(BaseModel):
    """A complete workflow graph definition.

    Node order is display-only; execution order is derived from edges.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str = "Untitled Workflow"
    description: str = ""
    nodes: List[WorkflowNode] = Field(default_factory=list)
    edges: List[WorkflowEdge] = Field(default_factory=list)
    created_at: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    updated_at: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    is_template: bool = False
    template_name: Optional[str] = None

    def touch(self) -> None:
        """Update the ``updated_at`` timestamp."""
        self.updated_at = datetime.now(timezone.utc).isoformat()

    # ── Lookup ──

    def get_node(self, node_id: str) -> Optional[WorkflowNode]:
        """Find a node by ID."""
        for n in self.nodes:
            if n.id == node_id:
                return n
        return None

    def node_ids(self) -> List[str]:
        return [n.id for n in self.nodes]

    def get_edges_from(self, node_id: str) -> List[WorkflowEdge]:
        """Get all edges originating from a node."""
        return [e for e in self.edges if e.source == node_id]

    def get_edges_to(self, node_id: str) -> List[WorkflowEdge]:
        """Get all edges pointing to a node."""
        return [e for e in self.edges if e.target == node_id]

    def get_source_nodes(self) -> List[WorkflowNode]:
        """Nodes with no incoming edges."""
        targets = {e.target for e in self.edges}
        return [n for n in self.nodes if n.id not in targets]

    def get_nodes_by_category(self, category: NodeCategory) -> List[WorkflowNode]:
        return [n for n in self.nodes if n.category == category]

    # ── Editing ──

    def add_node(self, node: WorkflowNode) -> WorkflowNode:
        if self.get_node(node.id) is not None:
            raise ValueError(f"Node '{node.id}' already exists")
        self.nodes.append(node)
        self.touch()
        return node

    def remove_node(self, node_id: str) -> bool:
        """Remove a node and every edge touching it."""
        before = len(self.nodes)
        self.nodes = [n for n in self.nodes if n.id != node_id]
        if len(self.nodes) == before:
            return False
        self.edges = [
            e for e in self.edges if e.source != node_id and e.target != node_id
        ]
        self.touch()
        return True

    def connect(self, source: str, target: str, label: str = "") -> WorkflowEdge:
        """Add an edge, rejecting self-loops, duplicates and unknown endpoints."""
        if source == target:
            raise InvalidEdgeError(source, target, "a node cannot connect to itself")
        for endpoint in (source, target):
            if self.get_node(endpoint) is None:
                raise InvalidEdgeError(source, target, f"unknown node '{endpoint}'")
        if any(e.source == source and e.target == target for e in self.edges):
            raise InvalidEdgeError(source, target, "edge already exists")
        edge = WorkflowEdge(source=source, target=target, label=label)
        self.edges.append(edge)
        self.touch()
        return edge

    def disconnect(self, source: str, target: str) -> bool:
        before = len(self.edges)
        self.edges = [
            e for e in self.edges if not (e.source == source and e.target == target)
        ]
        changed = len(self.edges) != before
        if changed:
            self.touch()
        return changed

    def update_node_config(self, node_id: str, overrides: Mapping[str, Any]) -> WorkflowNode:
        """Replace a node with a copy carrying the updated config."""
        for index, node in enumerate(self.nodes):
            if node.id == node_id:
                updated = node.with_config(overrides)
                self.nodes[index] = updated
                self.touch()
                return updated
        raise KeyError(node_id)

    def rename_node(self, node_id: str, label: str) -> WorkflowNode:
        for index, node in enumerate(self.nodes):
            if node.id == node_id:
                updated = node.model_copy(update={"label": label})
                self.nodes[index] = updated
                self.touch()
                return updated
        raise KeyError(node_id)

    # ── Interchange ──

    def snapshot(self) -> "WorkflowDefinition":
        """Deep copy used as the immutable input of one run."""
        return self.model_copy(deep=True)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "WorkflowDefinition":
        return cls.model_validate(dict(data))
