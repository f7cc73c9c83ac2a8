"""
Workflow Result — the terminal artifact of one run.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from docflow.exceptions import ExecutionError, describe_error
from docflow.workflow.execution_context import ExecutionContext, NodeStatus, RunLogEntry
from docflow.workflow.payload import to_jsonable


class RunStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class WorkflowResult:
    """Aggregated outputs, or a typed failure, plus the run's context.

    ``outputs`` maps each successful output node id to its payload, in
    topological order. On failure ``error`` identifies the failing node
    and cause; ``node_errors`` lists every node that ended in error.
    """

    run_id: str
    workflow_id: str
    status: RunStatus
    context: ExecutionContext
    outputs: Dict[str, Any] = field(default_factory=dict)
    confidence: Optional[float] = None
    error: Optional[ExecutionError] = None
    node_errors: Dict[str, BaseException] = field(default_factory=dict)
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.status == RunStatus.SUCCESS

    @property
    def is_partial(self) -> bool:
        """Succeeded, but some branch failed along the way."""
        return self.ok and bool(self.node_errors)

    @property
    def logs(self) -> List[RunLogEntry]:
        return self.context.logs

    @property
    def node_statuses(self) -> Dict[str, NodeStatus]:
        return self.context.statuses()

    def unwrap(self) -> Dict[str, Any]:
        """Return ``outputs`` or raise the run's error."""
        if self.error is not None:
            raise self.error
        return self.outputs

    def to_dict(self) -> Dict[str, Any]:
        """JSON shape consumed by the editor's output panel."""
        return {
            "run_id": self.run_id,
            "workflow_id": self.workflow_id,
            "status": self.status.value,
            "outputs": to_jsonable(self.outputs),
            "confidence": self.confidence,
            "error": self.error.to_dict() if self.error is not None else None,
            "node_errors": {nid: describe_error(e) for nid, e in self.node_errors.items()},
            "nodes": {nid: s.value for nid, s in self.node_statuses.items()},
            "logs": [entry.model_dump(mode="json") for entry in self.logs],
            "processing_time_ms": self.duration_ms,
        }
