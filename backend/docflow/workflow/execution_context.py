"""
Execution Context — per-run mutable state.

One ``ExecutionContext`` exists per run. It holds each node's status,
output, error and attempt count, plus the append-only run log. The
log is totally ordered by a monotonic sequence number (not by wall
clock), and appends are guarded by a lock so concurrent writers
cannot produce duplicate or out-of-order sequence numbers.

Status transitions only move forward::

    idle ──► running ──► success
      │                └► error
      └────► skipped

Terminal states never change within a run.
"""

from __future__ import annotations

import itertools
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from logging import getLogger
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel, Field

from docflow.exceptions import InvalidTransitionError

logger = getLogger(__name__)


class NodeStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in (NodeStatus.SUCCESS, NodeStatus.ERROR, NodeStatus.SKIPPED)


_ALLOWED_TRANSITIONS: Dict[NodeStatus, Tuple[NodeStatus, ...]] = {
    NodeStatus.IDLE: (NodeStatus.RUNNING, NodeStatus.SKIPPED),
    NodeStatus.RUNNING: (NodeStatus.SUCCESS, NodeStatus.ERROR),
    NodeStatus.SUCCESS: (),
    NodeStatus.ERROR: (),
    NodeStatus.SKIPPED: (),
}


class LogLevel(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class RunEvent(str, Enum):
    RUN_STARTED = "run_started"
    NODE_STARTED = "node_started"
    NODE_RETRY = "node_retry"
    NODE_SUCCEEDED = "node_succeeded"
    NODE_FAILED = "node_failed"
    NODE_SKIPPED = "node_skipped"
    NODE_ABANDONED = "node_abandoned"
    RUN_COMPLETED = "run_completed"
    RUN_FAILED = "run_failed"
    RUN_CANCELLED = "run_cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (RunEvent.RUN_COMPLETED, RunEvent.RUN_FAILED, RunEvent.RUN_CANCELLED)


class RunLogEntry(BaseModel):
    """One event in a run's log stream."""

    seq: int
    timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    event: RunEvent
    level: LogLevel = LogLevel.INFO
    message: str
    node_id: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)


@dataclass
class NodeState:
    """Status and result of one node within one run."""

    node_id: str
    status: NodeStatus = NodeStatus.IDLE
    output: Any = None
    error: Optional[BaseException] = None
    attempts: int = 0
    started_at: Optional[float] = None
    finished_at: Optional[float] = None

    @property
    def duration_ms(self) -> Optional[int]:
        if self.started_at is None or self.finished_at is None:
            return None
        return int((self.finished_at - self.started_at) * 1000)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "node_id": self.node_id,
            "status": self.status.value,
            "attempts": self.attempts,
            "duration_ms": self.duration_ms,
            "error": str(self.error) if self.error is not None else None,
        }


LogListener = Callable[[RunLogEntry], None]


class ExecutionContext:
    """Per-run statuses, outputs and log. Never shared between runs."""

    def __init__(
        self,
        node_ids: Iterable[str],
        workflow_id: str = "",
        run_id: Optional[str] = None,
    ) -> None:
        self.run_id = run_id or uuid.uuid4().hex[:12]
        self.workflow_id = workflow_id
        self._nodes: Dict[str, NodeState] = {nid: NodeState(nid) for nid in node_ids}
        self._log: List[RunLogEntry] = []
        self._seq = itertools.count(1)
        self._lock = threading.Lock()
        self._listeners: List[LogListener] = []
        self._transitions: List[Tuple[str, NodeStatus, NodeStatus]] = []

    # ── Node state ──

    def node(self, node_id: str) -> NodeState:
        return self._nodes[node_id]

    def status(self, node_id: str) -> NodeStatus:
        return self._nodes[node_id].status

    def output(self, node_id: str) -> Any:
        return self._nodes[node_id].output

    def statuses(self) -> Dict[str, NodeStatus]:
        return {nid: state.status for nid, state in self._nodes.items()}

    def nodes_in(self, status: NodeStatus) -> List[str]:
        return sorted(nid for nid, s in self._nodes.items() if s.status == status)

    def transition(self, node_id: str, new_status: NodeStatus) -> None:
        """Move a node forward; any backward or sideways move is rejected."""
        with self._lock:
            state = self._nodes[node_id]
            if new_status not in _ALLOWED_TRANSITIONS[state.status]:
                raise InvalidTransitionError(node_id, state.status, new_status)
            self._transitions.append((node_id, state.status, new_status))
            state.status = new_status
            now = time.monotonic()
            if new_status == NodeStatus.RUNNING:
                state.started_at = now
            elif new_status.is_terminal and state.started_at is not None:
                state.finished_at = now

    def mark_running(self, node_id: str) -> None:
        self.transition(node_id, NodeStatus.RUNNING)

    def mark_success(self, node_id: str, output: Any, attempts: int) -> None:
        self.transition(node_id, NodeStatus.SUCCESS)
        state = self._nodes[node_id]
        state.output = output
        state.attempts = attempts

    def mark_error(self, node_id: str, error: BaseException, attempts: int) -> None:
        self.transition(node_id, NodeStatus.ERROR)
        state = self._nodes[node_id]
        state.error = error
        state.attempts = attempts

    def mark_skipped(self, node_id: str) -> None:
        self.transition(node_id, NodeStatus.SKIPPED)

    @property
    def transitions(self) -> List[Tuple[str, NodeStatus, NodeStatus]]:
        """Every status change so far, in the order it happened."""
        with self._lock:
            return list(self._transitions)

    # ── Log ──

    def append(
        self,
        event: RunEvent,
        message: str,
        level: LogLevel = LogLevel.INFO,
        node_id: Optional[str] = None,
        **data: Any,
    ) -> RunLogEntry:
        with self._lock:
            entry = RunLogEntry(
                seq=next(self._seq),
                event=event,
                level=level,
                message=message,
                node_id=node_id,
                data=data,
            )
            self._log.append(entry)
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(entry)
            except Exception:
                logger.warning(
                    f"[{self.run_id}] Log listener {listener!r} raised; ignored",
                    exc_info=True,
                )
        return entry

    @property
    def logs(self) -> List[RunLogEntry]:
        with self._lock:
            return list(self._log)

    def subscribe(self, listener: LogListener) -> Callable[[], None]:
        """Register a log listener; returns a function that removes it."""
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    @property
    def is_finished(self) -> bool:
        with self._lock:
            return bool(self._log) and self._log[-1].event.is_terminal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "workflow_id": self.workflow_id,
            "nodes": {nid: s.to_dict() for nid, s in self._nodes.items()},
            "logs": [e.model_dump(mode="json") for e in self.logs],
        }
