"""
Run Logger — the single writer of a run's event log.

Every call appends a structured ``RunLogEntry`` to the run's
``ExecutionContext`` and mirrors the line to the module logger,
prefixed with the run id.
"""

from __future__ import annotations

from logging import ERROR, INFO, WARNING, getLogger
from typing import Any, Optional, Sequence

from docflow.workflow.execution_context import (
    ExecutionContext,
    LogLevel,
    RunEvent,
    RunLogEntry,
)

logger = getLogger(__name__)

_PY_LEVELS = {
    LogLevel.INFO: INFO,
    LogLevel.SUCCESS: INFO,
    LogLevel.WARNING: WARNING,
    LogLevel.ERROR: ERROR,
}


class RunLogger:
    """Structured per-run logging bound to one ``ExecutionContext``."""

    def __init__(self, context: ExecutionContext, workflow_name: str = "") -> None:
        self._context = context
        self._workflow_name = workflow_name

    @property
    def run_id(self) -> str:
        return self._context.run_id

    def _emit(
        self,
        event: RunEvent,
        message: str,
        level: LogLevel = LogLevel.INFO,
        node_id: Optional[str] = None,
        **data: Any,
    ) -> RunLogEntry:
        entry = self._context.append(event, message, level=level, node_id=node_id, **data)
        logger.log(_PY_LEVELS[level], f"[{self.run_id}] {message}")
        return entry

    # ── Run lifecycle ──

    def log_run_start(self, node_count: int, order: list, warnings: Sequence[str] = ()) -> RunLogEntry:
        return self._emit(
            RunEvent.RUN_STARTED,
            f"Starting workflow '{self._workflow_name}' ({node_count} nodes)",
            order=list(order),
            warnings=list(warnings),
        )

    def log_run_complete(self, output_ids: list, duration_ms: int, partial: bool) -> RunLogEntry:
        suffix = " with failed branches" if partial else ""
        return self._emit(
            RunEvent.RUN_COMPLETED,
            f"Workflow completed{suffix}: {len(output_ids)} output(s) in {duration_ms}ms",
            level=LogLevel.WARNING if partial else LogLevel.SUCCESS,
            outputs=list(output_ids),
            duration_ms=duration_ms,
        )

    def log_run_failed(self, error: BaseException, duration_ms: int) -> RunLogEntry:
        return self._emit(
            RunEvent.RUN_FAILED,
            f"Workflow failed: {error}",
            level=LogLevel.ERROR,
            node_id=getattr(error, "node_id", None),
            error_type=type(error).__name__,
            duration_ms=duration_ms,
        )

    def log_run_cancelled(self, pending: list, duration_ms: int) -> RunLogEntry:
        return self._emit(
            RunEvent.RUN_CANCELLED,
            f"Workflow cancelled; {len(pending)} node(s) not started",
            level=LogLevel.WARNING,
            pending=list(pending),
            duration_ms=duration_ms,
        )

    # ── Node lifecycle ──

    def log_node_enter(self, node_id: str, node_type: str, input_summary: str) -> RunLogEntry:
        return self._emit(
            RunEvent.NODE_STARTED,
            f"Running {node_id} ({node_type})",
            node_id=node_id,
            node_type=node_type,
            input=input_summary,
        )

    def log_node_exit(
        self, node_id: str, output_summary: str, duration_ms: Optional[int], attempts: int,
    ) -> RunLogEntry:
        return self._emit(
            RunEvent.NODE_SUCCEEDED,
            f"{node_id} completed: {output_summary}",
            level=LogLevel.SUCCESS,
            node_id=node_id,
            duration_ms=duration_ms,
            attempts=attempts,
        )

    def log_node_retry(
        self, node_id: str, attempt: int, max_attempts: int, delay: float, error: BaseException,
    ) -> RunLogEntry:
        return self._emit(
            RunEvent.NODE_RETRY,
            f"{node_id} attempt {attempt}/{max_attempts} failed ({error}); "
            f"retrying in {delay:g}s",
            level=LogLevel.WARNING,
            node_id=node_id,
            attempt=attempt,
            delay=delay,
            error_type=type(error).__name__,
        )

    def log_node_error(
        self, node_id: str, error: BaseException, duration_ms: Optional[int], attempts: int,
    ) -> RunLogEntry:
        return self._emit(
            RunEvent.NODE_FAILED,
            f"{node_id} failed after {attempts} attempt(s): {error}",
            level=LogLevel.ERROR,
            node_id=node_id,
            error_type=type(error).__name__,
            duration_ms=duration_ms,
            attempts=attempts,
        )

    def log_node_skipped(self, node_id: str, reason: str) -> RunLogEntry:
        return self._emit(
            RunEvent.NODE_SKIPPED,
            f"{node_id} skipped: {reason}",
            level=LogLevel.WARNING,
            node_id=node_id,
        )

    def log_node_abandoned(self, node_id: str) -> RunLogEntry:
        return self._emit(
            RunEvent.NODE_ABANDONED,
            f"{node_id} abandoned by cancellation",
            level=LogLevel.WARNING,
            node_id=node_id,
        )
