"""
Workflow Executor — run a WorkflowDefinition against a NodeRegistry.

Each run works on a deep-copied snapshot of the workflow and its own
``ExecutionContext``:

    1. Validate the graph and resolve every node type / config. Any
       problem raises before a single connector is invoked.
    2. Compute the topological order; a node's launch priority is its
       position in that order.
    3. Launch eligible nodes (all predecessors terminal) up to
       ``max_concurrency`` at a time. Each node receives its
       predecessors' outputs, combined by its merge strategy.
    4. Apply retry/timeout per node type, then the run's failure
       policy to the outcome.
    5. Aggregate the outputs of successful output-category nodes.

Usage::

    executor = WorkflowExecutor(workflow, registry)
    result = await executor.run({"pdf-1": pdf_bytes})

    handle = executor.start(inputs)
    async for entry in handle.stream():
        ...
    result = await handle.result()
"""

from __future__ import annotations

import asyncio
import heapq
import time
from enum import Enum
from logging import getLogger
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Tuple

from docflow.config import EngineConfig, get_config
from docflow.connectors.base import call_connector
from docflow.exceptions import (
    NodeExecutionFailed,
    NodeTimeout,
    NoOutputProduced,
    RunCancelled,
)
from docflow.logging import RunLogger
from docflow.workflow.execution_context import (
    ExecutionContext,
    LogListener,
    NodeStatus,
    RunLogEntry,
)
from docflow.workflow.nodes.base import NodeRegistry, NodeTypeEntry, get_node_registry
from docflow.workflow.payload import merge_payloads, overall_confidence, summarize_payload
from docflow.workflow.workflow_graph import (
    ValidationReport,
    predecessor_map,
    successor_map,
    topological_order,
    validate_workflow,
)
from docflow.workflow.workflow_model import NodeCategory, WorkflowDefinition
from docflow.workflow.workflow_result import RunStatus, WorkflowResult

logger = getLogger(__name__)


class FailurePolicy(str, Enum):
    ABORT_RUN = "abort-run"              # Stop scheduling at the first failed node
    SKIP_DOWNSTREAM = "skip-downstream"  # Skip only nodes with no successful input


class CancelPolicy(str, Enum):
    WAIT = "wait"        # In-flight nodes run to completion
    ABANDON = "abandon"  # In-flight node tasks are cancelled


# ============================================================================
# Run handle
# ============================================================================


class RunHandle:
    """A started run: cancel it, stream its log, await its result."""

    def __init__(
        self,
        run: "_WorkflowRun",
        task: "asyncio.Task[WorkflowResult]",
        queue: "asyncio.Queue[RunLogEntry]",
    ) -> None:
        self._run = run
        self._task = task
        self._queue = queue

    @property
    def run_id(self) -> str:
        return self._run.context.run_id

    @property
    def context(self) -> ExecutionContext:
        return self._run.context

    @property
    def done(self) -> bool:
        return self._task.done()

    def cancel(self, abandon: Optional[bool] = None) -> None:
        """Stop scheduling new nodes.

        ``abandon=True`` also cancels in-flight node tasks; ``None``
        falls back to the executor's cancel policy.
        """
        self._run.request_cancel(abandon)

    async def result(self) -> WorkflowResult:
        return await self._task

    async def stream(self) -> AsyncIterator[RunLogEntry]:
        """Yield log entries as they are appended, ending with the terminal one."""
        while True:
            entry = await self._queue.get()
            yield entry
            if entry.event.is_terminal:
                return


# ============================================================================
# Executor
# ============================================================================


class WorkflowExecutor:
    """Validate and run a workflow.

    Options left as ``None`` come from ``EngineConfig``.
    """

    def __init__(
        self,
        workflow: WorkflowDefinition,
        registry: Optional[NodeRegistry] = None,
        *,
        failure_policy: Optional[str] = None,
        max_concurrency: Optional[int] = None,
        default_timeout: Optional[float] = None,
        cancel_policy: Optional[str] = None,
        config: Optional[EngineConfig] = None,
    ) -> None:
        config = config or get_config(EngineConfig)
        self._workflow = workflow
        self._registry = registry or get_node_registry()
        self.failure_policy = FailurePolicy(failure_policy or config.failure_policy)
        self.cancel_policy = CancelPolicy(cancel_policy or config.cancel_policy)
        self.max_concurrency = (
            max_concurrency if max_concurrency is not None else config.max_concurrency
        )
        if self.max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self.default_timeout = (
            default_timeout if default_timeout is not None else config.node_timeout
        )
        self.strict_outputs = config.strict_outputs

    @property
    def workflow(self) -> WorkflowDefinition:
        return self._workflow

    def validate(self) -> ValidationReport:
        """Raise ``ValidationFailed`` / ``RegistryError``; return the report (warnings)."""
        report = validate_workflow(self._workflow, strict_outputs=self.strict_outputs)
        report.raise_for_errors()
        self._registry.check_workflow(self._workflow)
        return report

    def start(
        self,
        inputs: Optional[Mapping[str, Any]] = None,
        *,
        observer: Optional[LogListener] = None,
        run_id: Optional[str] = None,
    ) -> RunHandle:
        """Validate synchronously, then schedule the run on the running loop."""
        snapshot = self._workflow.snapshot()
        report = validate_workflow(snapshot, strict_outputs=self.strict_outputs)
        report.raise_for_errors()
        configs = self._registry.check_workflow(snapshot)
        entries = {
            node.id: self._registry.resolve(node.node_type, node_id=node.id)
            for node in snapshot.nodes
        }
        order = topological_order(snapshot)

        loop = asyncio.get_running_loop()
        context = ExecutionContext(order, workflow_id=snapshot.id, run_id=run_id)
        queue: "asyncio.Queue[RunLogEntry]" = asyncio.Queue()
        context.subscribe(queue.put_nowait)
        if observer is not None:
            context.subscribe(observer)

        run = _WorkflowRun(
            snapshot,
            entries,
            configs,
            order,
            dict(inputs or {}),
            context=context,
            failure_policy=self.failure_policy,
            abandon=self.cancel_policy == CancelPolicy.ABANDON,
            max_concurrency=self.max_concurrency,
            default_timeout=self.default_timeout,
            warnings=[w.message for w in report.warnings],
        )
        task = loop.create_task(run.execute(), name=f"workflow-run-{context.run_id}")
        return RunHandle(run, task, queue)

    async def run(
        self,
        inputs: Optional[Mapping[str, Any]] = None,
        *,
        observer: Optional[LogListener] = None,
    ) -> WorkflowResult:
        handle = self.start(inputs, observer=observer)
        return await handle.result()

    def run_sync(
        self,
        inputs: Optional[Mapping[str, Any]] = None,
        *,
        observer: Optional[LogListener] = None,
    ) -> WorkflowResult:
        """Blocking wrapper for callers without an event loop."""
        return asyncio.run(self.run(inputs, observer=observer))


# ============================================================================
# One run
# ============================================================================


class _WorkflowRun:
    """Scheduler state for a single run."""

    def __init__(
        self,
        workflow: WorkflowDefinition,
        entries: Dict[str, NodeTypeEntry],
        configs: Dict[str, Dict[str, Any]],
        order: List[str],
        inputs: Dict[str, Any],
        *,
        context: ExecutionContext,
        failure_policy: FailurePolicy,
        abandon: bool,
        max_concurrency: int,
        default_timeout: Optional[float],
        warnings: List[str],
    ) -> None:
        self.context = context
        self._workflow = workflow
        self._nodes = {node.id: node for node in workflow.nodes}
        self._entries = entries
        self._configs = configs
        self._order = order
        self._position = {nid: index for index, nid in enumerate(order)}
        self._preds = predecessor_map(workflow)
        self._succs = successor_map(workflow)
        self._waiting = {nid: len(preds) for nid, preds in self._preds.items()}
        self._inputs = inputs
        self._failure_policy = failure_policy
        self._abandon = abandon
        self._max_concurrency = max_concurrency
        self._default_timeout = default_timeout
        self._warnings = warnings
        self._log = RunLogger(context, workflow.name)

        self._ready: List[Tuple[int, str]] = []
        self._in_flight: Dict["asyncio.Task[None]", str] = {}
        self._abandoned: List[str] = []
        self._wake = asyncio.Event()
        self._cancelled = False
        self._abort_error: Optional[NodeExecutionFailed] = None

    def request_cancel(self, abandon: Optional[bool] = None) -> None:
        """Record a cancel request and wake the scheduler.

        May be called again while in-flight nodes are still running, e.g.
        to escalate a waiting cancel into an abandoning one.
        """
        if abandon is not None:
            self._abandon = abandon
        self._wake.set()

    # ── Scheduling ──

    async def execute(self) -> WorkflowResult:
        started = time.monotonic()
        self._log.log_run_start(len(self._order), self._order, self._warnings)
        for nid in self._order:
            if not self._preds[nid]:
                heapq.heappush(self._ready, (self._position[nid], nid))

        try:
            await self._schedule()
        except asyncio.CancelledError:
            self._abandon_in_flight()
            self._cancelled = True
            self._finish(started)
            raise
        except Exception as exc:
            self._abandon_in_flight()
            self._log.log_run_failed(exc, self._elapsed_ms(started))
            raise
        return self._finish(started)

    async def _schedule(self) -> None:
        waker: Optional["asyncio.Future[Any]"] = None
        try:
            while self._launch_ready():
                if waker is None or waker.done():
                    waker = asyncio.ensure_future(self._wake.wait())
                done, _ = await asyncio.wait(
                    set(self._in_flight) | {waker}, return_when=asyncio.FIRST_COMPLETED,
                )
                for task in sorted(
                    (t for t in done if t in self._in_flight),
                    key=lambda t: self._position[self._in_flight[t]],
                ):
                    node_id = self._in_flight.pop(task)
                    task.result()
                    self._on_node_finished(node_id)
        finally:
            if waker is not None:
                waker.cancel()

    def _launch_ready(self) -> bool:
        """Handle pending cancel requests and launch ready nodes.

        Returns False once nothing is in flight.
        """
        if self._wake.is_set():
            self._wake.clear()
            if not self._cancelled:
                self._cancelled = True
                logger.info(f"[{self.context.run_id}] Cancellation requested")
        if self._cancelled and self._abandon and self._in_flight:
            self._abandon_in_flight()

        while (
            self._ready
            and len(self._in_flight) < self._max_concurrency
            and not self._cancelled
            and self._abort_error is None
        ):
            _, node_id = heapq.heappop(self._ready)
            task = asyncio.create_task(
                self._run_node(node_id), name=f"{self.context.run_id}:{node_id}",
            )
            self._in_flight[task] = node_id

        return bool(self._in_flight)

    def _on_node_finished(self, node_id: str) -> None:
        state = self.context.node(node_id)
        if state.status == NodeStatus.ERROR and self._failure_policy == FailurePolicy.ABORT_RUN:
            if self._abort_error is None:
                self._abort_error = NodeExecutionFailed(node_id, state.error)
            return
        self._release_successors(node_id)

    def _release_successors(self, node_id: str) -> None:
        for succ in self._succs[node_id]:
            self._waiting[succ] -= 1
            if self._waiting[succ] == 0:
                self._on_inputs_settled(succ)

    def _on_inputs_settled(self, node_id: str) -> None:
        if any(self.context.status(p) == NodeStatus.SUCCESS for p in self._preds[node_id]):
            heapq.heappush(self._ready, (self._position[node_id], node_id))
            return
        self.context.mark_skipped(node_id)
        self._log.log_node_skipped(node_id, "no upstream node succeeded")
        self._release_successors(node_id)

    def _abandon_in_flight(self) -> None:
        for task, node_id in sorted(self._in_flight.items(), key=lambda kv: kv[1]):
            task.cancel()
            self._abandoned.append(node_id)
            self._log.log_node_abandoned(node_id)
        self._in_flight.clear()

    # ── Node execution ──

    def _gather_input(self, node_id: str) -> Any:
        preds = self._preds[node_id]
        if not preds:
            return self._inputs.get(node_id)
        if len(preds) == 1:
            return self.context.output(preds[0])
        # A join keeps its strategy's shape even when some inputs were skipped
        succeeded = [p for p in preds if self.context.status(p) == NodeStatus.SUCCESS]
        payloads = [self.context.output(p) for p in succeeded]
        strategy = self._entries[node_id].merge_strategy(self._configs[node_id])
        return merge_payloads(strategy, payloads)

    async def _run_node(self, node_id: str) -> None:
        node = self._nodes[node_id]
        entry = self._entries[node_id]
        config = self._configs[node_id]

        self.context.mark_running(node_id)
        try:
            payload = self._gather_input(node_id)
        except (TypeError, ValueError) as exc:
            self._log.log_node_enter(node_id, node.node_type, "input merge failed")
            self._fail(node_id, exc, attempts=0)
            return
        self._log.log_node_enter(node_id, node.node_type, summarize_payload(payload))

        policy = entry.retry_policy
        timeout = entry.timeout or self._default_timeout
        attempt = 0
        while True:
            attempt += 1
            try:
                output = await self._invoke(node_id, entry, payload, config, timeout)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                if policy.should_retry(exc, attempt):
                    delay = policy.delay_for(attempt)
                    self._log.log_node_retry(node_id, attempt, policy.max_attempts, delay, exc)
                    if delay > 0:
                        await asyncio.sleep(delay)
                    continue
                self._fail(node_id, exc, attempts=attempt)
                return

            self.context.mark_success(node_id, output, attempt)
            self._log.log_node_exit(
                node_id,
                summarize_payload(output),
                self.context.node(node_id).duration_ms,
                attempt,
            )
            return

    async def _invoke(
        self,
        node_id: str,
        entry: NodeTypeEntry,
        payload: Any,
        config: Dict[str, Any],
        timeout: Optional[float],
    ) -> Any:
        call = call_connector(entry.executor, payload, dict(config))
        if not timeout:
            return await call
        try:
            return await asyncio.wait_for(call, timeout)
        except asyncio.TimeoutError:
            raise NodeTimeout(node_id, timeout) from None

    def _fail(self, node_id: str, exc: BaseException, attempts: int) -> None:
        self.context.mark_error(node_id, exc, attempts)
        self._log.log_node_error(
            node_id, exc, self.context.node(node_id).duration_ms, attempts,
        )

    # ── Aggregation ──

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.monotonic() - started) * 1000)

    def _finish(self, started: float) -> WorkflowResult:
        duration_ms = self._elapsed_ms(started)
        node_errors = {
            nid: self.context.node(nid).error for nid in self.context.nodes_in(NodeStatus.ERROR)
        }

        def result(status: RunStatus, **kwargs: Any) -> WorkflowResult:
            return WorkflowResult(
                run_id=self.context.run_id,
                workflow_id=self._workflow.id,
                status=status,
                context=self.context,
                node_errors=node_errors,
                duration_ms=duration_ms,
                **kwargs,
            )

        if self._abort_error is not None:
            self._log.log_run_failed(self._abort_error, duration_ms)
            return result(RunStatus.FAILED, error=self._abort_error)

        pending = self.context.nodes_in(NodeStatus.IDLE)
        if self._cancelled and (pending or self._abandoned):
            self._log.log_run_cancelled(pending, duration_ms)
            return result(RunStatus.CANCELLED, error=RunCancelled(pending))

        outputs = {
            nid: self.context.output(nid)
            for nid in self._order
            if self._nodes[nid].category == NodeCategory.OUTPUT
            and self.context.status(nid) == NodeStatus.SUCCESS
        }
        if not outputs:
            error = NoOutputProduced()
            self._log.log_run_failed(error, duration_ms)
            return result(RunStatus.FAILED, error=error)

        self._log.log_run_complete(list(outputs), duration_ms, partial=bool(node_errors))
        return result(
            RunStatus.SUCCESS,
            outputs=outputs,
            confidence=overall_confidence(list(outputs.values())),
        )
