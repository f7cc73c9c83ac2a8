import asyncio

import pytest

from docflow.connectors import RetryPolicy
from docflow.exceptions import (
    ConnectorError,
    NodeExecutionFailed,
    NodeTimeout,
    NoOutputProduced,
    RunCancelled,
    TransientConnectorError,
    UnknownTypeError,
    ValidationFailed,
)
from docflow.workflow import (
    NodeCategory,
    NodeStatus,
    RunEvent,
    RunStatus,
    WorkflowExecutor,
    WorkflowNode,
    get_template,
)
from docflow.config import EngineConfig


def _events(result):
    return [entry.event for entry in result.logs]


class TestDocumentPipeline:

    @pytest.mark.asyncio
    async def test_invoice_template_runs_end_to_end(self, registry, pdf_bytes, ocr, extractor):
        workflow = get_template("invoice")
        result = await WorkflowExecutor(workflow, registry).run({"pdf-1": pdf_bytes})

        assert result.status == RunStatus.SUCCESS
        output = result.outputs["json-1"]
        assert output["extracted_data"]["invoice_number"] == "INV-1001"
        assert output["extracted_data"]["vendor"] is None
        assert result.confidence == pytest.approx(0.95)
        assert ocr.calls == [{"kind": "pdf", "engine": "tesseract", "language": "eng"}]
        assert extractor.calls[0]["fields"] == ["invoice_number", "date", "vendor", "total", "items"]
        assert set(result.node_statuses.values()) == {NodeStatus.SUCCESS}

    @pytest.mark.asyncio
    async def test_json_output_passes_the_extraction_through(self, registry, pdf_bytes):
        result = await WorkflowExecutor(get_template("invoice"), registry).run({"pdf-1": pdf_bytes})

        assert result.outputs["json-1"] == result.context.output("extract-1")
        succeeded = [e.node_id for e in result.logs if e.event == RunEvent.NODE_SUCCEEDED]
        assert succeeded == ["pdf-1", "ocr-1", "extract-1", "json-1"]

    @pytest.mark.asyncio
    async def test_ocr_failure_stops_the_run(self, registry, pdf_bytes, ocr, extractor):
        ocr.error = ConnectorError("engine crashed")
        result = await WorkflowExecutor(get_template("invoice"), registry).run({"pdf-1": pdf_bytes})

        assert result.status == RunStatus.FAILED
        assert isinstance(result.error, NodeExecutionFailed)
        assert result.error.node_id == "ocr-1"
        assert "engine crashed" in str(result.error)
        assert result.node_statuses == {
            "pdf-1": NodeStatus.SUCCESS,
            "ocr-1": NodeStatus.ERROR,
            "extract-1": NodeStatus.IDLE,
            "json-1": NodeStatus.IDLE,
        }
        assert extractor.calls == []
        assert _events(result)[-1] == RunEvent.RUN_FAILED
        with pytest.raises(NodeExecutionFailed):
            result.unwrap()

    @pytest.mark.asyncio
    async def test_result_serializes_for_the_editor(self, registry, pdf_bytes):
        result = await WorkflowExecutor(get_template("invoice"), registry).run({"pdf-1": pdf_bytes})
        data = result.to_dict()
        assert data["status"] == "success"
        assert data["nodes"]["ocr-1"] == "success"
        assert data["outputs"]["json-1"]["model"] == "gpt-4"
        assert data["logs"][0]["event"] == "run_started"
        assert data["processing_time_ms"] >= 0


class TestValidationBeforeExecution:

    @pytest.mark.asyncio
    async def test_cycle_is_rejected_before_any_connector_runs(self, simple_registry, call_log, build_workflow):
        wf = build_workflow(
            [("a", "source"), ("b", "tag"), ("c", "tag"), ("out", "collect")],
            [("a", "b"), ("b", "c"), ("c", "b"), ("c", "out")],
        )
        with pytest.raises(ValidationFailed):
            await WorkflowExecutor(wf, simple_registry).run({"a": "doc"})
        assert call_log.names == []

    @pytest.mark.asyncio
    async def test_unknown_node_type_is_rejected(self, simple_registry, call_log, build_workflow):
        wf = build_workflow([("a", "source"), ("out", "collect")], [("a", "out")])
        wf.add_node(WorkflowNode(id="x", node_type="mystery", category=NodeCategory.PROCESS))
        wf.connect("a", "x")
        with pytest.raises(UnknownTypeError):
            await WorkflowExecutor(wf, simple_registry).run({"a": "doc"})
        assert call_log.names == []

    def test_max_concurrency_must_be_positive(self, simple_registry, build_workflow):
        wf = build_workflow([("a", "source")], [])
        with pytest.raises(ValueError):
            WorkflowExecutor(wf, simple_registry, max_concurrency=0)


class TestMerging:

    DIAMOND = (
        [("src", "source"), ("left", "tag"), ("right", "tag"), ("join", "collect")],
        [("src", "left"), ("src", "right"), ("left", "join"), ("right", "join")],
    )

    @pytest.mark.asyncio
    async def test_concat_orders_inputs_by_predecessor_id(self, simple_registry, build_workflow):
        wf = build_workflow(*self.DIAMOND)
        result = await WorkflowExecutor(wf, simple_registry).run({"src": "doc"})
        assert result.outputs["join"] == [
            {"tag": "left", "input": "doc"},
            {"tag": "right", "input": "doc"},
        ]

    @pytest.mark.asyncio
    async def test_override_keeps_the_last_input(self, simple_registry, build_workflow):
        wf = build_workflow(*self.DIAMOND, configs={"join": {"merge_strategy": "override"}})
        result = await WorkflowExecutor(wf, simple_registry).run({"src": "doc"})
        assert result.outputs["join"] == {"tag": "right", "input": "doc"}

    @pytest.mark.asyncio
    async def test_merge_combines_mappings(self, simple_registry, build_workflow):
        wf = build_workflow(
            *self.DIAMOND,
            configs={"join": {"merge_strategy": "merge"}, "left": {"delay": 0}},
        )
        result = await WorkflowExecutor(wf, simple_registry).run({"src": "doc"})
        assert result.outputs["join"] == {"tag": "right", "input": "doc"}

    @pytest.mark.asyncio
    async def test_merge_of_non_mappings_fails_the_node(self, simple_registry, build_workflow):
        wf = build_workflow(
            [("a", "source"), ("b", "source"), ("join", "collect")],
            [("a", "join"), ("b", "join")],
            configs={"join": {"merge_strategy": "merge"}},
        )
        result = await WorkflowExecutor(wf, simple_registry).run({"a": "x", "b": "y"})
        assert result.status == RunStatus.FAILED
        assert result.error.node_id == "join"
        assert result.context.node("join").attempts == 0


class TestFailurePolicies:

    BRANCHES = (
        [("src", "source"), ("bad", "fail"), ("good", "tag"), ("out1", "collect"), ("out2", "collect")],
        [("src", "bad"), ("src", "good"), ("bad", "out1"), ("good", "out2")],
    )

    @pytest.mark.asyncio
    async def test_abort_run_stops_scheduling(self, simple_registry, call_log, build_workflow):
        wf = build_workflow(*self.BRANCHES)
        result = await WorkflowExecutor(wf, simple_registry, failure_policy="abort-run").run({"src": "doc"})

        assert result.status == RunStatus.FAILED
        assert result.error.node_id == "bad"
        assert call_log.names == ["src", "bad"]
        assert result.node_statuses["good"] == NodeStatus.IDLE

    @pytest.mark.asyncio
    async def test_skip_downstream_keeps_healthy_branches(self, simple_registry, build_workflow):
        wf = build_workflow(*self.BRANCHES)
        result = await WorkflowExecutor(
            wf, simple_registry, failure_policy="skip-downstream",
        ).run({"src": "doc"})

        assert result.status == RunStatus.SUCCESS
        assert result.is_partial
        assert list(result.outputs) == ["out2"]
        assert result.node_statuses["out1"] == NodeStatus.SKIPPED
        assert list(result.node_errors) == ["bad"]
        assert RunEvent.NODE_SKIPPED in _events(result)

    @pytest.mark.asyncio
    async def test_join_keeps_list_shape_when_a_branch_fails(self, simple_registry, build_workflow):
        wf = build_workflow(
            [("src", "source"), ("b", "fail"), ("c", "tag"), ("d", "collect")],
            [("src", "b"), ("src", "c"), ("b", "d"), ("c", "d")],
        )
        result = await WorkflowExecutor(
            wf, simple_registry, failure_policy="skip-downstream",
        ).run({"src": "doc"})

        assert result.status == RunStatus.SUCCESS
        assert result.outputs["d"] == [{"tag": "c", "input": "doc"}]

    @pytest.mark.asyncio
    async def test_no_output_produced(self, simple_registry, build_workflow):
        wf = build_workflow(
            [("src", "source"), ("bad", "fail"), ("out", "collect")],
            [("src", "bad"), ("bad", "out")],
        )
        result = await WorkflowExecutor(
            wf, simple_registry, failure_policy="skip-downstream",
        ).run({"src": "doc"})
        assert result.status == RunStatus.FAILED
        assert isinstance(result.error, NoOutputProduced)

    @pytest.mark.asyncio
    async def test_policy_defaults_come_from_engine_config(self, simple_registry, build_workflow):
        wf = build_workflow(*self.BRANCHES)
        config = EngineConfig(failure_policy="skip-downstream")
        executor = WorkflowExecutor(wf, simple_registry, config=config)
        assert executor.failure_policy.value == "skip-downstream"
        result = await executor.run({"src": "doc"})
        assert result.ok


class TestRetryAndTimeout:

    def _flaky_registry(self, simple_registry, failures, exc_type):
        attempts = []

        async def flaky(payload, config):
            attempts.append(len(attempts) + 1)
            if len(attempts) <= failures:
                raise exc_type("temporarily unavailable")
            return "recovered"

        simple_registry.register(
            "flaky", NodeCategory.PROCESS, {}, flaky,
            retry_policy=RetryPolicy(max_attempts=3, backoff_seconds=0),
        )
        return attempts

    @pytest.mark.asyncio
    async def test_transient_errors_are_retried(self, simple_registry, build_workflow):
        attempts = self._flaky_registry(simple_registry, 2, TransientConnectorError)
        wf = build_workflow(
            [("src", "source"), ("f", "flaky"), ("out", "collect")],
            [("src", "f"), ("f", "out")],
            categories={"flaky": NodeCategory.PROCESS},
        )
        result = await WorkflowExecutor(wf, simple_registry).run({"src": "doc"})

        assert result.ok
        assert result.outputs["out"] == "recovered"
        assert attempts == [1, 2, 3]
        assert result.context.node("f").attempts == 3
        assert _events(result).count(RunEvent.NODE_RETRY) == 2

    @pytest.mark.asyncio
    async def test_retry_budget_is_bounded(self, simple_registry, build_workflow):
        attempts = self._flaky_registry(simple_registry, 5, TransientConnectorError)
        wf = build_workflow(
            [("src", "source"), ("f", "flaky"), ("out", "collect")],
            [("src", "f"), ("f", "out")],
            categories={"flaky": NodeCategory.PROCESS},
        )
        result = await WorkflowExecutor(wf, simple_registry).run({"src": "doc"})
        assert result.status == RunStatus.FAILED
        assert attempts == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_permanent_errors_are_not_retried(self, simple_registry, build_workflow):
        attempts = self._flaky_registry(simple_registry, 1, ConnectorError)
        wf = build_workflow(
            [("src", "source"), ("f", "flaky"), ("out", "collect")],
            [("src", "f"), ("f", "out")],
            categories={"flaky": NodeCategory.PROCESS},
        )
        result = await WorkflowExecutor(wf, simple_registry).run({"src": "doc"})
        assert result.status == RunStatus.FAILED
        assert attempts == [1]

    @pytest.mark.asyncio
    async def test_node_timeout(self, simple_registry, build_workflow):
        async def slow(payload, config):
            await asyncio.sleep(5)

        simple_registry.register("slow", NodeCategory.PROCESS, {}, slow, timeout=0.05)
        wf = build_workflow(
            [("src", "source"), ("s", "slow"), ("out", "collect")],
            [("src", "s"), ("s", "out")],
            categories={"slow": NodeCategory.PROCESS},
        )
        result = await WorkflowExecutor(wf, simple_registry).run({"src": "doc"})

        assert result.status == RunStatus.FAILED
        assert isinstance(result.error.cause, NodeTimeout)
        assert result.error.cause.timeout == 0.05

    @pytest.mark.asyncio
    async def test_default_timeout_applies_to_types_without_one(self, simple_registry, build_workflow):
        wf = build_workflow(
            [("src", "source"), ("t", "tag"), ("out", "collect")],
            [("src", "t"), ("t", "out")],
            configs={"t": {"delay": 5}},
        )
        result = await WorkflowExecutor(wf, simple_registry, default_timeout=0.05).run({"src": "doc"})
        assert isinstance(result.node_errors["t"], NodeTimeout)


class TestConcurrency:

    FAN = (
        [("src", "source"), ("a", "tag"), ("b", "tag"), ("c", "tag"), ("out", "collect")],
        [("src", "a"), ("src", "b"), ("src", "c"), ("a", "out"), ("b", "out"), ("c", "out")],
    )
    DELAYS = {"a": {"delay": 0.03}, "b": {"delay": 0.01}, "c": {"delay": 0.02}}

    @pytest.mark.asyncio
    async def test_sequential_by_default(self, simple_registry, call_log, build_workflow):
        wf = build_workflow(*self.FAN, configs=self.DELAYS)
        result = await WorkflowExecutor(wf, simple_registry).run({"src": "doc"})
        assert result.ok
        assert call_log.peak == 1
        assert call_log.names == ["src", "a", "b", "c", "out"]

    @pytest.mark.asyncio
    async def test_parallel_runs_respect_the_limit(self, simple_registry, call_log, build_workflow):
        wf = build_workflow(*self.FAN, configs=self.DELAYS)
        result = await WorkflowExecutor(wf, simple_registry, max_concurrency=2).run({"src": "doc"})
        assert result.ok
        assert call_log.peak == 2
        assert [item["tag"] for item in result.outputs["out"]] == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_sync_connectors_run_off_the_loop(self, simple_registry, build_workflow):
        def shout(payload, config):
            return str(payload).upper()

        simple_registry.register("shout", NodeCategory.PROCESS, {}, shout)
        wf = build_workflow(
            [("src", "source"), ("s", "shout"), ("out", "collect")],
            [("src", "s"), ("s", "out")],
            categories={"shout": NodeCategory.PROCESS},
        )
        result = await WorkflowExecutor(wf, simple_registry).run({"src": "doc"})
        assert result.outputs["out"] == "DOC"


class TestCancellation:

    def _gated(self, simple_registry, build_workflow):
        started, gate = asyncio.Event(), asyncio.Event()

        async def blocking(payload, config):
            started.set()
            await gate.wait()
            return payload

        simple_registry.register("blocking", NodeCategory.PROCESS, {}, blocking)
        wf = build_workflow(
            [("src", "source"), ("slow", "blocking"), ("out", "collect")],
            [("src", "slow"), ("slow", "out")],
            categories={"blocking": NodeCategory.PROCESS},
        )
        return wf, started, gate

    @pytest.mark.asyncio
    async def test_cancel_waits_for_running_nodes(self, simple_registry, build_workflow):
        wf, started, gate = self._gated(simple_registry, build_workflow)
        handle = WorkflowExecutor(wf, simple_registry).start({"src": "doc"})
        await started.wait()
        handle.cancel()
        gate.set()
        result = await handle.result()

        assert result.status == RunStatus.CANCELLED
        assert isinstance(result.error, RunCancelled)
        assert result.error.pending == ["out"]
        assert result.node_statuses["slow"] == NodeStatus.SUCCESS
        assert result.node_statuses["out"] == NodeStatus.IDLE
        assert _events(result)[-1] == RunEvent.RUN_CANCELLED

    @pytest.mark.asyncio
    async def test_cancel_can_abandon_running_nodes(self, simple_registry, build_workflow):
        wf, started, _ = self._gated(simple_registry, build_workflow)
        handle = WorkflowExecutor(wf, simple_registry).start({"src": "doc"})
        await started.wait()
        handle.cancel(abandon=True)
        result = await handle.result()

        assert result.status == RunStatus.CANCELLED
        assert result.node_statuses["slow"] == NodeStatus.RUNNING
        abandoned = [e for e in result.logs if e.event == RunEvent.NODE_ABANDONED]
        assert [e.node_id for e in abandoned] == ["slow"]

    @pytest.mark.asyncio
    async def test_waiting_cancel_can_be_escalated_to_abandon(self, simple_registry, build_workflow):
        wf, started, _ = self._gated(simple_registry, build_workflow)
        handle = WorkflowExecutor(wf, simple_registry).start({"src": "doc"})
        await started.wait()
        handle.cancel()
        await asyncio.sleep(0)
        handle.cancel(abandon=True)
        result = await asyncio.wait_for(handle.result(), timeout=1.0)

        assert result.status == RunStatus.CANCELLED
        assert result.node_statuses["slow"] == NodeStatus.RUNNING
        assert result.node_statuses["out"] == NodeStatus.IDLE
        abandoned = [e for e in result.logs if e.event == RunEvent.NODE_ABANDONED]
        assert [e.node_id for e in abandoned] == ["slow"]


class TestRunLog:

    @pytest.mark.asyncio
    async def test_stream_yields_every_entry_in_order(self, simple_registry, build_workflow):
        wf = build_workflow(
            [("src", "source"), ("t", "tag"), ("out", "collect")],
            [("src", "t"), ("t", "out")],
        )
        handle = WorkflowExecutor(wf, simple_registry).start({"src": "doc"})
        streamed = [entry async for entry in handle.stream()]
        result = await handle.result()

        assert [e.seq for e in streamed] == list(range(1, len(streamed) + 1))
        assert streamed == result.logs
        assert streamed[0].event == RunEvent.RUN_STARTED
        assert streamed[-1].event == RunEvent.RUN_COMPLETED
        assert handle.context.is_finished

    @pytest.mark.asyncio
    async def test_observer_sees_entries_and_cannot_break_the_run(self, simple_registry, build_workflow):
        wf = build_workflow([("src", "source"), ("out", "collect")], [("src", "out")])
        seen = []

        def observer(entry):
            seen.append(entry.event)
            raise RuntimeError("observer bug")

        result = await WorkflowExecutor(wf, simple_registry).run({"src": "doc"}, observer=observer)
        assert result.ok
        assert seen == _events(result)

    @pytest.mark.asyncio
    async def test_node_entries_carry_node_ids(self, simple_registry, build_workflow):
        wf = build_workflow([("src", "source"), ("out", "collect")], [("src", "out")])
        result = await WorkflowExecutor(wf, simple_registry).run({"src": "doc"})
        started = [e.node_id for e in result.logs if e.event == RunEvent.NODE_STARTED]
        assert started == ["src", "out"]

    @pytest.mark.asyncio
    async def test_run_uses_a_snapshot(self, simple_registry, build_workflow):
        wf = build_workflow([("src", "source"), ("out", "collect")], [("src", "out")])
        handle = WorkflowExecutor(wf, simple_registry).start({"src": "doc"})
        wf.add_node(WorkflowNode(id="late", node_type="tag", category=NodeCategory.PROCESS))
        result = await handle.result()
        assert "late" not in result.node_statuses

    def test_run_sync(self, simple_registry, build_workflow):
        wf = build_workflow([("src", "source"), ("out", "collect")], [("src", "out")])
        result = WorkflowExecutor(wf, simple_registry).run_sync({"src": "doc"})
        assert result.outputs == {"out": "doc"}
