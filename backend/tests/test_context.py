import logging
import threading

import pytest

from docflow.exceptions import InvalidTransitionError
from docflow.logging import RunLogger
from docflow.workflow import ExecutionContext, LogLevel, MergeStrategy, NodeStatus, RunEvent
from docflow.workflow.payload import deep_merge, merge_payloads, overall_confidence, summarize_payload


class TestExecutionContext:

    def test_status_only_moves_forward(self):
        context = ExecutionContext(["a"])
        context.mark_running("a")
        context.mark_success("a", "out", attempts=1)
        assert context.output("a") == "out"
        with pytest.raises(InvalidTransitionError):
            context.mark_running("a")
        with pytest.raises(InvalidTransitionError):
            context.mark_skipped("a")

    def test_idle_can_be_skipped_but_not_finished(self):
        context = ExecutionContext(["a", "b"])
        context.mark_skipped("a")
        with pytest.raises(InvalidTransitionError):
            context.mark_success("b", None, attempts=1)
        assert context.nodes_in(NodeStatus.IDLE) == ["b"]

    def test_concurrent_appends_get_unique_ordered_seqs(self):
        context = ExecutionContext([])

        def writer(n):
            for i in range(200):
                context.append(RunEvent.NODE_STARTED, f"w{n}-{i}")

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        seqs = [entry.seq for entry in context.logs]
        assert seqs == list(range(1, 801))

    def test_unsubscribe(self):
        context = ExecutionContext([])
        seen = []
        unsubscribe = context.subscribe(seen.append)
        context.append(RunEvent.RUN_STARTED, "one")
        unsubscribe()
        context.append(RunEvent.RUN_COMPLETED, "two")
        assert [e.message for e in seen] == ["one"]
        assert context.is_finished


class TestRunLogger:

    def test_entries_are_mirrored_to_the_module_logger(self, caplog):
        context = ExecutionContext(["ocr-1"], run_id="run42")
        log = RunLogger(context, "Invoice")
        with caplog.at_level("INFO", logger="docflow.logging.run_logger"):
            log.log_run_start(1, ["ocr-1"])
            entry = log.log_node_error("ocr-1", RuntimeError("bad scan"), 12, 1)

        assert entry.level == LogLevel.ERROR
        assert entry.node_id == "ocr-1"
        assert entry.data["error_type"] == "RuntimeError"
        assert any(r.getMessage().startswith("[run42] ") for r in caplog.records)
        assert [e.event for e in context.logs] == [RunEvent.RUN_STARTED, RunEvent.NODE_FAILED]

    def test_levels_map_to_standard_logging_levels(self, caplog):
        log = RunLogger(ExecutionContext(["ocr-1"], run_id="run7"))
        with caplog.at_level("INFO", logger="docflow.logging.run_logger"):
            log.log_run_start(1, ["ocr-1"])
            log.log_node_skipped("ocr-1", "no input")
            log.log_node_error("ocr-1", RuntimeError("bad scan"), 3, 1)

        levels = [r.levelno for r in caplog.records if r.name == "docflow.logging.run_logger"]
        assert levels == [logging.INFO, logging.WARNING, logging.ERROR]


class TestPayloads:

    def test_merge_strategies(self):
        payloads = [{"a": 1, "b": 1}, {"b": 2}]
        assert merge_payloads(MergeStrategy.CONCAT, payloads) == payloads
        assert merge_payloads(MergeStrategy.OVERRIDE, payloads) == {"b": 2}
        assert merge_payloads(MergeStrategy.MERGE, payloads) == {"a": 1, "b": 2}
        assert merge_payloads(MergeStrategy.CONCAT, ["only"]) == ["only"]
        assert merge_payloads(MergeStrategy.OVERRIDE, ["only"]) == "only"
        with pytest.raises(TypeError):
            merge_payloads(MergeStrategy.MERGE, [{"a": 1}, "text"])

    def test_deep_merge_does_not_mutate(self):
        base = {"ocr": {"dpi": 300, "lang": "eng"}}
        merged = deep_merge(base, {"ocr": {"lang": "deu"}})
        assert merged == {"ocr": {"dpi": 300, "lang": "deu"}}
        merged["ocr"]["dpi"] = 1
        assert base == {"ocr": {"dpi": 300, "lang": "eng"}}

    def test_overall_confidence_is_the_minimum(self):
        assert overall_confidence([{"confidence": 0.9}, {"confidence": 0.7}, "text"]) == 0.7
        assert overall_confidence([{"confidence": True}]) is None

    def test_summaries(self):
        assert summarize_payload(b"abc") == "3 bytes"
        assert summarize_payload([1, 2]) == "2 items"
        assert summarize_payload({"text": "x"}).startswith("{...} (1 keys")
        assert summarize_payload(None) == "no output"
