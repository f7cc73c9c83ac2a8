from docflow.workflow import NodeCategory, WorkflowNode, get_template, inspect_workflow


class TestInspector:

    def test_invoice_plan(self, registry):
        report = inspect_workflow(get_template("invoice"), registry)
        assert report["order"] == ["pdf-1", "ocr-1", "extract-1", "json-1"]
        assert report["summary"]["is_valid"] is True
        assert report["summary"]["stages"] == 4
        assert "Execution Plan: Invoice Extraction" in report["plan"]
        assert "✓ Valid" in report["plan"]

        extract = next(d for d in report["nodes"] if d["id"] == "extract-1")
        assert extract["step"] == 3
        assert extract["predecessors"] == ["ocr-1"]
        assert extract["retry"] == 3
        assert extract["config"]["model"] == "gpt-4"

    def test_parallel_stage_and_merge_strategy(self, simple_registry, build_workflow):
        wf = build_workflow(
            [("src", "source"), ("left", "tag"), ("right", "tag"), ("join", "collect")],
            [("src", "left"), ("src", "right"), ("left", "join"), ("right", "join")],
            configs={"join": {"merge_strategy": "merge"}},
        )
        report = inspect_workflow(wf, simple_registry)
        assert report["stages"] == [["src"], ["left", "right"], ["join"]]
        assert report["summary"]["max_parallelism"] == 2
        join = next(d for d in report["nodes"] if d["id"] == "join")
        assert join["merge_strategy"] == "merge"
        assert "(parallel)" in report["plan"]

    def test_cyclic_workflow_is_still_inspected(self, simple_registry, build_workflow):
        wf = build_workflow(
            [("a", "source"), ("b", "tag"), ("c", "tag")],
            [("a", "b"), ("b", "c"), ("c", "b")],
        )
        report = inspect_workflow(wf, simple_registry)
        assert report["order"] is None
        assert report["summary"]["is_valid"] is False
        assert report["validation"]["errors"][0]["kind"] == "cycle"
        assert "contains a cycle" in report["plan"]

    def test_registry_problems_are_reported(self, registry):
        workflow = get_template("invoice")
        workflow.add_node(WorkflowNode(id="x", node_type="mystery", category=NodeCategory.PROCESS))
        workflow.update_node_config("ocr-1", {"engine": "abacus"})
        report = inspect_workflow(workflow, registry)
        assert report["summary"]["is_valid"] is False
        assert len(report["validation"]["registry_errors"]) == 2
        assert "✗ Invalid" in report["plan"]
