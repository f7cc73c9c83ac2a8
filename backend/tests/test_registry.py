import pytest

from docflow.connectors import RetryPolicy
from docflow.exceptions import ConfigValidationError, DuplicateTypeError, UnknownTypeError
from docflow.workflow import (
    BaseNode,
    MergeStrategy,
    NodeCategory,
    NodeParameter,
    NodeRegistry,
    WorkflowNode,
    build_node_registry,
)


BUILTIN_TYPES = {
    "input": ["image", "pdf", "text", "url"],
    "process": ["ai-extract", "ocr", "parser", "regex", "table"],
    "transform": ["filter", "map", "merge", "validate"],
    "output": ["csv", "database", "json", "webhook"],
}


class EchoConnector:
    def execute(self, payload, config):
        return payload


class TestNodeRegistry:

    def test_register_and_resolve(self):
        registry = NodeRegistry()
        entry = registry.register("echo", "process", {"a": 1}, EchoConnector())
        assert registry.resolve("echo") is entry
        assert entry.category == NodeCategory.PROCESS
        assert "echo" in registry
        assert len(registry) == 1

    def test_duplicate_type_is_rejected(self):
        registry = NodeRegistry()
        registry.register("echo", NodeCategory.PROCESS, {}, EchoConnector())
        with pytest.raises(DuplicateTypeError):
            registry.register("echo", NodeCategory.PROCESS, {}, EchoConnector())

    def test_unknown_type(self):
        with pytest.raises(UnknownTypeError) as excinfo:
            NodeRegistry().resolve("nope", node_id="n1")
        assert excinfo.value.node_id == "n1"

    def test_non_connector_executor_is_rejected(self):
        with pytest.raises(TypeError):
            NodeRegistry().register("bad", NodeCategory.PROCESS, {}, 42)

    def test_effective_config_deep_merges_overrides(self):
        registry = NodeRegistry()
        registry.register(
            "echo", NodeCategory.PROCESS,
            {"engine": "tesseract", "options": {"dpi": 300, "lang": "eng"}},
            EchoConnector(),
        )
        config = registry.effective_config("echo", {"options": {"lang": "deu"}})
        assert config == {"engine": "tesseract", "options": {"dpi": 300, "lang": "deu"}}
        assert registry.resolve("echo").default_config["options"]["lang"] == "eng"

    def test_parameters_are_checked(self):
        registry = NodeRegistry()
        registry.register(
            "echo", NodeCategory.PROCESS, {"engine": "tesseract"}, EchoConnector(),
            parameters=[
                NodeParameter(name="engine", type="select", options=["tesseract", "vision"]),
                NodeParameter(name="dpi", type="integer", min=72),
            ],
        )
        assert registry.validate_config("echo", {"dpi": 300})["engine"] == "tesseract"
        with pytest.raises(ConfigValidationError) as excinfo:
            registry.validate_config("echo", {"engine": "other", "dpi": 10, "extra": True})
        problems = " ".join(excinfo.value.problems)
        assert "engine" in problems and "dpi" in problems and "unknown option 'extra'" in problems

    def test_invalid_merge_strategy(self):
        registry = NodeRegistry()
        registry.register("echo", NodeCategory.PROCESS, {}, EchoConnector())
        with pytest.raises(ConfigValidationError):
            registry.validate_config("echo", {"merge_strategy": "zip"})

    def test_category_mismatch(self):
        registry = NodeRegistry()
        registry.register("echo", NodeCategory.PROCESS, {}, EchoConnector())
        node = WorkflowNode(id="n", node_type="echo", category=NodeCategory.OUTPUT)
        with pytest.raises(ConfigValidationError):
            registry.check_node(node)

    def test_create_node_and_update_config(self):
        registry = NodeRegistry()
        registry.register(
            "echo", NodeCategory.PROCESS, {}, EchoConnector(), label="Echo",
            parameters=[NodeParameter(name="level", type="number", default=1)],
        )
        node = registry.create_node("echo", node_id="e1")
        assert node.label == "Echo"
        assert node.category == NodeCategory.PROCESS
        updated = registry.update_node_config(node, {"level": 2})
        assert updated.config == {"level": 2}
        assert node.config == {}
        with pytest.raises(ConfigValidationError):
            registry.update_node_config(node, {"level": "high"})

    def test_retry_policy_and_timeout_are_kept(self):
        registry = NodeRegistry()
        policy = RetryPolicy(max_attempts=3, backoff_seconds=0.1)
        entry = registry.register(
            "echo", NodeCategory.PROCESS, {}, EchoConnector(), retry_policy=policy, timeout=5,
        )
        assert entry.retry_policy.max_attempts == 3
        assert entry.timeout == 5
        assert entry.to_dict()["retry"]["max_attempts"] == 3


class TestBuiltinNodes:

    def test_every_builtin_type_is_registered(self, registry):
        grouped = registry.by_category()
        assert {cat: sorted(e.type_id for e in entries) for cat, entries in grouped.items()} == BUILTIN_TYPES

    def test_palette_entries_carry_metadata(self, registry):
        entry = registry.resolve("ocr").to_dict()
        assert entry["label"] == "OCR Processing"
        assert entry["default_config"] == {"engine": "tesseract", "language": "eng"}
        assert [p["name"] for p in entry["parameters"]] == ["engine", "language"]

    def test_builtin_registries_are_independent(self, services):
        first = build_node_registry(services)
        second = build_node_registry()
        assert first.resolve("ocr").executor is not second.resolve("ocr").executor
        assert first.resolve("ocr").executor.services is services

    def test_merge_node_reads_its_strategy_option(self, registry):
        entry = registry.resolve("merge")
        assert entry.merge_strategy({"strategy": "merge"}) == MergeStrategy.MERGE
        assert entry.merge_strategy({}) == MergeStrategy.CONCAT

    def test_ai_extract_has_a_retry_budget(self, registry):
        entry = registry.resolve("ai-extract")
        assert entry.retry_policy.max_attempts == 3
        assert entry.timeout == 120.0

    def test_custom_node_class(self):
        class UpperNode(BaseNode):
            node_type = "upper"
            category = NodeCategory.TRANSFORM

            async def execute(self, payload, config):
                return payload.upper()

        registry = NodeRegistry()
        entry = registry.register_node_class(UpperNode)
        assert entry.category == NodeCategory.TRANSFORM
        assert isinstance(entry.executor, UpperNode)
