import json
import os

import pytest

from docflow.config import (
    EngineConfig,
    StorageConfig,
    get_config,
    get_config_class,
    list_configs,
    load_config,
    reset_config_cache,
)


class TestEngineConfig:

    def test_defaults(self):
        config = get_config(EngineConfig)
        assert config.max_concurrency == 1
        assert config.failure_policy == "abort-run"
        assert config.cancel_policy == "wait"
        assert config.node_timeout is None
        assert config.validate() == []

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("DOCFLOW_MAX_CONCURRENCY", "4")
        monkeypatch.setenv("DOCFLOW_STRICT_OUTPUTS", "yes")
        monkeypatch.setenv("DOCFLOW_NODE_TIMEOUT", "2.5")
        reset_config_cache()
        config = get_config("engine")
        assert config.max_concurrency == 4
        assert config.strict_outputs is True
        assert config.node_timeout == 2.5

    def test_bad_environment_value(self, monkeypatch):
        monkeypatch.setenv("DOCFLOW_STRICT_OUTPUTS", "maybe")
        reset_config_cache()
        with pytest.raises(ValueError):
            get_config(EngineConfig)

    def test_get_config_is_cached(self):
        assert get_config(EngineConfig) is get_config("engine")

    def test_update_validates_and_syncs_environment(self, monkeypatch):
        monkeypatch.setenv("DOCFLOW_FAILURE_POLICY", "abort-run")
        config = EngineConfig()
        changed = config.update({"failure_policy": "skip-downstream", "max_concurrency": 1})
        assert changed == ["failure_policy"]
        assert os.environ["DOCFLOW_FAILURE_POLICY"] == "skip-downstream"

        with pytest.raises(ValueError):
            config.update({"failure_policy": "explode"})
        with pytest.raises(ValueError):
            config.update({"max_concurrency": 0})
        with pytest.raises(ValueError):
            config.update({"colour": "blue"})
        assert config.failure_policy == "skip-downstream"

    def test_schema_lists_fields(self):
        schema = EngineConfig.schema()
        assert schema["name"] == "engine"
        names = [f["name"] for f in schema["fields"]]
        assert names == [
            "max_concurrency", "failure_policy", "cancel_policy",
            "default_node_timeout", "strict_outputs",
        ]


class TestConfigRegistry:

    def test_registered_configs(self):
        assert get_config_class("storage") is StorageConfig
        assert {c.get_config_name() for c in list_configs()} >= {"engine", "storage"}
        with pytest.raises(KeyError):
            get_config_class("missing")

    def test_load_config_from_file(self, tmp_path):
        path = tmp_path / "engine.json"
        path.write_text(json.dumps({"max_concurrency": 3, "unknown": 1}))
        config = load_config(EngineConfig, path)
        assert config.max_concurrency == 3

    def test_load_config_rejects_invalid_values(self, tmp_path):
        path = tmp_path / "engine.json"
        path.write_text(json.dumps({"cancel_policy": "never"}))
        with pytest.raises(ValueError):
            load_config(EngineConfig, path)

    def test_load_config_without_file(self, tmp_path):
        config = load_config(StorageConfig, tmp_path / "missing.json")
        assert config.workflow_dir == str(tmp_path / "workflows")
