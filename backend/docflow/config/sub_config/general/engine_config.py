"""
Workflow Engine Configuration.

Controls run concurrency, the failure and cancellation policies,
the default per-node timeout and whether disconnected output nodes
fail validation.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List

from docflow.config.base import BaseConfig, ConfigField, FieldType, register_config
from docflow.config.sub_config.general.env_utils import env_sync, read_env_defaults

FAILURE_POLICY_OPTIONS = [
    {"value": "abort-run", "label": "Abort run on first failure"},
    {"value": "skip-downstream", "label": "Skip nodes downstream of failures"},
]

CANCEL_POLICY_OPTIONS = [
    {"value": "wait", "label": "Let running nodes finish"},
    {"value": "abandon", "label": "Abandon running nodes"},
]


@register_config
@dataclass
class EngineConfig(BaseConfig):
    """Execution settings applied to every run unless overridden."""

    max_concurrency: int = 1
    failure_policy: str = "abort-run"
    cancel_policy: str = "wait"
    default_node_timeout: float = 0.0
    strict_outputs: bool = False

    _ENV_MAP = {
        "max_concurrency": "DOCFLOW_MAX_CONCURRENCY",
        "failure_policy": "DOCFLOW_FAILURE_POLICY",
        "cancel_policy": "DOCFLOW_CANCEL_POLICY",
        "default_node_timeout": "DOCFLOW_NODE_TIMEOUT",
        "strict_outputs": "DOCFLOW_STRICT_OUTPUTS",
    }

    @classmethod
    def get_default_instance(cls) -> "EngineConfig":
        defaults = read_env_defaults(cls._ENV_MAP, cls.__dataclass_fields__)
        return cls(**defaults)

    @classmethod
    def get_config_name(cls) -> str:
        return "engine"

    @classmethod
    def get_display_name(cls) -> str:
        return "Workflow Engine"

    @classmethod
    def get_description(cls) -> str:
        return "Concurrency, failure handling and timeouts for workflow runs."

    @classmethod
    def get_category(cls) -> str:
        return "general"

    @classmethod
    def get_icon(cls) -> str:
        return "workflow"

    @property
    def node_timeout(self):
        """``default_node_timeout`` with 0 meaning no timeout."""
        return self.default_node_timeout if self.default_node_timeout > 0 else None

    @classmethod
    def get_fields_metadata(cls) -> List[ConfigField]:
        return [
            ConfigField(
                name="max_concurrency",
                field_type=FieldType.NUMBER,
                label="Max Concurrent Nodes",
                description="Eligible nodes run at once (1 = strictly sequential)",
                default=1,
                min_value=1,
                max_value=64,
                group="execution",
                apply_change=env_sync("DOCFLOW_MAX_CONCURRENCY"),
            ),
            ConfigField(
                name="failure_policy",
                field_type=FieldType.SELECT,
                label="Failure Policy",
                description="What happens to the run when a node fails",
                default="abort-run",
                options=FAILURE_POLICY_OPTIONS,
                group="execution",
                apply_change=env_sync("DOCFLOW_FAILURE_POLICY"),
            ),
            ConfigField(
                name="cancel_policy",
                field_type=FieldType.SELECT,
                label="Cancel Policy",
                description="What happens to running nodes when a run is cancelled",
                default="wait",
                options=CANCEL_POLICY_OPTIONS,
                group="execution",
                apply_change=env_sync("DOCFLOW_CANCEL_POLICY"),
            ),
            ConfigField(
                name="default_node_timeout",
                field_type=FieldType.NUMBER,
                label="Default Node Timeout (s)",
                description="Applies to node types without their own timeout (0 = none)",
                default=0.0,
                min_value=0,
                group="execution",
                apply_change=env_sync("DOCFLOW_NODE_TIMEOUT"),
            ),
            ConfigField(
                name="strict_outputs",
                field_type=FieldType.BOOLEAN,
                label="Strict Output Validation",
                description="Treat output nodes unreachable from inputs as errors",
                default=False,
                group="validation",
                apply_change=env_sync("DOCFLOW_STRICT_OUTPUTS"),
            ),
        ]
