"""
Storage Configuration.

Where saved workflows and deployment bundles live on disk.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List

from docflow.config.base import BaseConfig, ConfigField, FieldType, register_config
from docflow.config.sub_config.general.env_utils import env_sync, read_env_defaults


@register_config
@dataclass
class StorageConfig(BaseConfig):
    """Workflow store and bundle output directories."""

    workflow_dir: str = "data/workflows"
    bundle_dir: str = "data/bundles"

    _ENV_MAP = {
        "workflow_dir": "DOCFLOW_WORKFLOW_DIR",
        "bundle_dir": "DOCFLOW_BUNDLE_DIR",
    }

    @classmethod
    def get_default_instance(cls) -> "StorageConfig":
        defaults = read_env_defaults(cls._ENV_MAP, cls.__dataclass_fields__)
        return cls(**defaults)

    @classmethod
    def get_config_name(cls) -> str:
        return "storage"

    @classmethod
    def get_display_name(cls) -> str:
        return "Storage"

    @classmethod
    def get_description(cls) -> str:
        return "Directories for saved workflows and deployment bundles."

    @classmethod
    def get_icon(cls) -> str:
        return "folder"

    @classmethod
    def get_fields_metadata(cls) -> List[ConfigField]:
        return [
            ConfigField(
                name="workflow_dir",
                field_type=FieldType.PATH,
                label="Workflow Directory",
                description="Saved workflow definitions (one JSON file each)",
                default="data/workflows",
                required=True,
                group="paths",
                apply_change=env_sync("DOCFLOW_WORKFLOW_DIR"),
            ),
            ConfigField(
                name="bundle_dir",
                field_type=FieldType.PATH,
                label="Bundle Directory",
                description="Output directory for deployment manifests",
                default="data/bundles",
                required=True,
                group="paths",
                apply_change=env_sync("DOCFLOW_BUNDLE_DIR"),
            ),
        ]
