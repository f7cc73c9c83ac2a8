"""
Configuration Module

Dataclass configs backed by environment variables, with field
metadata for a settings panel.
"""
from docflow.config.base import (
    BaseConfig,
    ConfigField,
    FieldType,
    get_config,
    get_config_class,
    list_configs,
    load_config,
    register_config,
    reset_config_cache,
)
from docflow.config.sub_config.general import EngineConfig, StorageConfig

__all__ = [
    'BaseConfig',
    'ConfigField',
    'FieldType',
    'get_config',
    'get_config_class',
    'list_configs',
    'load_config',
    'register_config',
    'reset_config_cache',
    'EngineConfig',
    'StorageConfig',
]
