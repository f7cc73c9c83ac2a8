from docflow.config.sub_config.general.engine_config import EngineConfig
from docflow.config.sub_config.general.storage_config import StorageConfig

__all__ = ["EngineConfig", "StorageConfig"]
