"""
Configuration base — dataclass configs with field metadata.

Each config is a ``@dataclass`` subclass of ``BaseConfig`` registered
with ``@register_config``. Defaults come from the environment through
the class's ``_ENV_MAP``; ``get_fields_metadata()`` describes every
field for a settings UI, and each ``ConfigField`` may carry an
``apply_change(old, new)`` hook that ``BaseConfig.update()`` calls.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, fields
from enum import Enum
from logging import getLogger
from pathlib import Path
from typing import Any, Callable, ClassVar, Dict, List, Mapping, Optional, Type, TypeVar, Union

logger = getLogger(__name__)


class FieldType(str, Enum):
    STRING = "string"
    PASSWORD = "password"
    NUMBER = "number"
    BOOLEAN = "boolean"
    SELECT = "select"
    TEXTAREA = "textarea"
    URL = "url"
    PATH = "path"


@dataclass
class ConfigField:
    """Descriptor of one config field as shown in the settings panel."""

    name: str
    field_type: FieldType
    label: str
    description: str = ""
    required: bool = False
    default: Any = None
    placeholder: str = ""
    options: List[Dict[str, Any]] = field(default_factory=list)
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    group: str = "general"
    secure: bool = False
    apply_change: Optional[Callable[[Any, Any], None]] = None

    def check(self, value: Any) -> Optional[str]:
        if value in (None, "") and self.required:
            return f"{self.label} is required"
        if self.field_type == FieldType.SELECT and self.options:
            allowed = [o["value"] for o in self.options]
            if value not in allowed:
                return f"{self.label} must be one of {allowed}"
        if self.field_type == FieldType.NUMBER and value is not None:
            if self.min_value is not None and value < self.min_value:
                return f"{self.label} must be >= {self.min_value:g}"
            if self.max_value is not None and value > self.max_value:
                return f"{self.label} must be <= {self.max_value:g}"
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "type": self.field_type.value,
            "label": self.label,
            "description": self.description,
            "required": self.required,
            "default": self.default,
            "placeholder": self.placeholder,
            "options": self.options,
            "min": self.min_value,
            "max": self.max_value,
            "group": self.group,
            "secure": self.secure,
        }


C = TypeVar("C", bound="BaseConfig")


class BaseConfig:
    """Base class for registered config dataclasses."""

    _ENV_MAP: ClassVar[Dict[str, str]] = {}

    @classmethod
    def get_default_instance(cls: Type[C]) -> C:
        return cls()

    @classmethod
    def get_config_name(cls) -> str:
        raise NotImplementedError

    @classmethod
    def get_display_name(cls) -> str:
        return cls.get_config_name()

    @classmethod
    def get_description(cls) -> str:
        return ""

    @classmethod
    def get_category(cls) -> str:
        return "general"

    @classmethod
    def get_icon(cls) -> str:
        return "settings"

    @classmethod
    def get_fields_metadata(cls) -> List[ConfigField]:
        return []

    # ── Values ──

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def validate(self) -> List[str]:
        """Return problems with the current values (empty when valid)."""
        problems = []
        for meta in self.get_fields_metadata():
            problem = meta.check(getattr(self, meta.name, None))
            if problem:
                problems.append(problem)
        return problems

    def update(self, changes: Mapping[str, Any]) -> List[str]:
        """Apply ``changes`` in place and run each field's apply hook.

        Raises ``ValueError`` for unknown fields or invalid values; on
        error nothing is changed. Returns the names that changed.
        """
        known = {f.name for f in fields(self)}
        unknown = sorted(set(changes) - known)
        if unknown:
            raise ValueError(f"Unknown {self.get_config_name()} field(s): {', '.join(unknown)}")

        metadata = {m.name: m for m in self.get_fields_metadata()}
        problems = []
        for name, value in changes.items():
            problem = metadata[name].check(value) if name in metadata else None
            if problem:
                problems.append(problem)
        if problems:
            raise ValueError("; ".join(problems))

        changed = []
        for name, value in changes.items():
            old = getattr(self, name)
            if old == value:
                continue
            setattr(self, name, value)
            changed.append(name)
            hook = metadata[name].apply_change if name in metadata else None
            if hook is not None:
                hook(old, value)
        if changed:
            logger.info(f"Config '{self.get_config_name()}' updated: {', '.join(changed)}")
        return changed

    @classmethod
    def schema(cls) -> Dict[str, Any]:
        return {
            "name": cls.get_config_name(),
            "display_name": cls.get_display_name(),
            "description": cls.get_description(),
            "category": cls.get_category(),
            "icon": cls.get_icon(),
            "fields": [f.to_dict() for f in cls.get_fields_metadata()],
        }


# ============================================================================
# Registry
# ============================================================================


_CONFIG_CLASSES: Dict[str, Type[BaseConfig]] = {}
_CONFIG_INSTANCES: Dict[str, BaseConfig] = {}


def register_config(cls: Type[C]) -> Type[C]:
    """Class decorator registering a config under its config name."""
    _CONFIG_CLASSES[cls.get_config_name()] = cls
    return cls


def get_config_class(name: str) -> Type[BaseConfig]:
    try:
        return _CONFIG_CLASSES[name]
    except KeyError:
        raise KeyError(f"Unknown config '{name}'") from None


def list_configs() -> List[Type[BaseConfig]]:
    return list(_CONFIG_CLASSES.values())


def get_config(name_or_class: Union[str, Type[C]]) -> C:
    """Return the cached default instance of a registered config."""
    cls = get_config_class(name_or_class) if isinstance(name_or_class, str) else name_or_class
    name = cls.get_config_name()
    if name not in _CONFIG_INSTANCES:
        _CONFIG_INSTANCES[name] = cls.get_default_instance()
    return _CONFIG_INSTANCES[name]  # type: ignore[return-value]


def reset_config_cache() -> None:
    _CONFIG_INSTANCES.clear()


def load_config(cls: Type[C], path: Union[str, Path]) -> C:
    """Environment defaults overlaid with the values of a JSON file."""
    instance = cls.get_default_instance()
    path = Path(path)
    if not path.exists():
        logger.info(f"Config file not found, using defaults: {path}")
        return instance

    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a JSON object")
    known = {f.name for f in fields(instance)}
    for key, value in data.items():
        if key in known:
            setattr(instance, key, value)
        else:
            logger.warning(f"Ignoring unknown key '{key}' in {path}")
    problems = instance.validate()
    if problems:
        raise ValueError(f"Invalid config in {path}: {'; '.join(problems)}")
    return instance
