"""
Helpers binding config fields to environment variables.
"""

from __future__ import annotations

import os
from dataclasses import MISSING
from typing import Any, Callable, Dict, Mapping

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


def _coerce(raw: str, default: Any) -> Any:
    if isinstance(default, bool):
        value = raw.strip().lower()
        if value in _TRUE:
            return True
        if value in _FALSE:
            return False
        raise ValueError(f"Not a boolean: {raw!r}")
    if isinstance(default, int):
        return int(raw)
    if isinstance(default, float):
        return float(raw)
    return raw


def read_env_defaults(env_map: Mapping[str, str], dataclass_fields: Mapping[str, Any]) -> Dict[str, Any]:
    """Collect field values from the environment, typed like each field's default.

    Only variables that are set are returned, so unset ones keep the
    dataclass default.
    """
    values: Dict[str, Any] = {}
    for field_name, env_name in env_map.items():
        raw = os.environ.get(env_name)
        if raw is None:
            continue
        dc_field = dataclass_fields.get(field_name)
        default = None if dc_field is None or dc_field.default is MISSING else dc_field.default
        try:
            values[field_name] = _coerce(raw, default)
        except ValueError as exc:
            raise ValueError(f"Invalid value for {env_name}: {exc}") from None
    return values


def env_sync(env_name: str) -> Callable[[Any, Any], None]:
    """``apply_change`` hook mirroring a field into ``os.environ``."""

    def _apply(old: Any, new: Any) -> None:
        if new is None:
            os.environ.pop(env_name, None)
        elif isinstance(new, bool):
            os.environ[env_name] = "true" if new else "false"
        else:
            os.environ[env_name] = str(new)

    return _apply
