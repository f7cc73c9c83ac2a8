"""
Payload helpers — merge strategies and human-readable summaries.

A payload is whatever a connector returns: text, bytes, a mapping,
a sequence of those. The engine never inspects it beyond combining
predecessor outputs and summarising for the run log.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence

Payload = Any


class MergeStrategy(str, Enum):
    """How a node combines the outputs of several predecessors."""
    CONCAT = "concat"                 # List of outputs, ascending predecessor id
    OVERRIDE = "override"             # Last predecessor's output wins
    MERGE = "merge"                   # Shallow key-by-key merge of mappings

    @classmethod
    def from_config(
        cls,
        config: Mapping[str, Any],
        key: str = "merge_strategy",
        default: Optional["MergeStrategy"] = None,
    ) -> "MergeStrategy":
        raw = config.get(key)
        if raw is None:
            return default or cls.CONCAT
        return cls(raw)


def merge_payloads(strategy: MergeStrategy, payloads: Sequence[Payload]) -> Payload:
    """Combine predecessor outputs already ordered by predecessor id.

    Only used for joins; a single-predecessor node gets its input as is.
    """
    if not payloads:
        return None

    if strategy == MergeStrategy.CONCAT:
        return list(payloads)
    if strategy == MergeStrategy.OVERRIDE:
        return payloads[-1]
    if strategy == MergeStrategy.MERGE:
        merged: Dict[str, Any] = {}
        for index, payload in enumerate(payloads):
            if not isinstance(payload, Mapping):
                raise TypeError(
                    f"'merge' strategy needs mapping outputs; input #{index} "
                    f"is {type(payload).__name__}"
                )
            merged.update(payload)
        return merged
    raise ValueError(f"Unknown merge strategy: {strategy!r}")


def deep_merge(base: Mapping[str, Any], overrides: Mapping[str, Any]) -> Dict[str, Any]:
    """Recursive key-by-key merge; ``overrides`` wins. Inputs are not mutated."""
    result: Dict[str, Any] = {}
    for key, value in base.items():
        result[key] = deep_merge(value, {}) if isinstance(value, Mapping) else value
    for key, value in overrides.items():
        current = result.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            result[key] = deep_merge(current, value)
        elif isinstance(value, Mapping):
            result[key] = deep_merge(value, {})
        else:
            result[key] = value
    return result


def summarize_payload(payload: Payload, limit: int = 120) -> str:
    """Produce a short preview string of a node output for the run log."""
    if payload is None:
        return "no output"
    if isinstance(payload, (bytes, bytearray)):
        return f"{len(payload)} bytes"
    if isinstance(payload, str):
        text = " ".join(payload.split())
        return f"text ({len(payload)} chars): {text[:limit]}" + ("…" if len(text) > limit else "")
    if isinstance(payload, Mapping):
        keys = list(payload.keys())
        shown = ", ".join(str(k) for k in keys[:8])
        more = f", +{len(keys) - 8} more" if len(keys) > 8 else ""
        return f"{{...}} ({len(keys)} keys: {shown}{more})"
    if isinstance(payload, (list, tuple)):
        return f"{len(payload)} items"
    return f"{type(payload).__name__}: {str(payload)[:limit]}"


def to_jsonable(payload: Payload) -> Any:
    """Best-effort conversion to JSON-compatible values."""
    if payload is None or isinstance(payload, (str, int, float, bool)):
        return payload
    if isinstance(payload, (bytes, bytearray)):
        return {"bytes": len(payload)}
    if isinstance(payload, Mapping):
        return {str(k): to_jsonable(v) for k, v in payload.items()}
    if isinstance(payload, (list, tuple, set)):
        return [to_jsonable(v) for v in payload]
    if hasattr(payload, "model_dump"):
        return payload.model_dump(mode="json")
    return str(payload)


def overall_confidence(payloads: Sequence[Payload]) -> Optional[float]:
    """Minimum top-level numeric ``confidence`` across mapping payloads."""
    values: List[float] = []
    for payload in payloads:
        if isinstance(payload, Mapping):
            value = payload.get("confidence")
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                values.append(float(value))
    return min(values) if values else None
