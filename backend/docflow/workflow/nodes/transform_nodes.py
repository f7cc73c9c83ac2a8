"""
Transform Nodes — reshape, combine and check extracted data.

All four are pure: they never call a backend. Inputs are never
mutated; every node returns a new payload.
"""

from __future__ import annotations

import copy
import json
import re
from collections.abc import Mapping
from datetime import datetime
from logging import getLogger
from typing import Any, Dict, List, Tuple

from docflow.exceptions import ConnectorError
from docflow.workflow.nodes.base import BaseNode, NodeParameter, register_node
from docflow.workflow.nodes.documents import extracted_fields, get_path, has_path, set_path
from docflow.workflow.payload import MergeStrategy
from docflow.workflow.workflow_model import NodeCategory

logger = getLogger(__name__)


# ============================================================================
# Field rules (shared by Filter and Validate)
# ============================================================================


_OPERATORS = (
    "eq", "ne", "gt", "gte", "lt", "lte", "contains", "in",
    "exists", "missing", "empty", "not_empty", "matches",
)


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or (isinstance(value, (list, dict, tuple)) and not value)


def parse_rule(rule: Any) -> Tuple[str, str, Any]:
    """``{"field", "op", "value"}`` or ``"field op value"`` → (field, op, value).

    A bare ``"field"`` means ``exists``.
    """
    if isinstance(rule, Mapping):
        field_name, op, value = str(rule.get("field", "")), rule.get("op", "exists"), rule.get("value")
    elif isinstance(rule, str):
        parts = rule.split(None, 2)
        field_name = parts[0] if parts else ""
        op = parts[1] if len(parts) > 1 else "exists"
        value = parts[2] if len(parts) > 2 else None
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except ValueError:
                pass
    else:
        raise ConnectorError(f"Invalid rule {rule!r}")
    if not field_name:
        raise ConnectorError(f"Rule {rule!r} has no field")
    if op not in _OPERATORS:
        raise ConnectorError(f"Rule {rule!r} uses unknown operator '{op}'")
    return field_name, op, value


def evaluate_rule(record: Any, field_name: str, op: str, expected: Any) -> bool:
    if op == "exists":
        return has_path(record, field_name)
    if op == "missing":
        return not has_path(record, field_name)

    value = get_path(record, field_name)
    if op == "empty":
        return _is_empty(value)
    if op == "not_empty":
        return not _is_empty(value)
    if op == "eq":
        return value == expected
    if op == "ne":
        return value != expected
    if op == "contains":
        try:
            return expected in value
        except TypeError:
            return False
    if op == "in":
        try:
            return value in expected
        except TypeError:
            return False
    if op == "matches":
        return isinstance(value, str) and re.search(str(expected), value) is not None

    try:
        if op == "gt":
            return value > expected
        if op == "gte":
            return value >= expected
        if op == "lt":
            return value < expected
        if op == "lte":
            return value <= expected
    except TypeError:
        return False
    return False


# ============================================================================
# Filter
# ============================================================================


@register_node
class FilterNode(BaseNode):
    """Keep the items of a list that satisfy the configured rules."""

    node_type = "filter"
    label = "Filter"
    description = "Filter data based on conditions"
    category = NodeCategory.TRANSFORM
    icon = "🔽"

    parameters = [
        NodeParameter(
            name="rules",
            label="Rules",
            type="list",
            default=[],
            description='e.g. {"field": "total", "op": "gt", "value": 100} or "total gt 100".',
            group="filter",
        ),
        NodeParameter(
            name="path",
            label="List Path",
            type="string",
            default="",
            description="Dotted path to the list inside the input, e.g. extracted_data.items.",
            group="filter",
        ),
        NodeParameter(
            name="match",
            label="Match",
            type="select",
            default="all",
            options=["all", "any"],
            group="filter",
        ),
    ]

    async def execute(self, payload: Any, config: Dict[str, Any]) -> Any:
        path = config.get("path", "")
        items = get_path(payload, path) if path else payload
        if not isinstance(items, list):
            raise ConnectorError(
                f"Filter needs a list{f' at {path!r}' if path else ''}, "
                f"got {type(items).__name__}"
            )

        rules = [parse_rule(r) for r in config.get("rules", [])]
        combine = any if config.get("match", "all") == "any" else all
        kept = [
            item for item in items
            if not rules or combine(evaluate_rule(item, *rule) for rule in rules)
        ]
        logger.debug(f"Filter kept {len(kept)}/{len(items)} items")

        if not path:
            return kept
        if not isinstance(payload, Mapping):
            raise ConnectorError("Filter path requires a mapping input")
        output = copy.deepcopy(dict(payload))
        set_path(output, path, kept)
        return output


# ============================================================================
# Map
# ============================================================================


def parse_mapping(entry: Any) -> Tuple[str, str, Any]:
    """``{"from", "to", "default"}``, ``"a.b:x"`` or ``"a.b -> x"``."""
    if isinstance(entry, Mapping):
        source, target = entry.get("from"), entry.get("to")
        default = entry.get("default")
    elif isinstance(entry, str):
        separator = "->" if "->" in entry else ":"
        source, _, target = (part.strip() for part in entry.partition(separator))
        default = None
    else:
        raise ConnectorError(f"Invalid mapping {entry!r}")
    if not source or not target:
        raise ConnectorError(f"Mapping {entry!r} needs both a source and a target field")
    return str(source), str(target), default


@register_node
class MapNode(BaseNode):
    """Rename and restructure fields with dotted-path mappings."""

    node_type = "map"
    label = "Map"
    description = "Transform data fields"
    category = NodeCategory.TRANSFORM
    icon = "🗺️"

    parameters = [
        NodeParameter(
            name="mappings",
            label="Field Mappings",
            type="list",
            default=[],
            description='e.g. "extracted_data.vendor.name -> vendor_name".',
            group="map",
        ),
        NodeParameter(
            name="keep_unmapped",
            label="Keep Unmapped Fields",
            type="boolean",
            default=False,
            group="map",
        ),
    ]

    async def execute(self, payload: Any, config: Dict[str, Any]) -> Any:
        specs = [parse_mapping(m) for m in config.get("mappings", [])]
        if not specs:
            return payload
        keep = config.get("keep_unmapped", False)

        def apply(record: Any) -> Dict[str, Any]:
            if not isinstance(record, Mapping):
                raise ConnectorError(f"Map expects mapping records, got {type(record).__name__}")
            output = copy.deepcopy(dict(record)) if keep else {}
            for source, target, default in specs:
                set_path(output, target, copy.deepcopy(get_path(record, source, default)))
            return output

        if isinstance(payload, list):
            return [apply(record) for record in payload]
        return apply(payload)


# ============================================================================
# Merge
# ============================================================================


@register_node
class MergeNode(BaseNode):
    """Combine the outputs of several upstream branches.

    The combining happens before ``execute``: the executor merges
    predecessor outputs with the node's ``strategy``, so the node
    itself forwards its input.
    """

    node_type = "merge"
    label = "Merge"
    description = "Combine multiple inputs"
    category = NodeCategory.TRANSFORM
    icon = "🔀"

    parameters = [
        NodeParameter(
            name="strategy",
            label="Merge Strategy",
            type="select",
            default="concat",
            options=[s.value for s in MergeStrategy],
            description="concat: list of inputs; override: last input; merge: merge objects.",
            group="merge",
        ),
    ]

    def input_strategy(self, config: Dict[str, Any]) -> MergeStrategy:
        return MergeStrategy.from_config(
            config, key="strategy", default=MergeStrategy.from_config(config),
        )

    async def execute(self, payload: Any, config: Dict[str, Any]) -> Any:
        return payload


# ============================================================================
# Validate
# ============================================================================


_DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%d/%m/%Y", "%B %d, %Y", "%b %d, %Y", "%d %B %Y")
_AMOUNT_KEYS = ("total", "subtotal", "tax", "amount", "price", "unit_price")


def _parses_as_date(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    try:
        datetime.fromisoformat(value)
        return True
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            datetime.strptime(value, fmt)
            return True
        except ValueError:
            continue
    return False


def _is_amount(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return True
    if isinstance(value, str):
        return re.fullmatch(r"[$€£¥]?\s?-?\d[\d,]*(?:\.\d+)?", value.strip()) is not None
    return False


@register_node
class ValidateNode(BaseNode):
    """Check extracted data against named or field rules.

    Named rules: ``required_fields``, ``non_empty``, ``valid_dates``,
    ``numeric_amounts`` and ``confidence``. Any other entry is parsed
    as a field rule (see ``parse_rule``).
    """

    node_type = "validate"
    label = "Validate"
    description = "Validate extracted data"
    category = NodeCategory.TRANSFORM
    icon = "✅"

    parameters = [
        NodeParameter(
            name="rules",
            label="Rules",
            type="list",
            default=[],
            group="validate",
        ),
        NodeParameter(
            name="required",
            label="Required Fields",
            type="list",
            default=[],
            description="Fields checked by 'required_fields'; empty means every extracted field.",
            group="validate",
        ),
        NodeParameter(
            name="min_confidence",
            label="Minimum Confidence",
            type="number",
            default=0.0,
            min=0.0,
            max=1.0,
            group="validate",
        ),
        NodeParameter(
            name="on_failure",
            label="On Failure",
            type="select",
            default="annotate",
            options=["annotate", "fail"],
            description="'annotate' records the errors; 'fail' fails the node.",
            group="validate",
        ),
    ]

    def check(self, payload: Any, config: Dict[str, Any]) -> List[str]:
        data = extracted_fields(payload)
        errors: List[str] = []
        for rule in config.get("rules", []):
            if rule == "required_fields":
                required = config.get("required") or (
                    list(data) if isinstance(data, Mapping) else []
                )
                errors.extend(
                    f"missing required field '{name}'"
                    for name in required
                    if _is_empty(get_path(data, name))
                )
            elif rule == "non_empty":
                if _is_empty(data):
                    errors.append("no data extracted")
            elif rule == "valid_dates":
                if isinstance(data, Mapping):
                    errors.extend(
                        f"'{key}' is not a valid date: {value!r}"
                        for key, value in data.items()
                        if "date" in key.lower() and value is not None and not _parses_as_date(value)
                    )
            elif rule == "numeric_amounts":
                if isinstance(data, Mapping):
                    errors.extend(
                        f"'{key}' is not a number: {value!r}"
                        for key, value in data.items()
                        if key.lower() in _AMOUNT_KEYS and value is not None and not _is_amount(value)
                    )
            elif rule == "confidence":
                minimum = config.get("min_confidence", 0.0)
                confidence = payload.get("confidence") if isinstance(payload, Mapping) else None
                if not isinstance(confidence, (int, float)) or confidence < minimum:
                    errors.append(f"confidence {confidence} below {minimum:g}")
            else:
                field_name, op, expected = parse_rule(rule)
                if not evaluate_rule(data, field_name, op, expected):
                    shown = "" if expected is None else f" {expected!r}"
                    errors.append(f"rule failed: {field_name} {op}{shown}")
        return errors

    async def execute(self, payload: Any, config: Dict[str, Any]) -> Dict[str, Any]:
        if not isinstance(payload, Mapping):
            raise ConnectorError(f"Validate expects a mapping, got {type(payload).__name__}")
        errors = self.check(payload, config)
        if errors and config.get("on_failure", "annotate") == "fail":
            raise ConnectorError("Validation failed: " + "; ".join(errors))

        output = copy.deepcopy(dict(payload))
        output["validation"] = {"valid": not errors, "errors": errors}
        return output

