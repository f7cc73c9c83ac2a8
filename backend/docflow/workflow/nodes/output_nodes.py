"""
Output Nodes — the results a run reports.

Every successful output node contributes its payload to
``WorkflowResult.outputs`` under its node id.
"""

from __future__ import annotations

import csv
import io
import json
from collections.abc import Mapping
from logging import getLogger
from typing import Any, Dict, List
from xml.etree import ElementTree

from docflow.connectors.base import RetryPolicy, call_service
from docflow.connectors.http import send_json
from docflow.exceptions import ConnectorError
from docflow.workflow.nodes.base import BaseNode, NodeParameter, register_node
from docflow.workflow.nodes.documents import extracted_fields, get_path
from docflow.workflow.payload import to_jsonable
from docflow.workflow.workflow_model import NodeCategory

logger = getLogger(__name__)


# ============================================================================
# JSON Output
# ============================================================================


def _xml_element(tag: str, value: Any) -> ElementTree.Element:
    element = ElementTree.Element(tag)
    if isinstance(value, Mapping):
        for key, child in value.items():
            element.append(_xml_element(str(key), child))
    elif isinstance(value, list):
        for child in value:
            element.append(_xml_element("item", child))
    elif value is not None:
        element.text = str(value).lower() if isinstance(value, bool) else str(value)
    return element


@register_node
class JsonOutputNode(BaseNode):
    """Report the input as JSON-compatible data (or an XML rendering)."""

    node_type = "json"
    label = "JSON Output"
    description = "Output as structured JSON"
    category = NodeCategory.OUTPUT
    icon = "📋"

    parameters = [
        NodeParameter(
            name="format",
            label="Format",
            type="select",
            default="json",
            options=["json", "xml"],
            group="output",
        ),
        NodeParameter(
            name="root",
            label="XML Root Element",
            type="string",
            default="document",
            group="output",
        ),
    ]

    async def execute(self, payload: Any, config: Dict[str, Any]) -> Any:
        data = to_jsonable(payload)
        if config.get("format", "json") == "xml":
            root = _xml_element(config.get("root") or "document", data)
            return ElementTree.tostring(root, encoding="unicode")
        return data


# ============================================================================
# CSV Output
# ============================================================================


def _flatten(record: Mapping[str, Any], prefix: str = "") -> Dict[str, Any]:
    flat: Dict[str, Any] = {}
    for key, value in record.items():
        name = f"{prefix}{key}"
        if isinstance(value, Mapping):
            flat.update(_flatten(value, f"{name}."))
        elif isinstance(value, (list, tuple)):
            flat[name] = json.dumps(to_jsonable(value), sort_keys=True)
        else:
            flat[name] = value
    return flat


def rows_for_csv(payload: Any, path: str = "") -> List[Dict[str, Any]]:
    """Records to write: a list of mappings, or one flattened record."""
    data = get_path(payload, path) if path else extracted_fields(payload)
    if isinstance(data, Mapping):
        return [_flatten(data)]
    if isinstance(data, list):
        rows = []
        for item in data:
            if not isinstance(item, Mapping):
                raise ConnectorError(f"CSV rows must be mappings, got {type(item).__name__}")
            rows.append(_flatten(item))
        return rows
    raise ConnectorError(f"Cannot write {type(data).__name__} as CSV")


@register_node
class CsvOutputNode(BaseNode):
    """Render records as CSV (or TSV) text."""

    node_type = "csv"
    label = "CSV Output"
    description = "Export as CSV file"
    category = NodeCategory.OUTPUT
    icon = "📊"

    parameters = [
        NodeParameter(
            name="format",
            label="Format",
            type="select",
            default="csv",
            options=["csv", "tsv"],
            group="output",
        ),
        NodeParameter(
            name="path",
            label="Rows Path",
            type="string",
            default="",
            description="Dotted path to the rows; empty writes the extracted fields as one row.",
            group="output",
        ),
    ]

    async def execute(self, payload: Any, config: Dict[str, Any]) -> str:
        rows = rows_for_csv(payload, config.get("path", ""))
        columns: List[str] = []
        for row in rows:
            columns.extend(k for k in row if k not in columns)

        buffer = io.StringIO()
        delimiter = "\t" if config.get("format", "csv") == "tsv" else ","
        writer = csv.DictWriter(buffer, fieldnames=columns, delimiter=delimiter, lineterminator="\n")
        writer.writeheader()
        writer.writerows(rows)
        return buffer.getvalue()


# ============================================================================
# Database
# ============================================================================


@register_node
class DatabaseOutputNode(BaseNode):
    """Persist the input through the configured ``RecordSink``."""

    node_type = "database"
    label = "Database"
    description = "Save to database"
    category = NodeCategory.OUTPUT
    icon = "🗄️"
    retry_policy = RetryPolicy(max_attempts=3, backoff_seconds=0.5)

    parameters = [
        NodeParameter(
            name="connection",
            label="Connection",
            type="string",
            default="",
            description="Connection string understood by the record sink.",
            group="database",
        ),
        NodeParameter(
            name="table",
            label="Table",
            type="string",
            default="documents",
            group="database",
        ),
    ]

    async def execute(self, payload: Any, config: Dict[str, Any]) -> Dict[str, Any]:
        connection = config.get("connection", "")
        if not connection:
            raise ConnectorError("No database connection configured")
        table = config.get("table", "documents")
        sink = self.services.require("sink")
        record = to_jsonable(payload)
        result = await call_service(sink.write, connection, record, table=table)
        logger.info(f"Wrote record to table '{table}'")
        return {"table": table, "result": to_jsonable(result), "record": record}


# ============================================================================
# Webhook
# ============================================================================


@register_node
class WebhookOutputNode(BaseNode):
    """POST the input as JSON to a URL."""

    node_type = "webhook"
    label = "Webhook"
    description = "Send to webhook URL"
    category = NodeCategory.OUTPUT
    icon = "🔔"
    retry_policy = RetryPolicy(max_attempts=3, backoff_seconds=1.0)
    timeout = 30.0

    parameters = [
        NodeParameter(
            name="url",
            label="Webhook URL",
            type="string",
            default="",
            group="webhook",
        ),
        NodeParameter(
            name="method",
            label="Method",
            type="select",
            default="POST",
            options=["POST", "PUT"],
            group="webhook",
        ),
        NodeParameter(
            name="headers",
            label="Headers",
            type="mapping",
            default={},
            group="webhook",
        ),
    ]

    async def execute(self, payload: Any, config: Dict[str, Any]) -> Dict[str, Any]:
        return await send_json(
            self.services,
            config.get("url", ""),
            to_jsonable(payload),
            method=config.get("method", "POST"),
            headers=config.get("headers") or {},
        )
