"""
Process Nodes — turn documents into text and structured fields.

OCR, document parsing (for binary formats) and AI extraction are
delegated to the backends in ``ConnectorServices``; table and regex
extraction are implemented here and need no backend.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from logging import getLogger
from typing import Any, Dict, List, Optional, Pattern, Tuple

from docflow.connectors.base import RetryPolicy, call_service
from docflow.exceptions import ConnectorError
from docflow.workflow.nodes.base import BaseNode, NodeParameter, register_node
from docflow.workflow.nodes.documents import (
    extracted_fields,
    find_text,
    is_document,
    payload_text,
    upstream_confidence,
)
from docflow.workflow.workflow_model import NodeCategory

logger = getLogger(__name__)


def _normalize_recognition(result: Any, service: str) -> Tuple[str, Optional[float], Dict[str, Any]]:
    """Accept ``str`` or ``{"text", "confidence", ...}`` from a backend."""
    if isinstance(result, str):
        return result, None, {}
    if isinstance(result, Mapping) and isinstance(result.get("text"), str):
        extra = {k: v for k, v in result.items() if k not in ("text", "confidence")}
        confidence = result.get("confidence")
        if not isinstance(confidence, (int, float)) or isinstance(confidence, bool):
            confidence = None
        return result["text"], confidence, extra
    raise ConnectorError(f"{service} backend returned {type(result).__name__}, expected text")


# ============================================================================
# OCR
# ============================================================================


@register_node
class OcrNode(BaseNode):
    """Recognise the text of scanned PDFs and images."""

    node_type = "ocr"
    label = "OCR Processing"
    description = "Extract text from images and scanned documents"
    category = NodeCategory.PROCESS
    icon = "🔍"
    timeout = 300.0

    parameters = [
        NodeParameter(
            name="engine",
            label="OCR Engine",
            type="select",
            default="tesseract",
            options=["tesseract", "aws-textract", "google-vision"],
            group="ocr",
        ),
        NodeParameter(
            name="language",
            label="Language",
            type="string",
            default="eng",
            description="Language hint passed to the OCR engine.",
            group="ocr",
        ),
    ]

    async def execute(self, payload: Any, config: Dict[str, Any]) -> Dict[str, Any]:
        documents = payload if isinstance(payload, list) else [payload]
        engine = config.get("engine", "tesseract")
        language = config.get("language", "eng")

        texts: List[str] = []
        confidences: List[float] = []
        for document in documents:
            if not is_document(document):
                raise ConnectorError(
                    f"OCR expects a document from an input node, got {type(document).__name__}"
                )
            if document.get("kind") == "text":
                texts.append(document.get("text") or "")
                continue

            backend = self.services.require("ocr")
            result = await call_service(
                backend.recognize, document, engine=engine, language=language,
            )
            text, confidence, _ = _normalize_recognition(result, "OCR")
            texts.append(text)
            if confidence is not None:
                confidences.append(float(confidence))

        return {
            "text": "\n\n".join(texts),
            "confidence": min(confidences) if confidences else None,
            "engine": engine,
            "language": language,
            "documents": len(documents),
        }


# ============================================================================
# Parser
# ============================================================================


def _normalize_text(text: str, mode: str) -> str:
    if mode == "layout":
        return "\n".join(line.rstrip() for line in text.splitlines())
    lines: List[str] = []
    for raw in text.splitlines():
        line = " ".join(raw.split())
        if line or (lines and lines[-1]):
            lines.append(line)
    return "\n".join(lines).strip()


@register_node
class ParserNode(BaseNode):
    """Read the text layer of a document.

    Text inputs are normalised in place; PDFs and other binary
    documents go through the configured ``DocumentParser``.
    """

    node_type = "parser"
    label = "Parser"
    description = "Parse document structure and text"
    category = NodeCategory.PROCESS
    icon = "📝"

    parameters = [
        NodeParameter(
            name="mode",
            label="Mode",
            type="select",
            default="auto",
            options=["auto", "text", "layout"],
            description="'text' collapses whitespace; 'layout' keeps line structure.",
            group="parser",
        ),
    ]

    async def execute(self, payload: Any, config: Dict[str, Any]) -> Dict[str, Any]:
        mode = config.get("mode", "auto")
        text = find_text(payload)
        pages = None
        if text is None:
            if not is_document(payload) or payload.get("content") is None:
                raise ConnectorError(f"Parser cannot read {type(payload).__name__} input")
            backend = self.services.require("parser")
            result = await call_service(backend.parse, payload, mode=mode)
            text, _, extra = _normalize_recognition(result, "Parser")
            pages = extra.get("pages")

        normalized = _normalize_text(text, "layout" if mode == "layout" else "text")
        output: Dict[str, Any] = {
            "text": normalized,
            "mode": mode,
            "line_count": len(normalized.splitlines()),
            "pages": pages,
        }
        confidence = upstream_confidence(payload)
        if confidence is not None:
            output["confidence"] = confidence
        return output


# ============================================================================
# AI Extract
# ============================================================================


@register_node
class AiExtractNode(BaseNode):
    """Extract named fields from document text with an extraction model."""

    node_type = "ai-extract"
    label = "AI Extract"
    description = "Use an AI model to extract structured fields"
    category = NodeCategory.PROCESS
    icon = "🤖"
    retry_policy = RetryPolicy(max_attempts=3, backoff_seconds=1.0)
    timeout = 120.0

    parameters = [
        NodeParameter(
            name="model",
            label="Model",
            type="select",
            default="gpt-4",
            options=["gpt-4", "gpt-3.5", "claude"],
            group="model",
        ),
        NodeParameter(
            name="fields",
            label="Fields",
            type="list",
            default=[],
            description="Field names to extract, e.g. invoice_number, date, total.",
            group="extraction",
        ),
        NodeParameter(
            name="document_type",
            label="Document Type",
            type="string",
            default="",
            description="Hint for the model, e.g. 'invoice'.",
            group="extraction",
        ),
    ]

    async def execute(self, payload: Any, config: Dict[str, Any]) -> Dict[str, Any]:
        text = payload_text(payload)
        fields = [str(f) for f in config.get("fields", [])]
        model = config.get("model", "gpt-4")
        document_type = config.get("document_type", "")

        backend = self.services.require("extractor")
        result = await call_service(
            backend.extract, text, fields=fields, model=model, document_type=document_type,
        )
        if not isinstance(result, Mapping):
            raise ConnectorError(
                f"Extraction backend returned {type(result).__name__}, expected a mapping"
            )

        data = dict(result)
        confidence = data.pop("confidence", None)
        if isinstance(data.get("extracted_data"), Mapping):
            document_type = data.get("document_type") or document_type
            extracted = dict(data["extracted_data"])
        else:
            extracted = data
        for name in fields:
            extracted.setdefault(name, None)

        if confidence is None:
            confidence = upstream_confidence(payload)
        return {
            "document_type": document_type,
            "extracted_data": extracted,
            "confidence": confidence,
            "model": model,
        }


# ============================================================================
# Table Extract
# ============================================================================


_SEPARATOR_CELL = re.compile(r"^:?-{2,}:?$")


def _split_row(line: str) -> Optional[List[str]]:
    """Cells of one line; ``None`` for a markdown separator row."""
    stripped = line.strip()
    if not stripped:
        return []
    if "|" in stripped:
        cells = [c.strip() for c in stripped.strip("|").split("|")]
        if all(_SEPARATOR_CELL.match(c) for c in cells if c):
            return None
    elif "\t" in stripped:
        cells = [c.strip() for c in stripped.split("\t")]
    else:
        cells = re.split(r"\s{2,}", stripped)
    return cells


def detect_tables(text: str, min_columns: int = 2) -> List[List[List[str]]]:
    """Runs of two or more consecutive rows with the same column count."""
    tables: List[List[List[str]]] = []
    current: List[List[str]] = []

    def flush() -> None:
        if len(current) >= 2:
            tables.append(list(current))
        current.clear()

    for line in text.splitlines():
        cells = _split_row(line)
        if cells is None:
            continue
        if len(cells) >= min_columns and (not current or len(cells) == len(current[0])):
            current.append(cells)
            continue
        flush()
        if len(cells) >= min_columns:
            current.append(cells)
    flush()
    return tables


def _header(row: List[str]) -> List[str]:
    names: List[str] = []
    for index, cell in enumerate(row):
        name = cell or f"column_{index + 1}"
        if name in names:
            name = f"{name}_{index + 1}"
        names.append(name)
    return names


@register_node
class TableExtractNode(BaseNode):
    """Find tables in document text and in list-valued extracted fields."""

    node_type = "table"
    label = "Table Extract"
    description = "Extract tabular data from documents"
    category = NodeCategory.PROCESS
    icon = "📊"

    parameters = [
        NodeParameter(
            name="mode",
            label="Mode",
            type="select",
            default="structured",
            options=["structured", "raw"],
            description="'structured' turns rows into records keyed by the header row.",
            group="table",
        ),
        NodeParameter(
            name="min_columns",
            label="Minimum Columns",
            type="integer",
            default=2,
            min=2,
            group="table",
        ),
    ]

    async def execute(self, payload: Any, config: Dict[str, Any]) -> Dict[str, Any]:
        structured = config.get("mode", "structured") == "structured"
        tables: List[Dict[str, Any]] = []

        text = find_text(payload)
        if text:
            for index, rows in enumerate(detect_tables(text, config.get("min_columns", 2))):
                name = f"table_{index + 1}"
                if structured:
                    header = _header(rows[0])
                    records = [dict(zip(header, row)) for row in rows[1:]]
                    tables.append({"name": name, "columns": header, "rows": records})
                else:
                    tables.append({"name": name, "rows": rows})

        fields = extracted_fields(payload)
        if isinstance(fields, Mapping):
            for key, value in fields.items():
                if isinstance(value, list) and value and all(isinstance(v, Mapping) for v in value):
                    columns: List[str] = []
                    for record in value:
                        columns.extend(k for k in record if k not in columns)
                    if structured:
                        rows = [{c: record.get(c) for c in columns} for record in value]
                        tables.append({"name": key, "columns": columns, "rows": rows})
                    else:
                        tables.append({
                            "name": key,
                            "rows": [columns] + [[record.get(c) for c in columns] for record in value],
                        })

        if isinstance(payload, Mapping) and not is_document(payload):
            output = dict(payload)
        else:
            output = {"text": text}
        output["tables"] = tables
        return output


# ============================================================================
# Regex Extract
# ============================================================================


_MONTHS = r"(?:Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Sept|Oct|Nov|Dec)[a-z]*\.?"

PATTERN_LIBRARY: Dict[str, str] = {
    "dates": (
        r"\b(\d{4}-\d{2}-\d{2}|\d{1,2}/\d{1,2}/\d{2,4}|"
        + _MONTHS + r" \d{1,2},? \d{4}|\d{1,2} " + _MONTHS + r" \d{4})\b"
    ),
    "emails": r"[\w.+-]+@[\w-]+(?:\.[\w-]+)+",
    "phones": r"(?<!\w)\+?\d{1,3}?[ .-]?\(?\d{3}\)?[ .-]\d{3}[ .-]\d{4}\b",
    "urls": r"https?://[^\s<>\"')]+",
    "amounts": r"(?:[$€£¥]\s?\d[\d,]*(?:\.\d{2})?|\b\d[\d,]*\.\d{2}\s?(?:USD|EUR|GBP)\b)",
    "invoice_number": r"\b(?:invoice|inv)\s*(?:no\.?|number|#)?\s*[:#]?\s*([A-Z0-9][A-Z0-9-]{3,})",
    "parties": r"\bbetween\s+(.+?)\s+and\s+(.+?)(?=[,.;(]|\s+\(|$)",
    "terms": r"\b(?:term of|for a period of|shall (?:remain|continue) in effect for)\s+([^.;\n]+)",
}


def compile_patterns(
    entries: List[Any], ignore_case: bool = True,
) -> List[Tuple[str, Pattern[str]]]:
    """Resolve library names, raw regexes and ``{"name", "pattern"}`` entries."""
    flags = re.IGNORECASE if ignore_case else 0
    if not entries:
        entries = list(PATTERN_LIBRARY)

    compiled: List[Tuple[str, Pattern[str]]] = []
    for index, entry in enumerate(entries):
        if isinstance(entry, Mapping):
            name, source = str(entry.get("name") or f"pattern_{index + 1}"), entry.get("pattern", "")
        elif entry in PATTERN_LIBRARY:
            name, source = entry, PATTERN_LIBRARY[entry]
        else:
            name, source = f"pattern_{index + 1}", str(entry)
        try:
            compiled.append((name, re.compile(source, flags | re.MULTILINE)))
        except re.error as exc:
            raise ConnectorError(f"Invalid pattern '{name}': {exc}") from exc
    return compiled


def find_matches(pattern: Pattern[str], text: str) -> List[str]:
    """Unique matches in order; with groups, every non-empty group counts."""
    found: List[str] = []
    for match in pattern.finditer(text):
        values = [g for g in match.groups() if g] if pattern.groups else [match.group(0)]
        for value in values:
            value = value.strip()
            if value and value not in found:
                found.append(value)
    return found


@register_node
class RegexExtractNode(BaseNode):
    """Extract values with named or custom regular expressions."""

    node_type = "regex"
    label = "Regex Extract"
    description = "Extract using regular expressions"
    category = NodeCategory.PROCESS
    icon = "🔤"

    parameters = [
        NodeParameter(
            name="patterns",
            label="Patterns",
            type="list",
            default=[],
            description=(
                "Library names (" + ", ".join(PATTERN_LIBRARY) + "), raw regexes, "
                'or {"name": ..., "pattern": ...} objects. Empty uses the whole library.'
            ),
            group="regex",
        ),
        NodeParameter(
            name="ignore_case",
            label="Ignore Case",
            type="boolean",
            default=True,
            group="regex",
        ),
    ]

    async def execute(self, payload: Any, config: Dict[str, Any]) -> Dict[str, Any]:
        text = payload_text(payload)
        patterns = compile_patterns(config.get("patterns", []), config.get("ignore_case", True))

        extracted = {name: find_matches(pattern, text) for name, pattern in patterns}
        output: Dict[str, Any] = {
            "document_type": "",
            "extracted_data": extracted,
            "match_count": sum(len(v) for v in extracted.values()),
        }
        confidence = upstream_confidence(payload)
        if confidence is not None:
            output["confidence"] = confidence
        return output
