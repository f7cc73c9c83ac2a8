"""
Document helpers shared by the built-in nodes.

Input nodes normalise what the caller hands in into a *document*
mapping::

    {"kind": "pdf" | "image" | "text", "source": "...",
     "mime_type": "...", "content": bytes | None, "text": str | None,
     "filename": str | None, "size": int}

Process and transform nodes accept documents, plain text, or the
mappings produced by upstream nodes; ``payload_text`` finds the text
in any of them.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Dict, Iterable, List, Optional

from docflow.exceptions import ConnectorError

_IMAGE_SIGNATURES = (
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
    (b"II*\x00", "image/tiff"),
    (b"MM\x00*", "image/tiff"),
    (b"BM", "image/bmp"),
)


def is_pdf(content: bytes) -> bool:
    return content[:1024].lstrip().startswith(b"%PDF")


def image_mime_type(content: bytes) -> Optional[str]:
    for signature, mime in _IMAGE_SIGNATURES:
        if content.startswith(signature):
            return mime
    if content[:4] == b"RIFF" and content[8:12] == b"WEBP":
        return "image/webp"
    return None


def make_document(
    kind: str,
    source: str,
    *,
    content: Optional[bytes] = None,
    text: Optional[str] = None,
    mime_type: str = "",
    filename: Optional[str] = None,
) -> Dict[str, Any]:
    size = len(content) if content is not None else len(text or "")
    return {
        "kind": kind,
        "source": source,
        "mime_type": mime_type,
        "content": content,
        "text": text,
        "filename": filename,
        "size": size,
    }


def is_document(payload: Any) -> bool:
    return isinstance(payload, Mapping) and "kind" in payload and "source" in payload


def payload_text(payload: Any) -> str:
    """Best text representation of a payload; raises if there is none."""
    text = find_text(payload)
    if text is None:
        raise ConnectorError(f"No text found in {type(payload).__name__} input")
    return text


def find_text(payload: Any) -> Optional[str]:
    if payload is None:
        return None
    if isinstance(payload, str):
        return payload
    if isinstance(payload, (bytes, bytearray)):
        if is_pdf(payload) or image_mime_type(payload):
            return None
        try:
            return bytes(payload).decode("utf-8")
        except UnicodeDecodeError:
            return None
    if isinstance(payload, Mapping):
        text = payload.get("text")
        if isinstance(text, str):
            return text
        return None
    if isinstance(payload, (list, tuple)):
        parts = [t for t in (find_text(p) for p in payload) if t]
        return "\n\n".join(parts) if parts else None
    return None


def upstream_confidence(payload: Any) -> Optional[float]:
    """Top-level ``confidence`` of a mapping payload (minimum across a list)."""
    values: List[float] = []
    items: Iterable[Any] = payload if isinstance(payload, (list, tuple)) else [payload]
    for item in items:
        if isinstance(item, Mapping):
            value = item.get("confidence")
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                values.append(float(value))
    return min(values) if values else None


# ── Dotted paths ──


def get_path(data: Any, path: str, default: Any = None) -> Any:
    """Read ``a.b.0.c`` style paths through mappings and lists."""
    if not path:
        return data
    current = data
    for part in path.split("."):
        if isinstance(current, Mapping):
            if part not in current:
                return default
            current = current[part]
        elif isinstance(current, (list, tuple)) and part.isdigit():
            index = int(part)
            if index >= len(current):
                return default
            current = current[index]
        else:
            return default
    return current


def has_path(data: Any, path: str) -> bool:
    marker = object()
    return get_path(data, path, marker) is not marker


def set_path(data: Dict[str, Any], path: str, value: Any) -> None:
    """Write ``value`` at a dotted path, creating mappings on the way."""
    parts = path.split(".")
    current = data
    for part in parts[:-1]:
        nxt = current.get(part)
        if not isinstance(nxt, dict):
            nxt = {}
            current[part] = nxt
        current = nxt
    current[parts[-1]] = value


def extracted_fields(payload: Any) -> Any:
    """The ``extracted_data`` of an extraction payload, else the payload."""
    if isinstance(payload, Mapping) and isinstance(payload.get("extracted_data"), Mapping):
        return payload["extracted_data"]
    return payload
