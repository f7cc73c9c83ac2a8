"""
Input Nodes — bring documents into a workflow.

Source nodes receive the caller's initial input for their node id and
normalise it into a document mapping (see ``documents``). Depending on
the ``source`` option the input is the raw bytes/text (``upload`` /
``paste``), a filesystem path (``path``) or a URL (``url``).
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from logging import getLogger
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import httpx

from docflow.connectors.base import RetryPolicy
from docflow.connectors.http import fetch
from docflow.exceptions import ConnectorError
from docflow.workflow.nodes.base import BaseNode, NodeParameter, register_node
from docflow.workflow.nodes.documents import (
    image_mime_type,
    is_document,
    is_pdf,
    make_document,
)
from docflow.workflow.workflow_model import NodeCategory

logger = getLogger(__name__)

_FILE_SOURCES = [
    {"value": "upload", "label": "File Upload"},
    {"value": "url", "label": "URL"},
    {"value": "path", "label": "File Path"},
]


def _filename_from_url(url: str) -> Optional[str]:
    try:
        name = httpx.URL(url).path.rsplit("/", 1)[-1]
    except httpx.InvalidURL:
        return None
    return name or None


class _FileInputNode(BaseNode):
    """Shared loading for binary document inputs."""

    category = NodeCategory.INPUT

    async def load(
        self, payload: Any, source: str,
    ) -> Tuple[bytes, Optional[str], str]:
        """Return ``(content, filename, mime_type)`` for the raw input."""
        if source == "url":
            if not isinstance(payload, str):
                raise ConnectorError("URL source needs the document URL as input")
            response = await fetch(self.services, payload)
            return (
                response.content,
                _filename_from_url(payload),
                response.headers.get("content-type", "").split(";")[0].strip(),
            )

        if source == "path":
            if not isinstance(payload, (str, Path)):
                raise ConnectorError("Path source needs a file path as input")
            path = Path(payload)
            try:
                content = await asyncio.to_thread(path.read_bytes)
            except OSError as exc:
                raise ConnectorError(f"Cannot read {path}: {exc}") from exc
            return content, path.name, ""

        if isinstance(payload, Mapping) and isinstance(payload.get("content"), (bytes, bytearray)):
            return bytes(payload["content"]), payload.get("filename"), payload.get("mime_type", "")
        if isinstance(payload, (bytes, bytearray)):
            return bytes(payload), None, ""
        if payload is None:
            raise ConnectorError("No document provided")
        raise ConnectorError(f"Expected document bytes, got {type(payload).__name__}")


# ============================================================================
# PDF Input
# ============================================================================


@register_node
class PdfInputNode(_FileInputNode):
    """Accept a PDF document."""

    node_type = "pdf"
    label = "PDF Input"
    description = "Load a PDF document from an upload, a path or a URL"
    icon = "📄"

    parameters = [
        NodeParameter(
            name="source",
            label="Source",
            type="select",
            default="upload",
            options=[o["value"] for o in _FILE_SOURCES],
            description="Where the document comes from.",
            group="input",
        ),
    ]

    async def execute(self, payload: Any, config: Dict[str, Any]) -> Dict[str, Any]:
        if is_document(payload) and payload.get("kind") == "pdf":
            return dict(payload)
        source = config.get("source", "upload")
        content, filename, _ = await self.load(payload, source)
        if not is_pdf(content):
            raise ConnectorError("Input is not a PDF document")
        return make_document(
            "pdf", source, content=content, mime_type="application/pdf", filename=filename,
        )


# ============================================================================
# Image Input
# ============================================================================


@register_node
class ImageInputNode(_FileInputNode):
    """Accept a scanned page or photo (PNG, JPEG, GIF, TIFF, BMP, WebP)."""

    node_type = "image"
    label = "Image Input"
    description = "Load an image from an upload, a path or a URL"
    icon = "🖼️"

    parameters = [
        NodeParameter(
            name="source",
            label="Source",
            type="select",
            default="upload",
            options=[o["value"] for o in _FILE_SOURCES],
            description="Where the image comes from.",
            group="input",
        ),
    ]

    async def execute(self, payload: Any, config: Dict[str, Any]) -> Dict[str, Any]:
        if is_document(payload) and payload.get("kind") == "image":
            return dict(payload)
        source = config.get("source", "upload")
        content, filename, _ = await self.load(payload, source)
        mime_type = image_mime_type(content)
        if mime_type is None:
            raise ConnectorError("Input is not a supported image format")
        return make_document(
            "image", source, content=content, mime_type=mime_type, filename=filename,
        )


# ============================================================================
# Text Input
# ============================================================================


@register_node
class TextInputNode(BaseNode):
    """Pasted or uploaded plain text."""

    node_type = "text"
    label = "Text Input"
    description = "Use pasted text, an uploaded text file or a fetched page"
    category = NodeCategory.INPUT
    icon = "📝"

    parameters = [
        NodeParameter(
            name="source",
            label="Source",
            type="select",
            default="paste",
            options=["paste", "upload", "url"],
            group="input",
        ),
        NodeParameter(
            name="encoding",
            label="Encoding",
            type="string",
            default="utf-8",
            description="Used to decode uploaded bytes.",
            group="input",
        ),
    ]

    async def execute(self, payload: Any, config: Dict[str, Any]) -> Dict[str, Any]:
        source = config.get("source", "paste")
        if source == "url":
            if not isinstance(payload, str):
                raise ConnectorError("URL source needs the page URL as input")
            response = await fetch(self.services, payload)
            text = response.text
        elif isinstance(payload, (bytes, bytearray)):
            try:
                text = bytes(payload).decode(config.get("encoding", "utf-8"))
            except (UnicodeDecodeError, LookupError) as exc:
                raise ConnectorError(f"Cannot decode text input: {exc}") from exc
        elif isinstance(payload, str):
            text = payload
        elif payload is None:
            raise ConnectorError("No text provided")
        else:
            raise ConnectorError(f"Expected text, got {type(payload).__name__}")

        return make_document("text", source, text=text, mime_type="text/plain")


# ============================================================================
# URL Input
# ============================================================================


@register_node
class UrlInputNode(BaseNode):
    """Fetch a document over HTTP and detect what it is."""

    node_type = "url"
    label = "URL Input"
    description = "Download a PDF, image or text document from a URL"
    category = NodeCategory.INPUT
    icon = "🔗"
    retry_policy = RetryPolicy(max_attempts=3, backoff_seconds=0.5)
    timeout = 60.0

    parameters = [
        NodeParameter(
            name="source",
            label="Source",
            type="select",
            default="url",
            options=["url"],
            group="input",
        ),
        NodeParameter(
            name="url",
            label="URL",
            type="string",
            default="",
            description="Used when the run supplies no URL for this node.",
            group="input",
        ),
    ]

    async def execute(self, payload: Any, config: Dict[str, Any]) -> Dict[str, Any]:
        url = payload if isinstance(payload, str) and payload else config.get("url", "")
        response = await fetch(self.services, url)
        content = response.content
        header_type = response.headers.get("content-type", "").split(";")[0].strip()
        filename = _filename_from_url(url)

        if header_type == "application/pdf" or is_pdf(content):
            return make_document(
                "pdf", "url", content=content, mime_type="application/pdf", filename=filename,
            )
        image_type = image_mime_type(content)
        if image_type or header_type.startswith("image/"):
            return make_document(
                "image", "url", content=content,
                mime_type=image_type or header_type, filename=filename,
            )
        return make_document(
            "text", "url", text=response.text,
            mime_type=header_type or "text/plain", filename=filename,
        )
