"""
Pluggable backend services used by the built-in node types.

The engine never talks to a vendor directly: OCR engines, extraction
models, document parsers and record sinks are supplied by the host
application through ``ConnectorServices``. Methods may be sync or async.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, runtime_checkable

import httpx

from docflow.exceptions import ConnectorError


@runtime_checkable
class OCRBackend(Protocol):
    """Turn a document (image or scanned PDF) into text."""

    def recognize(
        self, document: Mapping[str, Any], *, engine: str, language: str,
    ) -> Any: ...


@runtime_checkable
class ExtractionBackend(Protocol):
    """Pull structured fields out of document text (LLM or rules)."""

    def extract(
        self, text: str, *, fields: List[str], model: str, document_type: str,
    ) -> Any: ...


@runtime_checkable
class DocumentParser(Protocol):
    """Extract the text layer from a binary document."""

    def parse(self, document: Mapping[str, Any], *, mode: str) -> Any: ...


@runtime_checkable
class RecordSink(Protocol):
    """Persist an output payload to a database or store."""

    def write(self, connection: str, payload: Any, *, table: str) -> Any: ...


def _default_http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=30.0, follow_redirects=True)


@dataclass
class ConnectorServices:
    """Backends bound to the built-in nodes of one registry."""

    ocr: Optional[OCRBackend] = None
    extractor: Optional[ExtractionBackend] = None
    parser: Optional[DocumentParser] = None
    sink: Optional[RecordSink] = None
    http_client_factory: Callable[[], httpx.AsyncClient] = _default_http_client
    extras: Dict[str, Any] = field(default_factory=dict)

    def require(self, name: str) -> Any:
        """Return the named backend or fail the node that needs it."""
        backend = getattr(self, name, None)
        if backend is None:
            backend = self.extras.get(name)
        if backend is None:
            raise ConnectorError(f"No '{name}' backend configured")
        return backend
