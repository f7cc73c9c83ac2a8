"""
Connector Interface — the contract between the engine and the real
implementations behind each node type.
"""

from docflow.connectors.base import (
    NO_RETRY,
    Connector,
    Executor,
    RetryPolicy,
    call_connector,
    call_service,
)
from docflow.connectors.services import (
    ConnectorServices,
    DocumentParser,
    ExtractionBackend,
    OCRBackend,
    RecordSink,
)

__all__ = [
    "NO_RETRY",
    "Connector",
    "Executor",
    "RetryPolicy",
    "call_connector",
    "call_service",
    "ConnectorServices",
    "DocumentParser",
    "ExtractionBackend",
    "OCRBackend",
    "RecordSink",
]
