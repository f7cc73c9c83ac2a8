"""Shared fixtures: fake connector backends, registries and workflow builders."""

import asyncio
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pytest

from docflow.config import reset_config_cache
from docflow.connectors import ConnectorServices
from docflow.exceptions import ConnectorError
from docflow.workflow import (
    NodeCategory,
    NodeRegistry,
    WorkflowDefinition,
    WorkflowEdge,
    WorkflowNode,
    build_node_registry,
)

PDF_BYTES = b"%PDF-1.4\n1 0 obj\n<< /Type /Catalog >>\nendobj\n%%EOF\n"
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32

INVOICE_TEXT = "ACME Supplies\nInvoice INV-1001\nDate: 2024-03-01\nTotal: $120.00"


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch, tmp_path):
    """Fresh config instances and private storage directories per test."""
    for name in (
        "DOCFLOW_MAX_CONCURRENCY",
        "DOCFLOW_FAILURE_POLICY",
        "DOCFLOW_CANCEL_POLICY",
        "DOCFLOW_NODE_TIMEOUT",
        "DOCFLOW_STRICT_OUTPUTS",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("DOCFLOW_WORKFLOW_DIR", str(tmp_path / "workflows"))
    monkeypatch.setenv("DOCFLOW_BUNDLE_DIR", str(tmp_path / "bundles"))
    reset_config_cache()
    yield
    reset_config_cache()


# ── Fake backends ──


class FakeOCR:
    def __init__(self, text: str = INVOICE_TEXT, confidence: float = 0.9, error: Optional[Exception] = None):
        self.text = text
        self.confidence = confidence
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    def recognize(self, document, *, engine, language):
        self.calls.append({"kind": document["kind"], "engine": engine, "language": language})
        if self.error is not None:
            raise self.error
        return {"text": self.text, "confidence": self.confidence}


class FakeExtractor:
    def __init__(self, result: Optional[Dict[str, Any]] = None):
        self.result = result if result is not None else {
            "invoice_number": "INV-1001",
            "date": "2024-03-01",
            "total": "$120.00",
            "confidence": 0.95,
        }
        self.calls: List[Dict[str, Any]] = []

    async def extract(self, text, *, fields, model, document_type):
        self.calls.append({"text": text, "fields": fields, "model": model})
        return dict(self.result)


class FakeParser:
    def parse(self, document, *, mode):
        return {"text": "Parsed   text\n\n\nsecond line", "pages": 2}


class FakeSink:
    def __init__(self):
        self.records: List[Tuple[str, str, Any]] = []

    def write(self, connection, payload, *, table):
        self.records.append((connection, table, payload))
        return {"id": len(self.records)}


@pytest.fixture
def ocr():
    return FakeOCR()


@pytest.fixture
def extractor():
    return FakeExtractor()


@pytest.fixture
def sink():
    return FakeSink()


@pytest.fixture
def services(ocr, extractor, sink):
    return ConnectorServices(ocr=ocr, extractor=extractor, parser=FakeParser(), sink=sink)


@pytest.fixture
def registry(services):
    """Every built-in node type bound to the fake backends."""
    return build_node_registry(services)


# ── Minimal connectors for scheduling tests ──


class CallLog:
    """Records which nodes were invoked, keyed by their ``name`` option."""

    def __init__(self):
        self.names: List[str] = []
        self.active = 0
        self.peak = 0

    def enter(self, config):
        self.names.append(config.get("name", "?"))
        self.active += 1
        self.peak = max(self.peak, self.active)

    def leave(self):
        self.active -= 1


@pytest.fixture
def call_log():
    return CallLog()


@pytest.fixture
def simple_registry(call_log):
    """Tiny node types: ``source`` → ``tag`` / ``fail`` → ``collect``."""
    registry = NodeRegistry()

    async def source(payload, config):
        call_log.enter(config)
        call_log.leave()
        return payload if payload is not None else config.get("value")

    async def tag(payload, config):
        call_log.enter(config)
        try:
            await asyncio.sleep(config.get("delay", 0))
            return {"tag": config.get("name"), "input": payload}
        finally:
            call_log.leave()

    def fail(payload, config):
        call_log.enter(config)
        call_log.leave()
        raise ConnectorError(config.get("message", "boom"))

    async def collect(payload, config):
        call_log.enter(config)
        call_log.leave()
        return payload

    registry.register("source", NodeCategory.INPUT, {}, source)
    registry.register("tag", NodeCategory.PROCESS, {}, tag)
    registry.register("fail", NodeCategory.PROCESS, {}, fail)
    registry.register("collect", NodeCategory.OUTPUT, {}, collect)
    return registry


_CATEGORIES = {
    "source": NodeCategory.INPUT,
    "tag": NodeCategory.PROCESS,
    "fail": NodeCategory.PROCESS,
    "collect": NodeCategory.OUTPUT,
}


def make_workflow(
    nodes: Sequence[Tuple[str, str]],
    edges: Sequence[Tuple[str, str]],
    configs: Optional[Dict[str, Dict[str, Any]]] = None,
    categories: Optional[Dict[str, NodeCategory]] = None,
) -> WorkflowDefinition:
    """Build a workflow from ``(node_id, node_type)`` pairs and edge pairs.

    Each node's ``name`` option defaults to its id.
    """
    configs = configs or {}
    categories = {**_CATEGORIES, **(categories or {})}
    return WorkflowDefinition(
        name="test",
        nodes=[
            WorkflowNode(
                id=node_id,
                node_type=node_type,
                category=categories[node_type],
                config={"name": node_id, **configs.get(node_id, {})},
            )
            for node_id, node_type in nodes
        ],
        edges=[
            WorkflowEdge(id=f"e{i}", source=s, target=t)
            for i, (s, t) in enumerate(edges, start=1)
        ],
    )


@pytest.fixture
def build_workflow():
    return make_workflow


@pytest.fixture
def pdf_bytes():
    return PDF_BYTES


@pytest.fixture
def png_bytes():
    return PNG_BYTES
