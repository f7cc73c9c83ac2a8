"""
Pre-built Workflow Templates.

Factory functions returning ready-made ``WorkflowDefinition`` objects
for the common document types: invoices, contracts, medical records
and receipts. They are saved to the WorkflowStore on first startup so
users can clone or study them.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

from docflow.workflow.workflow_model import (
    NodeCategory,
    WorkflowDefinition,
    WorkflowEdge,
    WorkflowNode,
)


class _TemplateBuilder:
    """Collect nodes laid out left-to-right and chain them with edges."""

    _X0, _DX, _Y = 50, 230, 100

    def __init__(self) -> None:
        self.nodes: List[WorkflowNode] = []
        self.edges: List[WorkflowEdge] = []

    def add(
        self,
        node_type: str,
        node_id: str,
        label: str,
        category: NodeCategory,
        config: Optional[Dict[str, Any]] = None,
    ) -> "_TemplateBuilder":
        self.nodes.append(WorkflowNode(
            id=node_id,
            node_type=node_type,
            category=category,
            label=label,
            config=config or {},
            position={"x": self._X0 + self._DX * len(self.nodes), "y": self._Y},
        ))
        return self

    def chain(self) -> "_TemplateBuilder":
        for index, (src, tgt) in enumerate(zip(self.nodes, self.nodes[1:]), start=1):
            self.edges.append(WorkflowEdge(id=f"e{index}", source=src.id, target=tgt.id))
        return self


# ============================================================================
# Templates
# ============================================================================


def create_invoice_template() -> WorkflowDefinition:
    """PDF → OCR → AI Extract → JSON."""
    b = (
        _TemplateBuilder()
        .add("pdf", "pdf-1", "PDF Input", NodeCategory.INPUT, {"source": "upload"})
        .add("ocr", "ocr-1", "OCR Processing", NodeCategory.PROCESS, {"engine": "tesseract"})
        .add("ai-extract", "extract-1", "AI Extract", NodeCategory.PROCESS,
             {"fields": ["invoice_number", "date", "vendor", "total", "items"]})
        .add("json", "json-1", "JSON Output", NodeCategory.OUTPUT, {"format": "json"})
        .chain()
    )
    return WorkflowDefinition(
        id="template-invoice",
        name="Invoice Extraction",
        description="Scan invoices and extract number, date, vendor, total and line items.",
        nodes=b.nodes,
        edges=b.edges,
        is_template=True,
        template_name="invoice",
    )


def create_contract_template() -> WorkflowDefinition:
    """PDF → Parser → Regex Extract → Validate → JSON."""
    b = (
        _TemplateBuilder()
        .add("pdf", "pdf-1", "PDF Input", NodeCategory.INPUT, {"source": "upload"})
        .add("parser", "parse-1", "Parser", NodeCategory.PROCESS, {"mode": "text"})
        .add("regex", "regex-1", "Regex Extract", NodeCategory.PROCESS,
             {"patterns": ["parties", "dates", "terms"]})
        .add("validate", "validate-1", "Validate", NodeCategory.TRANSFORM,
             {"rules": ["required_fields"]})
        .add("json", "json-1", "JSON Output", NodeCategory.OUTPUT, {"format": "json"})
        .chain()
    )
    return WorkflowDefinition(
        id="template-contract",
        name="Contract Analysis",
        description="Parse contracts and pull out parties, dates and terms.",
        nodes=b.nodes,
        edges=b.edges,
        is_template=True,
        template_name="contract",
    )


def create_medical_template() -> WorkflowDefinition:
    """Image → OCR → AI Extract → Table Extract → JSON."""
    b = (
        _TemplateBuilder()
        .add("image", "img-1", "Image Input", NodeCategory.INPUT, {"source": "upload"})
        .add("ocr", "ocr-1", "OCR Processing", NodeCategory.PROCESS, {"engine": "tesseract"})
        .add("ai-extract", "extract-1", "AI Extract", NodeCategory.PROCESS,
             {"fields": ["patient_name", "date_of_birth", "diagnoses", "medications"]})
        .add("table", "table-1", "Table Extract", NodeCategory.PROCESS, {"mode": "structured"})
        .add("json", "json-1", "JSON Output", NodeCategory.OUTPUT, {"format": "json"})
        .chain()
    )
    return WorkflowDefinition(
        id="template-medical",
        name="Medical Records",
        description="Read scanned medical forms: patient, diagnoses and medications.",
        nodes=b.nodes,
        edges=b.edges,
        is_template=True,
        template_name="medical",
    )


def create_receipt_template() -> WorkflowDefinition:
    """Image → OCR → AI Extract → CSV."""
    b = (
        _TemplateBuilder()
        .add("image", "img-1", "Image Input", NodeCategory.INPUT, {"source": "upload"})
        .add("ocr", "ocr-1", "OCR Processing", NodeCategory.PROCESS, {"engine": "tesseract"})
        .add("ai-extract", "extract-1", "AI Extract", NodeCategory.PROCESS,
             {"fields": ["store", "date", "items", "total", "tax"]})
        .add("csv", "csv-1", "CSV Output", NodeCategory.OUTPUT, {"format": "csv"})
        .chain()
    )
    return WorkflowDefinition(
        id="template-receipt",
        name="Receipt Scanner",
        description="Photograph receipts and export store, items, total and tax as CSV.",
        nodes=b.nodes,
        edges=b.edges,
        is_template=True,
        template_name="receipt",
    )


# ============================================================================
# Template Registry
# ============================================================================

ALL_TEMPLATES: Dict[str, Callable[[], WorkflowDefinition]] = {
    "invoice": create_invoice_template,
    "contract": create_contract_template,
    "medical": create_medical_template,
    "receipt": create_receipt_template,
}


def get_template(name: str) -> WorkflowDefinition:
    """Return a fresh copy of the named template."""
    try:
        factory = ALL_TEMPLATES[name]
    except KeyError:
        raise KeyError(
            f"Unknown template '{name}' (available: {', '.join(ALL_TEMPLATES)})"
        ) from None
    return factory()


def install_templates(store) -> int:
    """Install built-in templates into the workflow store.

    Always overwrites existing templates to keep them up-to-date.
    Returns the number of templates installed.
    """
    installed = 0
    for factory in ALL_TEMPLATES.values():
        store.save(factory())
        installed += 1
    return installed
