"""
Workflow Engine — document-extraction workflow graphs.

Provides the infrastructure for defining, validating, storing and
executing workflows built in the visual node-edge editor.

Architecture:
    nodes/              — BaseNode, NodeRegistry + built-in node types
    workflow_model      — Data models for workflow definitions
    workflow_graph      — Structural validation and topological ordering
    execution_context   — Per-run node state and event log
    workflow_executor   — Runs a WorkflowDefinition node by node
    workflow_inspector  — Execution-plan report for the editor
    workflow_store      — Persistence layer for workflow definitions
    templates           — Pre-built workflow templates (invoice, etc.)
"""

from docflow.workflow.execution_context import (
    ExecutionContext,
    LogLevel,
    NodeStatus,
    RunEvent,
    RunLogEntry,
)
from docflow.workflow.nodes.base import (
    BaseNode,
    NodeParameter,
    NodeRegistry,
    NodeTypeEntry,
    build_node_registry,
    get_node_registry,
    register_node,
)
from docflow.workflow.payload import MergeStrategy
from docflow.workflow.workflow_model import (
    NodeCategory,
    WorkflowDefinition,
    WorkflowEdge,
    WorkflowNode,
)
from docflow.workflow.workflow_graph import (
    ValidationReport,
    topological_order,
    topological_ranks,
    validate_workflow,
)
from docflow.workflow.workflow_result import RunStatus, WorkflowResult
from docflow.workflow.workflow_executor import (
    CancelPolicy,
    FailurePolicy,
    RunHandle,
    WorkflowExecutor,
)
from docflow.workflow.workflow_inspector import inspect_workflow
from docflow.workflow.workflow_store import WorkflowStore, get_workflow_store
from docflow.workflow.templates import ALL_TEMPLATES, get_template, install_templates

__all__ = [
    "ExecutionContext",
    "LogLevel",
    "NodeStatus",
    "RunEvent",
    "RunLogEntry",
    "BaseNode",
    "NodeParameter",
    "NodeRegistry",
    "NodeTypeEntry",
    "build_node_registry",
    "get_node_registry",
    "register_node",
    "MergeStrategy",
    "NodeCategory",
    "WorkflowDefinition",
    "WorkflowEdge",
    "WorkflowNode",
    "ValidationReport",
    "topological_order",
    "topological_ranks",
    "validate_workflow",
    "RunStatus",
    "WorkflowResult",
    "CancelPolicy",
    "FailurePolicy",
    "RunHandle",
    "WorkflowExecutor",
    "inspect_workflow",
    "WorkflowStore",
    "get_workflow_store",
    "ALL_TEMPLATES",
    "get_template",
    "install_templates",
]
