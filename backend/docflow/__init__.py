"""
docflow — execution engine for visual document-extraction workflows.

Workflows are graphs of input, process, transform and output nodes.
The engine validates them, runs them against pluggable connectors,
and packages them for deployment.
"""

from docflow.workflow import (
    NodeCategory,
    WorkflowDefinition,
    WorkflowEdge,
    WorkflowExecutor,
    WorkflowNode,
    WorkflowResult,
    build_node_registry,
    get_node_registry,
)
from docflow.connectors import ConnectorServices, RetryPolicy
from docflow.deployment import DeploymentPackager

__version__ = "0.1.0"

__all__ = [
    "NodeCategory",
    "WorkflowDefinition",
    "WorkflowEdge",
    "WorkflowExecutor",
    "WorkflowNode",
    "WorkflowResult",
    "build_node_registry",
    "get_node_registry",
    "ConnectorServices",
    "RetryPolicy",
    "DeploymentPackager",
]
