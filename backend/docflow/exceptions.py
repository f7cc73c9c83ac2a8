"""
Exception taxonomy for the workflow engine.

Structural and registry errors are raised before any node runs.
Execution errors are captured per node and surfaced through
``WorkflowResult``; connectors raise ``ConnectorError`` (permanent)
or ``TransientConnectorError`` (eligible for retry).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, List, Optional, Sequence

if TYPE_CHECKING:
    from docflow.workflow.workflow_graph import ValidationReport


class WorkflowError(Exception):
    """Base class for every error raised by the engine."""


# ============================================================================
# Graph (structural) errors
# ============================================================================


class GraphError(WorkflowError):
    """A structural problem in a workflow graph."""

    kind = "graph_error"

    def __init__(self, message: str, node_ids: Sequence[str] = ()) -> None:
        super().__init__(message)
        self.message = message
        self.node_ids: List[str] = list(node_ids)

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message, "node_ids": self.node_ids}


class CycleError(GraphError):
    """The graph contains a directed cycle.

    ``cycle`` lists the offending node sequence with the first node
    repeated at the end, e.g. ``["a", "b", "c", "a"]``.
    """

    kind = "cycle"

    def __init__(self, cycle: Sequence[str]) -> None:
        self.cycle = list(cycle)
        super().__init__(
            f"Workflow contains a cycle: {' → '.join(self.cycle)}",
            node_ids=self.cycle[:-1] if len(self.cycle) > 1 else self.cycle,
        )


class DanglingEdgeError(GraphError):
    kind = "dangling_edge"

    def __init__(self, source: str, target: str, missing: Sequence[str]) -> None:
        self.source = source
        self.target = target
        self.missing = list(missing)
        super().__init__(
            f"Edge {source} → {target} references unknown node(s): "
            f"{', '.join(self.missing)}",
            node_ids=self.missing,
        )


class NoInputNodeError(GraphError):
    kind = "no_input_node"

    def __init__(self) -> None:
        super().__init__("Workflow must have at least one source node of category 'input'.")


class DisconnectedOutputError(GraphError):
    """An output node cannot be reached from any input node."""

    kind = "disconnected_output"

    def __init__(self, node_id: str) -> None:
        self.node_id = node_id
        super().__init__(
            f"Output node '{node_id}' is not reachable from any input node.",
            node_ids=[node_id],
        )


class DuplicateNodeError(GraphError):
    kind = "duplicate_node"

    def __init__(self, node_id: str) -> None:
        self.node_id = node_id
        super().__init__(f"Duplicate node id '{node_id}'.", node_ids=[node_id])


class InvalidEdgeError(GraphError):
    """Self-loop or duplicate edge."""

    kind = "invalid_edge"

    def __init__(self, source: str, target: str, reason: str) -> None:
        self.source = source
        self.target = target
        self.reason = reason
        super().__init__(f"Invalid edge {source} → {target}: {reason}", node_ids=[source, target])


class ValidationFailed(WorkflowError):
    """Raised when a workflow does not pass structural validation."""

    def __init__(self, report: "ValidationReport") -> None:
        self.report = report
        self.errors: List[GraphError] = list(report.errors)
        lines = "\n".join(f"  • {e.message}" for e in self.errors)
        super().__init__(f"Workflow validation failed:\n{lines}")


# ============================================================================
# Registry errors
# ============================================================================


class RegistryError(WorkflowError):
    """A node type could not be registered or resolved."""


class DuplicateTypeError(RegistryError):
    def __init__(self, type_id: str) -> None:
        self.type_id = type_id
        super().__init__(f"Node type '{type_id}' is already registered")


class UnknownTypeError(RegistryError):
    def __init__(self, type_id: str, node_id: Optional[str] = None) -> None:
        self.type_id = type_id
        self.node_id = node_id
        where = f" (node '{node_id}')" if node_id else ""
        super().__init__(f"Unknown node type '{type_id}'{where}")


class ConfigValidationError(RegistryError):
    """A node config does not match its type's parameter schema."""

    def __init__(
        self, type_id: str, problems: Sequence[str], node_id: Optional[str] = None,
    ) -> None:
        self.type_id = type_id
        self.node_id = node_id
        self.problems = list(problems)
        where = f"node '{node_id}' ({type_id})" if node_id else f"node type '{type_id}'"
        super().__init__(f"Invalid config for {where}: {'; '.join(self.problems)}")


# ============================================================================
# Execution errors
# ============================================================================


class ExecutionError(WorkflowError):
    """A failure that happened while a run was executing."""

    node_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {"type": type(self).__name__, "node_id": self.node_id, "message": str(self)}


class NodeExecutionFailed(ExecutionError):
    def __init__(self, node_id: str, cause: BaseException) -> None:
        self.node_id = node_id
        self.cause = cause
        super().__init__(f"Node '{node_id}' failed: {describe_error(cause)}")

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["cause"] = describe_error(self.cause)
        data["cause_type"] = type(self.cause).__name__
        return data


class NodeTimeout(ExecutionError):
    def __init__(self, node_id: str, timeout: float) -> None:
        self.node_id = node_id
        self.timeout = timeout
        super().__init__(f"Node '{node_id}' timed out after {timeout:g}s")


class NoOutputProduced(ExecutionError):
    def __init__(self) -> None:
        super().__init__("Run completed but no output node succeeded")


class RunCancelled(ExecutionError):
    def __init__(self, pending: Sequence[str] = ()) -> None:
        self.pending = list(pending)
        super().__init__(
            "Run was cancelled"
            + (f" ({len(self.pending)} node(s) not started)" if self.pending else "")
        )


class InvalidTransitionError(ExecutionError, RuntimeError):
    def __init__(self, node_id: str, current: Any, requested: Any) -> None:
        self.node_id = node_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Node '{node_id}' cannot move from {getattr(current, 'value', current)} "
            f"to {getattr(requested, 'value', requested)}"
        )


# ============================================================================
# Connector errors
# ============================================================================


class ConnectorError(WorkflowError):
    """A connector failed permanently."""


class TransientConnectorError(ConnectorError):
    """A connector failed in a way that may succeed on retry."""


# ============================================================================
# Deployment errors
# ============================================================================


class DeploymentError(WorkflowError):
    """Packaging or provisioning of a workflow bundle failed."""


class PackagingFailed(DeploymentError):
    def __init__(self, stage: Any, cause: BaseException) -> None:
        self.stage = stage
        self.cause = cause
        super().__init__(
            f"Deployment failed during '{getattr(stage, 'value', stage)}': "
            f"{describe_error(cause)}"
        )


def describe_error(exc: BaseException) -> str:
    """Human-readable one-liner for an exception."""
    text = str(exc).strip()
    return text if text else type(exc).__name__
