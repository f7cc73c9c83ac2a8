"""
Workflow Inspector — a readable view of how a WorkflowDefinition
will execute.

Runs the same validation and ordering as ``WorkflowExecutor`` but,
instead of executing, produces a structured report and a text plan
showing:

* The execution order and the stages that could run in parallel
* Each node's effective config, retry policy and timeout
* Where several inputs meet and how they are merged
* Validation errors and warnings

Invalid workflows are still inspected; ordering fields are ``None``
when the graph has a cycle.
"""

from __future__ import annotations

import json
from logging import getLogger
from typing import Any, Dict, List, Optional

from docflow.exceptions import CycleError, RegistryError
from docflow.workflow.nodes.base import NodeRegistry, NodeTypeEntry, get_node_registry
from docflow.workflow.workflow_graph import (
    predecessor_map,
    successor_map,
    topological_order,
    topological_ranks,
    validate_workflow,
)
from docflow.workflow.workflow_model import WorkflowDefinition, WorkflowNode

logger = getLogger(__name__)


# ====================================================================
# Public API
# ====================================================================


def inspect_workflow(
    workflow: WorkflowDefinition,
    registry: Optional[NodeRegistry] = None,
    strict_outputs: bool = False,
) -> Dict[str, Any]:
    """Inspect a workflow and produce the execution-plan report.

    Returns a dict containing:
        - ``plan``       : Text rendering of the execution plan
        - ``order``      : Topological order (None if cyclic)
        - ``stages``     : Nodes grouped by depth (None if cyclic)
        - ``nodes``      : Per-node detail list
        - ``edges``      : Per-edge detail list
        - ``summary``    : High-level stats
        - ``validation`` : Validation report
    """
    reg = registry or get_node_registry()
    report = validate_workflow(workflow, strict_outputs=strict_outputs)

    order: Optional[List[str]] = None
    stages: Optional[List[List[str]]] = None
    if not any(isinstance(e, CycleError) for e in report.errors):
        try:
            order = topological_order(workflow)
            stages = topological_ranks(workflow)
        except CycleError:
            order = stages = None

    node_details = _build_node_details(workflow, reg, order)
    registry_errors = [d["config_error"] for d in node_details if d.get("config_error")]
    valid = report.is_valid and not registry_errors

    labels = {n.id: n.label or n.id for n in workflow.nodes}
    edge_details = [
        {
            "id": e.id,
            "source": e.source,
            "target": e.target,
            "source_label": labels.get(e.source, e.source),
            "target_label": labels.get(e.target, e.target),
        }
        for e in workflow.edges
    ]

    return {
        "plan": _render_plan(workflow, node_details, stages, report.to_dict(), registry_errors),
        "order": order,
        "stages": stages,
        "nodes": node_details,
        "edges": edge_details,
        "summary": {
            "workflow_name": workflow.name,
            "workflow_id": workflow.id,
            "total_nodes": len(workflow.nodes),
            "total_edges": len(workflow.edges),
            "stages": len(stages) if stages is not None else None,
            "max_parallelism": max((len(s) for s in stages), default=0) if stages else None,
            "is_valid": valid,
        },
        "validation": {
            **report.to_dict(),
            "valid": valid,
            "registry_errors": registry_errors,
        },
    }


# ====================================================================
# Node detail builder
# ====================================================================


def _build_node_details(
    workflow: WorkflowDefinition,
    registry: NodeRegistry,
    order: Optional[List[str]],
) -> List[Dict[str, Any]]:
    preds = predecessor_map(workflow)
    succs = successor_map(workflow)
    position = {nid: i for i, nid in enumerate(order)} if order else {}
    nodes: List[WorkflowNode] = sorted(
        workflow.nodes, key=lambda n: (position.get(n.id, len(position)), n.id),
    )

    details = []
    for node in nodes:
        detail: Dict[str, Any] = {
            "id": node.id,
            "label": node.label or node.node_type,
            "node_type": node.node_type,
            "category": node.category.value,
            "step": position[node.id] + 1 if node.id in position else None,
            "predecessors": preds.get(node.id, []),
            "successors": succs.get(node.id, []),
        }
        entry: Optional[NodeTypeEntry] = registry.get(node.node_type)
        try:
            config = registry.check_node(node)
        except RegistryError as exc:
            detail["config_error"] = str(exc)
            config = dict(node.config)

        detail["config"] = config
        if entry is not None:
            detail["description"] = entry.description
            detail["retry"] = entry.retry_policy.max_attempts
            detail["timeout"] = entry.timeout
            if len(detail["predecessors"]) > 1:
                try:
                    detail["merge_strategy"] = entry.merge_strategy(config).value
                except ValueError:
                    detail["merge_strategy"] = None
        details.append(detail)
    return details


# ====================================================================
# Plan rendering
# ====================================================================


def _format_value(val: Any) -> str:
    text = val if isinstance(val, str) else json.dumps(val, ensure_ascii=False, sort_keys=True)
    if isinstance(val, str):
        text = f'"{text}"'
    return text if len(text) <= 60 else text[:60] + "…"


def _render_plan(
    workflow: WorkflowDefinition,
    node_details: List[Dict[str, Any]],
    stages: Optional[List[List[str]]],
    validation: Dict[str, Any],
    registry_errors: List[str],
) -> str:
    lines: List[str] = []
    by_id = {d["id"]: d for d in node_details}

    lines.append("═" * 60)
    lines.append(f"Execution Plan: {workflow.name}")
    lines.append(f"Nodes: {len(workflow.nodes)} | Edges: {len(workflow.edges)}")
    lines.append("═" * 60)

    if stages is None:
        lines.append("")
        lines.append("No execution order: the workflow contains a cycle.")
    else:
        for index, stage in enumerate(stages, start=1):
            lines.append("")
            parallel = " (parallel)" if len(stage) > 1 else ""
            lines.append(f"── Stage {index}{parallel} " + "─" * 20)
            for nid in stage:
                d = by_id[nid]
                lines.append(f"[{d['step']}] {d['label']}  ({d['node_type']}, {d['category']})")
                if d["predecessors"]:
                    merged = f"  merge={d['merge_strategy']}" if d.get("merge_strategy") else ""
                    lines.append(f"    ← {', '.join(d['predecessors'])}{merged}")
                if d["config"]:
                    parts = [f"{k}={_format_value(v)}" for k, v in sorted(d["config"].items())]
                    lines.append(f"    config: {', '.join(parts)}")
                extras = []
                if d.get("retry", 1) > 1:
                    extras.append(f"retry×{d['retry']}")
                if d.get("timeout"):
                    extras.append(f"timeout={d['timeout']:g}s")
                if extras:
                    lines.append(f"    {' '.join(extras)}")

    problems = [e["message"] for e in validation["errors"]] + registry_errors
    warnings = [w["message"] for w in validation["warnings"]]
    lines.append("")
    lines.append("─" * 60)
    if problems:
        lines.append("✗ Invalid:")
        lines.extend(f"  • {p}" for p in problems)
    else:
        lines.append("✓ Valid")
    lines.extend(f"  ⚠ {w}" for w in warnings)
    return "\n".join(lines)
