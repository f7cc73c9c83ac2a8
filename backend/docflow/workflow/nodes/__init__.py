"""
Workflow Nodes Package.

Importing this package registers every built-in node class in the
catalog used by ``build_node_registry``.
"""

from docflow.workflow.nodes.base import get_node_registry

# Import all node modules to trigger registration
from docflow.workflow.nodes import input_nodes      # noqa: F401
from docflow.workflow.nodes import process_nodes    # noqa: F401
from docflow.workflow.nodes import transform_nodes  # noqa: F401
from docflow.workflow.nodes import output_nodes     # noqa: F401


def register_all_nodes() -> None:
    """Build the default registry at application startup.

    The module-level imports above trigger the ``@register_node``
    decorators; this function provides an explicit entry point.
    """
    registry = get_node_registry()
    from logging import getLogger
    getLogger(__name__).info(
        f"✅ Workflow nodes registered: {len(registry)} node types"
    )


__all__ = ["register_all_nodes"]
