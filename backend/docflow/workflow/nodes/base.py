"""
Node Registry — node type declarations and their bound executors.

Two ways to declare a node type:

* Subclass ``BaseNode`` and decorate with ``@register_node``; the class
  joins the built-in catalog and is instantiated (bound to a set of
  ``ConnectorServices``) by ``build_node_registry``.
* Call ``NodeRegistry.register(type_id, category, default_config,
  executor)`` with any connector: a coroutine function, a plain
  callable, or an object with ``execute(payload, config)``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping as MappingABC
from dataclasses import dataclass, field
from logging import getLogger
from typing import Any, ClassVar, Dict, List, Mapping, Optional, Sequence, Type

from pydantic import BaseModel, Field

from docflow.connectors.base import NO_RETRY, Executor, RetryPolicy, resolve_callable
from docflow.connectors.services import ConnectorServices
from docflow.exceptions import (
    ConfigValidationError,
    DuplicateTypeError,
    UnknownTypeError,
)
from docflow.workflow.payload import MergeStrategy, deep_merge
from docflow.workflow.workflow_model import NodeCategory, WorkflowDefinition, WorkflowNode

logger = getLogger(__name__)

MERGE_STRATEGY_KEY = "merge_strategy"


# ============================================================================
# Parameter schema
# ============================================================================


class NodeParameter(BaseModel):
    """One configurable option of a node type, as shown in the editor."""

    name: str
    label: str = ""
    type: str = "string"  # string | number | integer | boolean | select | list | mapping | json
    default: Any = None
    required: bool = False
    description: str = ""
    group: str = "general"
    options: List[Any] = Field(default_factory=list)
    min: Optional[float] = None
    max: Optional[float] = None

    def check(self, value: Any) -> Optional[str]:
        """Return a problem description, or None if ``value`` is acceptable."""
        if value is None:
            return f"'{self.name}' is required" if self.required else None
        if self.type == "json":
            return None

        if self.type in ("string", "select"):
            ok = isinstance(value, str)
        elif self.type == "number":
            ok = isinstance(value, (int, float)) and not isinstance(value, bool)
        elif self.type == "integer":
            ok = isinstance(value, int) and not isinstance(value, bool)
        elif self.type == "boolean":
            ok = isinstance(value, bool)
        elif self.type == "list":
            ok = isinstance(value, (list, tuple))
        elif self.type == "mapping":
            ok = isinstance(value, MappingABC)
        else:
            return f"'{self.name}' has unsupported parameter type '{self.type}'"
        if not ok:
            return f"'{self.name}' must be {self.type}, got {type(value).__name__}"

        if self.options and value not in self.options:
            return f"'{self.name}' must be one of {self.options}, got {value!r}"
        if self.min is not None and value < self.min:
            return f"'{self.name}' must be >= {self.min:g}"
        if self.max is not None and value > self.max:
            return f"'{self.name}' must be <= {self.max:g}"
        return None


# ============================================================================
# BaseNode
# ============================================================================


class BaseNode(ABC):
    """Base class for built-in node types.

    Subclasses declare class-level metadata and implement ``execute``.
    Instances are connectors: ``execute(payload, config)`` receives
    the merged predecessor output and the effective config.
    """

    node_type: ClassVar[str] = ""
    label: ClassVar[str] = ""
    description: ClassVar[str] = ""
    category: ClassVar[NodeCategory] = NodeCategory.PROCESS
    icon: ClassVar[str] = ""
    parameters: ClassVar[List[NodeParameter]] = []
    retry_policy: ClassVar[Optional[RetryPolicy]] = None
    timeout: ClassVar[Optional[float]] = None

    def __init__(self, services: Optional[ConnectorServices] = None) -> None:
        self.services = services or ConnectorServices()

    @abstractmethod
    async def execute(self, payload: Any, config: Mapping[str, Any]) -> Any:
        """Run the node and return its output payload."""

    @classmethod
    def default_config(cls) -> Dict[str, Any]:
        return {p.name: p.default for p in cls.parameters if p.default is not None}

    def input_strategy(self, config: Mapping[str, Any]) -> MergeStrategy:
        """Merge strategy for nodes with several predecessors."""
        return MergeStrategy.from_config(config)


_BUILTIN_NODE_CLASSES: List[Type[BaseNode]] = []


def register_node(cls: Type[BaseNode]) -> Type[BaseNode]:
    """Class decorator adding a ``BaseNode`` subclass to the built-in catalog."""
    if not cls.node_type:
        raise ValueError(f"{cls.__name__} must define node_type")
    if any(existing.node_type == cls.node_type for existing in _BUILTIN_NODE_CLASSES):
        raise DuplicateTypeError(cls.node_type)
    _BUILTIN_NODE_CLASSES.append(cls)
    return cls


# ============================================================================
# Registry
# ============================================================================


@dataclass
class NodeTypeEntry:
    """A registered node type: its declaration plus the bound executor."""

    type_id: str
    category: NodeCategory
    executor: Executor
    default_config: Dict[str, Any] = field(default_factory=dict)
    retry_policy: RetryPolicy = NO_RETRY
    timeout: Optional[float] = None
    parameters: List[NodeParameter] = field(default_factory=list)
    label: str = ""
    description: str = ""
    icon: str = ""

    def merge_strategy(self, config: Mapping[str, Any]) -> MergeStrategy:
        hook = getattr(self.executor, "input_strategy", None)
        if hook is not None:
            return hook(config)
        return MergeStrategy.from_config(config)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for the editor palette."""
        return {
            "node_type": self.type_id,
            "category": self.category.value,
            "label": self.label or self.type_id,
            "description": self.description,
            "icon": self.icon,
            "default_config": self.default_config,
            "parameters": [p.model_dump() for p in self.parameters],
            "retry": self.retry_policy.model_dump(),
            "timeout": self.timeout,
        }


class NodeRegistry:
    """Map node type ids to their declarations and executors."""

    def __init__(self) -> None:
        self._entries: Dict[str, NodeTypeEntry] = {}

    # ── Registration ──

    def register(
        self,
        type_id: str,
        category: NodeCategory | str,
        default_config: Optional[Mapping[str, Any]] = None,
        executor: Optional[Executor] = None,
        *,
        retry_policy: Optional[RetryPolicy] = None,
        timeout: Optional[float] = None,
        parameters: Sequence[NodeParameter] = (),
        label: str = "",
        description: str = "",
        icon: str = "",
    ) -> NodeTypeEntry:
        if type_id in self._entries:
            raise DuplicateTypeError(type_id)
        if executor is None:
            raise ValueError(f"Node type '{type_id}' needs an executor")
        resolve_callable(executor)  # fail fast on non-connectors

        entry = NodeTypeEntry(
            type_id=type_id,
            category=NodeCategory(category),
            executor=executor,
            default_config=deep_merge(default_config or {}, {}),
            retry_policy=retry_policy or NO_RETRY,
            timeout=timeout,
            parameters=list(parameters),
            label=label,
            description=description,
            icon=icon,
        )
        self._entries[type_id] = entry
        return entry

    def register_node_class(
        self,
        node_cls: Type[BaseNode],
        services: Optional[ConnectorServices] = None,
    ) -> NodeTypeEntry:
        node = node_cls(services)
        return self.register(
            node_cls.node_type,
            node_cls.category,
            node_cls.default_config(),
            node,
            retry_policy=node_cls.retry_policy,
            timeout=node_cls.timeout,
            parameters=node_cls.parameters,
            label=node_cls.label,
            description=node_cls.description,
            icon=node_cls.icon,
        )

    def unregister(self, type_id: str) -> bool:
        return self._entries.pop(type_id, None) is not None

    # ── Lookup ──

    def resolve(self, type_id: str, node_id: Optional[str] = None) -> NodeTypeEntry:
        try:
            return self._entries[type_id]
        except KeyError:
            raise UnknownTypeError(type_id, node_id=node_id) from None

    def get(self, type_id: str) -> Optional[NodeTypeEntry]:
        return self._entries.get(type_id)

    def __contains__(self, type_id: object) -> bool:
        return type_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def list_all(self) -> List[NodeTypeEntry]:
        return list(self._entries.values())

    def by_category(self) -> Dict[str, List[NodeTypeEntry]]:
        """Palette grouping used by the editor sidebar."""
        grouped: Dict[str, List[NodeTypeEntry]] = {c.value: [] for c in NodeCategory}
        for entry in self._entries.values():
            grouped[entry.category.value].append(entry)
        return grouped

    # ── Config ──

    def effective_config(
        self, type_id: str, overrides: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Defaults deep-merged with ``overrides`` (overrides win)."""
        return deep_merge(self.resolve(type_id).default_config, overrides or {})

    def validate_config(
        self,
        type_id: str,
        config: Mapping[str, Any],
        node_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Validate a node's config and return its effective config."""
        entry = self.resolve(type_id, node_id=node_id)
        effective = deep_merge(entry.default_config, config)
        problems: List[str] = []

        strategy = effective.get(MERGE_STRATEGY_KEY)
        if strategy is not None and strategy not in {s.value for s in MergeStrategy}:
            problems.append(
                f"'{MERGE_STRATEGY_KEY}' must be one of "
                f"{[s.value for s in MergeStrategy]}, got {strategy!r}"
            )

        if entry.parameters:
            declared = {p.name for p in entry.parameters} | {MERGE_STRATEGY_KEY}
            problems.extend(
                f"unknown option '{key}'" for key in effective if key not in declared
            )
            for param in entry.parameters:
                problem = param.check(effective.get(param.name))
                if problem:
                    problems.append(problem)
        if problems:
            raise ConfigValidationError(type_id, problems, node_id=node_id)
        return effective

    def check_node(self, node: WorkflowNode) -> Dict[str, Any]:
        """Resolve and validate one node; return its effective config."""
        entry = self.resolve(node.node_type, node_id=node.id)
        if node.category != entry.category:
            raise ConfigValidationError(
                node.node_type,
                [
                    f"category '{node.category.value}' does not match "
                    f"node type category '{entry.category.value}'"
                ],
                node_id=node.id,
            )
        return self.validate_config(node.node_type, node.config, node_id=node.id)

    def check_workflow(self, workflow: WorkflowDefinition) -> Dict[str, Dict[str, Any]]:
        """Resolve every node of a workflow; node id → effective config."""
        return {node.id: self.check_node(node) for node in workflow.nodes}

    # ── Node construction ──

    def create_node(
        self,
        type_id: str,
        node_id: Optional[str] = None,
        config: Optional[Mapping[str, Any]] = None,
        label: str = "",
        position: Optional[Mapping[str, float]] = None,
    ) -> WorkflowNode:
        """Build a validated node instance for ``type_id``."""
        entry = self.resolve(type_id, node_id=node_id)
        overrides = dict(config or {})
        self.validate_config(type_id, overrides, node_id=node_id)
        data: Dict[str, Any] = {
            "node_type": type_id,
            "category": entry.category,
            "label": label or entry.label or type_id,
            "config": overrides,
        }
        if node_id:
            data["id"] = node_id
        if position is not None:
            data["position"] = dict(position)
        return WorkflowNode(**data)

    def update_node_config(
        self, node: WorkflowNode, overrides: Mapping[str, Any],
    ) -> WorkflowNode:
        """Return a copy of ``node`` with validated, deep-merged config."""
        new_config = deep_merge(node.config, overrides)
        self.validate_config(node.node_type, new_config, node_id=node.id)
        return node.model_copy(update={"config": new_config})


# ============================================================================
# Built-in registry construction
# ============================================================================


def build_node_registry(
    services: Optional[ConnectorServices] = None,
    include_builtins: bool = True,
) -> NodeRegistry:
    """Create a registry with every built-in node bound to ``services``."""
    registry = NodeRegistry()
    if include_builtins:
        from docflow.workflow import nodes  # noqa: F401  (triggers @register_node)

        services = services or ConnectorServices()
        for node_cls in _BUILTIN_NODE_CLASSES:
            registry.register_node_class(node_cls, services)
        logger.info(f"Node registry built: {len(registry)} node types")
    return registry


_registry_instance: Optional[NodeRegistry] = None


def get_node_registry() -> NodeRegistry:
    """Return the process-wide default NodeRegistry."""
    global _registry_instance
    if _registry_instance is None:
        _registry_instance = build_node_registry()
    return _registry_instance
