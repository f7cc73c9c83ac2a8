"""
Deployment Packager — turn a validated workflow into a bundle and
drive a caller-supplied backend through the deployment stages.

Provisioning itself (building images, uploading, wiring endpoints)
is the backend's job; the packager only validates, builds the
manifest, sequences the stages and reports progress::

    preparing ──► building ──► deploying ──► configuring
    (manifest)    backend.build  backend.deploy  backend.configure
"""

from __future__ import annotations

import asyncio
import time
from logging import getLogger
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple, Union, runtime_checkable

from docflow.config import EngineConfig, StorageConfig, get_config
from docflow.connectors.base import call_service
from docflow.exceptions import DeploymentError, PackagingFailed
from docflow.deployment.manifest import (
    STAGES,
    BundleManifest,
    DeploymentResult,
    DeploymentStage,
    ManifestEdge,
    ManifestNode,
    ManifestNodeType,
    StageEvent,
    StageStatus,
)
from docflow.workflow.nodes.base import NodeRegistry, get_node_registry
from docflow.workflow.workflow_graph import (
    ValidationReport,
    topological_order,
    topological_ranks,
    validate_workflow,
)
from docflow.workflow.workflow_model import WorkflowDefinition

logger = getLogger(__name__)

StageObserver = Callable[[StageEvent], None]


@runtime_checkable
class DeploymentBackend(Protocol):
    """Provisioning target. Methods may be sync or async."""

    def build(self, manifest: BundleManifest) -> Any:
        """Build a deployable artifact; the return value is passed to ``deploy``."""

    def deploy(self, manifest: BundleManifest, artifact: Any) -> str:
        """Publish the artifact and return the endpoint identifier."""

    def configure(self, manifest: BundleManifest, endpoint: str) -> Any:
        """Set up routing and scaling for the endpoint."""


class DeploymentPackager:
    """Package workflows into manifests and deploy them."""

    def __init__(
        self,
        registry: Optional[NodeRegistry] = None,
        *,
        strict_outputs: Optional[bool] = None,
    ) -> None:
        self._registry = registry or get_node_registry()
        self._strict_outputs = (
            strict_outputs if strict_outputs is not None
            else get_config(EngineConfig).strict_outputs
        )

    # ========================================================================
    # Packaging
    # ========================================================================

    def _validate(
        self, workflow: WorkflowDefinition,
    ) -> Tuple[ValidationReport, Dict[str, Dict[str, Any]]]:
        report = validate_workflow(workflow, strict_outputs=self._strict_outputs)
        report.raise_for_errors()
        return report, self._registry.check_workflow(workflow)

    def _build_manifest(
        self,
        workflow: WorkflowDefinition,
        report: ValidationReport,
        configs: Dict[str, Dict[str, Any]],
    ) -> BundleManifest:
        categories: Dict[str, str] = {}
        for node in workflow.nodes:
            categories.setdefault(node.node_type, node.category.value)

        manifest = BundleManifest(
            workflow_id=workflow.id,
            workflow_name=workflow.name,
            description=workflow.description,
            node_types=[
                ManifestNodeType(type_id=t, category=c) for t, c in sorted(categories.items())
            ],
            nodes=[
                ManifestNode(
                    id=node.id,
                    node_type=node.node_type,
                    category=node.category.value,
                    label=node.label,
                    config=configs[node.id],
                )
                for node in sorted(workflow.nodes, key=lambda n: n.id)
            ],
            edges=sorted(
                (ManifestEdge(source=e.source, target=e.target) for e in workflow.edges),
                key=lambda e: (e.source, e.target),
            ),
            execution_order=topological_order(workflow),
            stages=topological_ranks(workflow),
            warnings=[w.message for w in report.warnings],
        )
        return manifest.sealed()

    def package_for_deployment(self, workflow: WorkflowDefinition) -> BundleManifest:
        """Validate ``workflow`` and return its sealed manifest.

        Raises ``ValidationFailed`` or a ``RegistryError``.
        """
        snapshot = workflow.snapshot()
        report, configs = self._validate(snapshot)
        manifest = self._build_manifest(snapshot, report, configs)
        logger.info(
            f"Packaged workflow '{workflow.name}' ({len(manifest.nodes)} nodes, "
            f"checksum {manifest.checksum[:12]})"
        )
        return manifest

    # ========================================================================
    # Deployment
    # ========================================================================

    async def deploy(
        self,
        workflow: WorkflowDefinition,
        backend: DeploymentBackend,
        observer: Optional[StageObserver] = None,
    ) -> DeploymentResult:
        """Validate, then walk the four stages, reporting each to ``observer``.

        An invalid workflow raises before any stage event. A backend
        failure emits a ``failed`` event and raises ``PackagingFailed``.
        """
        snapshot = workflow.snapshot()
        report, configs = self._validate(snapshot)

        started = time.monotonic()
        run = _StageRunner(workflow.name, observer)

        manifest = await run.stage(
            DeploymentStage.PREPARING, self._build_manifest, snapshot, report, configs,
        )
        artifact = await run.stage(DeploymentStage.BUILDING, backend.build, manifest)
        endpoint = await run.stage(
            DeploymentStage.DEPLOYING, _require_endpoint(backend.deploy), manifest, artifact,
        )
        await run.stage(DeploymentStage.CONFIGURING, backend.configure, manifest, endpoint)

        logger.info(f"Workflow '{workflow.name}' deployed at {endpoint}")
        return DeploymentResult(
            workflow_id=workflow.id,
            endpoint=endpoint,
            manifest=manifest,
            events=run.events,
            duration_ms=int((time.monotonic() - started) * 1000),
        )

    def write_bundle(
        self, manifest: BundleManifest, directory: Optional[Union[str, Path]] = None,
    ) -> Path:
        return write_bundle(manifest, directory)


class _StageRunner:
    """Run stages in order, emitting started/completed/failed events."""

    def __init__(self, workflow_name: str, observer: Optional[StageObserver]) -> None:
        self._workflow_name = workflow_name
        self._observer = observer
        self.events: List[StageEvent] = []

    def _emit(self, stage: DeploymentStage, status: StageStatus, message: str = "") -> None:
        event = StageEvent(
            stage=stage,
            status=status,
            index=STAGES.index(stage) + 1,
            title=stage.title,
            description=stage.description,
            message=message,
        )
        self.events.append(event)
        logger.info(
            f"[deploy:{self._workflow_name}] {event.index}/{event.total} "
            f"{stage.title}: {status.value}{f' ({message})' if message else ''}"
        )
        if self._observer is None:
            return
        try:
            self._observer(event)
        except Exception:
            logger.warning(f"Stage observer raised on {stage.value}; ignored", exc_info=True)

    async def stage(self, stage: DeploymentStage, fn: Callable[..., Any], *args: Any) -> Any:
        self._emit(stage, StageStatus.STARTED)
        try:
            result = await call_service(fn, *args)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._emit(stage, StageStatus.FAILED, str(exc) or type(exc).__name__)
            raise PackagingFailed(stage, exc) from exc
        self._emit(stage, StageStatus.COMPLETED)
        return result


def _require_endpoint(deploy: Callable[..., Any]) -> Callable[..., Any]:
    async def _deploy(manifest: BundleManifest, artifact: Any) -> str:
        endpoint = await call_service(deploy, manifest, artifact)
        if not isinstance(endpoint, str) or not endpoint:
            raise DeploymentError(f"Backend returned no endpoint (got {endpoint!r})")
        return endpoint

    return _deploy


# ============================================================================
# Bundle files
# ============================================================================


def write_bundle(
    manifest: BundleManifest, directory: Optional[Union[str, Path]] = None,
) -> Path:
    """Write ``manifest`` as JSON; the directory defaults to ``StorageConfig.bundle_dir``."""
    target = Path(directory or get_config(StorageConfig).bundle_dir)
    target.mkdir(parents=True, exist_ok=True)
    if not manifest.checksum:
        manifest = manifest.sealed()
    safe_id = "".join(c for c in manifest.workflow_id if c.isalnum() or c in "-_") or "workflow"
    path = target / f"{safe_id}-{manifest.checksum[:12]}.json"
    path.write_text(manifest.model_dump_json(indent=2), encoding="utf-8")
    logger.info(f"Bundle written: {path}")
    return path


def load_bundle(path: Union[str, Path]) -> BundleManifest:
    """Read a bundle file; raises ``DeploymentError`` on a checksum mismatch."""
    manifest = BundleManifest.model_validate_json(Path(path).read_text(encoding="utf-8"))
    if not manifest.verify():
        raise DeploymentError(f"Bundle {path} failed checksum verification")
    return manifest
