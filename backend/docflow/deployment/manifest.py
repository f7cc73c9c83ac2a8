"""
Deployment models — bundle manifest and staged progress events.
"""

from __future__ import annotations

import hashlib
import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List

from pydantic import BaseModel, Field


class DeploymentStage(str, Enum):
    PREPARING = "preparing"
    BUILDING = "building"
    DEPLOYING = "deploying"
    CONFIGURING = "configuring"

    @property
    def title(self) -> str:
        return _STAGE_TEXT[self][0]

    @property
    def description(self) -> str:
        return _STAGE_TEXT[self][1]


_STAGE_TEXT = {
    DeploymentStage.PREPARING: ("Preparing bundle", "Compiling workflow logic"),
    DeploymentStage.BUILDING: ("Building container", "Creating Docker image"),
    DeploymentStage.DEPLOYING: ("Deploying", "Uploading to cloud functions"),
    DeploymentStage.CONFIGURING: ("Configuring", "Setting up endpoints and scaling"),
}

STAGES = list(DeploymentStage)


class StageStatus(str, Enum):
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"


class StageEvent(BaseModel):
    """Progress notification for one deployment stage."""

    stage: DeploymentStage
    status: StageStatus
    index: int                      # 1-based position among STAGES
    total: int = len(STAGES)
    title: str = ""
    description: str = ""
    message: str = ""
    timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )


class ManifestNodeType(BaseModel):
    type_id: str
    category: str


class ManifestNode(BaseModel):
    id: str
    node_type: str
    category: str
    label: str = ""
    config: Dict[str, Any] = Field(default_factory=dict)


class ManifestEdge(BaseModel):
    source: str
    target: str


class BundleManifest(BaseModel):
    """Deployable description of a validated workflow.

    ``checksum`` is the SHA-256 of the canonical JSON of every field
    except ``checksum`` and ``created_at``, so packaging the same
    workflow twice yields the same checksum.
    """

    format_version: str = "1"
    workflow_id: str
    workflow_name: str
    description: str = ""
    node_types: List[ManifestNodeType] = Field(default_factory=list)
    nodes: List[ManifestNode] = Field(default_factory=list)
    edges: List[ManifestEdge] = Field(default_factory=list)
    execution_order: List[str] = Field(default_factory=list)
    stages: List[List[str]] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    created_at: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    checksum: str = ""

    def canonical_json(self) -> str:
        content = self.model_dump(mode="json", exclude={"checksum", "created_at"})
        return json.dumps(content, sort_keys=True, separators=(",", ":"), ensure_ascii=False)

    def compute_checksum(self) -> str:
        return hashlib.sha256(self.canonical_json().encode("utf-8")).hexdigest()

    def sealed(self) -> "BundleManifest":
        """Copy with ``checksum`` filled in."""
        return self.model_copy(update={"checksum": self.compute_checksum()})

    def verify(self) -> bool:
        return bool(self.checksum) and self.checksum == self.compute_checksum()


class DeploymentResult(BaseModel):
    workflow_id: str
    endpoint: str
    manifest: BundleManifest
    events: List[StageEvent] = Field(default_factory=list)
    duration_ms: int = 0
