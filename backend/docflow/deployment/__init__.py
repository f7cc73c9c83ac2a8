"""
Deployment Module

Packages validated workflows into bundle manifests and drives a
deployment backend through the preparing / building / deploying /
configuring stages.
"""
from docflow.deployment.manifest import (
    BundleManifest,
    DeploymentResult,
    DeploymentStage,
    ManifestEdge,
    ManifestNode,
    ManifestNodeType,
    StageEvent,
    StageStatus,
)
from docflow.deployment.packager import (
    DeploymentBackend,
    DeploymentPackager,
    load_bundle,
    write_bundle,
)

__all__ = [
    'BundleManifest',
    'DeploymentResult',
    'DeploymentStage',
    'ManifestEdge',
    'ManifestNode',
    'ManifestNodeType',
    'StageEvent',
    'StageStatus',
    'DeploymentBackend',
    'DeploymentPackager',
    'load_bundle',
    'write_bundle',
]
