"""
Workflow Store — one JSON file per workflow definition.

Files live under ``StorageConfig.workflow_dir`` and are named after the
sanitised workflow id. Writes go through a temporary file so a crash
never leaves a half-written definition behind; unreadable files are
logged and skipped rather than failing a listing.
"""

from __future__ import annotations

import json
import os
from functools import lru_cache
from logging import getLogger
from pathlib import Path
from typing import Iterator, List, Optional, Tuple, Union

from pydantic import ValidationError

from docflow.config import StorageConfig, get_config
from docflow.workflow.workflow_model import WorkflowDefinition

logger = getLogger(__name__)

_UNREADABLE = (OSError, ValueError, ValidationError)


def _file_name(workflow_id: str) -> str:
    safe_id = "".join(c for c in workflow_id if c.isalnum() or c in "-_")
    if not safe_id:
        raise ValueError(f"Invalid workflow id: {workflow_id!r}")
    return f"{safe_id}.json"


class WorkflowStore:
    """Directory-backed persistence for ``WorkflowDefinition`` objects."""

    def __init__(self, storage_dir: Optional[Union[str, Path]] = None) -> None:
        self._dir = Path(storage_dir or get_config(StorageConfig).workflow_dir)
        self._dir.mkdir(parents=True, exist_ok=True)
        logger.debug(f"WorkflowStore using {self._dir}")

    @property
    def directory(self) -> Path:
        return self._dir

    def path_for(self, workflow_id: str) -> Path:
        return self._dir / _file_name(workflow_id)

    def exists(self, workflow_id: str) -> bool:
        return self.path_for(workflow_id).exists()

    # ── Writing ──

    def save(self, workflow: WorkflowDefinition) -> Path:
        """Write ``workflow`` (refreshing ``updated_at``) and return its path."""
        workflow.touch()
        path = self.path_for(workflow.id)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(workflow.model_dump_json(indent=2), encoding="utf-8")
        os.replace(tmp, path)
        logger.info(f"Saved workflow '{workflow.name}' -> {path.name}")
        return path

    def delete(self, workflow_id: str) -> bool:
        path = self.path_for(workflow_id)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        logger.info(f"Deleted workflow {workflow_id}")
        return True

    # ── Reading ──

    def load(self, workflow_id: str) -> Optional[WorkflowDefinition]:
        """Return the stored workflow, or ``None`` if it is missing or unreadable."""
        path = self.path_for(workflow_id)
        if not path.exists():
            return None
        try:
            return _read(path)
        except _UNREADABLE as exc:
            logger.error(f"Cannot read workflow {workflow_id}: {exc}")
            return None

    def _scan(self) -> Iterator[Tuple[Path, WorkflowDefinition]]:
        for path in sorted(self._dir.glob("*.json")):
            try:
                yield path, _read(path)
            except _UNREADABLE as exc:
                logger.warning(f"Skipping {path.name}: {exc}")

    def list_all(self, templates: Optional[bool] = None) -> List[WorkflowDefinition]:
        """All stored workflows; ``templates`` filters on ``is_template`` when set."""
        return [
            wf for _, wf in self._scan()
            if templates is None or wf.is_template == templates
        ]

    def list_templates(self) -> List[WorkflowDefinition]:
        return self.list_all(templates=True)

    def list_user_workflows(self) -> List[WorkflowDefinition]:
        return self.list_all(templates=False)


def _read(path: Path) -> WorkflowDefinition:
    return WorkflowDefinition.from_dict(json.loads(path.read_text(encoding="utf-8")))


@lru_cache(maxsize=1)
def get_workflow_store() -> WorkflowStore:
    """Process-wide store rooted at the configured workflow directory."""
    return WorkflowStore()
