from __future__ import annotations

import io
import logging
import os
import time
from pathlib import Path
from typing import Optional

from PIL import Image, UnidentifiedImageError

from pixelpilot.schemas import RunRequest, Scenario, SyncStatus, UploadRecord, Viewport
from pixelpilot.services.artifacts import ArtifactStore, get_artifact_store
from pixelpilot.services.filenames import resolve_for, sanitize_label
from pixelpilot.services.orchestrator import RunOrchestrator, get_orchestrator
from pixelpilot.services.storage import ProjectRepository, get_repository
from pixelpilot.services.sync import ReferenceSyncTracker

LOGGER = logging.getLogger("pixelpilot.references")


def _lookup(project_config, scenario_label: str, viewport_label: str) -> tuple[Scenario, Viewport]:
    scenario = next((item for item in project_config.scenarios if item.label == scenario_label), None)
    if scenario is None:
        raise ValueError(f"Scenario '{scenario_label}' is not configured for this project")
    viewport = next((item for item in project_config.viewports if item.label == viewport_label), None)
    if viewport is None:
        raise ValueError(f"Viewport '{viewport_label}' is not configured for this project")
    return scenario, viewport


def _write_png(data: bytes, destination: Path) -> None:
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            converted = img if img.mode in {"RGB", "RGBA"} else img.convert("RGBA")
            converted.save(destination, format="PNG")
    except UnidentifiedImageError as exc:
        raise ValueError("Uploaded file is not a supported image.") from exc


class ReferenceLibrary:
    """Manual reference uploads and their sync into the engine's reference directory."""

    def __init__(
        self,
        repo: Optional[ProjectRepository] = None,
        artifacts: Optional[ArtifactStore] = None,
        orchestrator: Optional[RunOrchestrator] = None,
    ) -> None:
        self._repo = repo or get_repository()
        self._artifacts = artifacts or get_artifact_store()
        self._orchestrator = orchestrator or get_orchestrator()
        self._tracker = ReferenceSyncTracker(self._repo, self._artifacts)

    @property
    def tracker(self) -> ReferenceSyncTracker:
        return self._tracker

    def upload(
        self,
        project_id: str,
        scenario_label: str,
        viewport_label: str,
        data: bytes,
        original_name: str,
        *,
        is_reference: bool = False,
    ) -> UploadRecord:
        if not data:
            raise ValueError("Uploaded file is empty.")
        config = self._repo.get_project_config(project_id)
        _lookup(config, scenario_label, viewport_label)
        if not is_reference:
            return self._store(project_id, scenario_label, viewport_label, data, original_name, False)
        # Nothing is written unless the reference directory can be claimed too.
        with self._orchestrator.claim(RunRequest(project_id=project_id)):
            record = self._store(project_id, scenario_label, viewport_label, data, original_name, True)
            self._sync_claimed(project_id, scenario_label, viewport_label)
        return record

    def sync(self, project_id: str, scenario_label: str, viewport_label: str) -> SyncStatus:
        """Copy the most recent upload over the resolved reference file."""
        with self._orchestrator.claim(RunRequest(project_id=project_id)):
            return self._sync_claimed(project_id, scenario_label, viewport_label)

    def _store(
        self,
        project_id: str,
        scenario_label: str,
        viewport_label: str,
        data: bytes,
        original_name: str,
        is_reference: bool,
    ) -> UploadRecord:
        uploaded_at = time.time()
        stored = self._artifacts.uploads_dir(project_id) / (
            f"{sanitize_label(scenario_label)}_{viewport_label}_{int(uploaded_at * 1000)}.png"
        )
        _write_png(data, stored)
        record = self._repo.record_upload(
            {
                "project_id": project_id,
                "scenario": scenario_label,
                "viewport": viewport_label,
                "path": self._artifacts.relative(stored),
                "original_name": original_name,
                "is_reference": is_reference,
                "uploaded_at": uploaded_at,
            }
        )
        LOGGER.info("Stored upload %s for %s/%s", record.id, scenario_label, viewport_label)
        return record

    def _sync_claimed(self, project_id: str, scenario_label: str, viewport_label: str) -> SyncStatus:
        config = self._repo.get_project_config(project_id)
        scenario, viewport = _lookup(config, scenario_label, viewport_label)
        upload = self._repo.latest_upload(project_id, scenario_label, viewport_label)
        if upload is None:
            raise ValueError(f"No uploads recorded for {scenario_label}/{viewport_label}")
        source = self._artifacts.root / upload.path
        file_name = resolve_for(scenario, viewport, config.viewports)
        target = self._artifacts.copy_to_reference(source, project_id, file_name)
        # Filesystem clocks can trail time.time(); never stamp older than the upload.
        stamp = max(time.time(), upload.uploaded_at)
        os.utime(target, (stamp, stamp))
        LOGGER.info("Synced upload %s to reference %s", upload.id, file_name)
        return self._tracker.status(project_id, scenario, viewport, config.viewports)


_library: Optional[ReferenceLibrary] = None


def get_reference_library() -> ReferenceLibrary:
    global _library
    if _library is None:
        _library = ReferenceLibrary()
    return _library
