from __future__ import annotations

import logging
from typing import List, Optional

from pixelpilot.schemas import Scenario, SyncState, SyncStatus, Viewport
from pixelpilot.services.artifacts import ArtifactStore, get_artifact_store
from pixelpilot.services.filenames import resolve_for
from pixelpilot.services.storage import ProjectRepository, get_repository

LOGGER = logging.getLogger("pixelpilot.sync")


class ReferenceSyncTracker:
    """Report whether a reference bitmap matches the most recent manual upload.

    Read-only: the tracker never creates, copies or deletes files.
    """

    def __init__(
        self,
        repository: Optional[ProjectRepository] = None,
        artifacts: Optional[ArtifactStore] = None,
    ) -> None:
        self._repository = repository or get_repository()
        self._artifacts = artifacts or get_artifact_store()

    def status(
        self,
        project_id: str,
        scenario: Scenario,
        viewport: Viewport,
        viewports: List[Viewport],
    ) -> SyncStatus:
        file_name = resolve_for(scenario, viewport, viewports)
        upload = self._repository.latest_upload(project_id, scenario.label, viewport.label)
        uploaded_at = upload.uploaded_at if upload else None
        reference = self._artifacts.root / project_id / "bitmaps_reference" / file_name
        try:
            modified_at: Optional[float] = reference.stat().st_mtime
        except OSError as exc:
            LOGGER.debug("Reference %s unavailable: %s", reference, exc)
            modified_at = None

        if modified_at is None:
            state = SyncState.missing
        elif uploaded_at is not None and uploaded_at > modified_at:
            state = SyncState.outdated
        else:
            state = SyncState.synced
        return SyncStatus(
            scenario=scenario.label,
            viewport=viewport.label,
            state=state,
            file_name=file_name,
            reference_modified_at=modified_at,
            uploaded_at=uploaded_at,
        )

    def project_status(self, project_id: str) -> List[SyncStatus]:
        config = self._repository.get_project_config(project_id)
        return [
            self.status(project_id, scenario, viewport, config.viewports)
            for scenario in config.scenarios
            for viewport in config.viewports
        ]

    def scenario_status(self, project_id: str, scenario_label: str, viewport_label: str) -> SyncStatus:
        config = self._repository.get_project_config(project_id)
        scenario = next((item for item in config.scenarios if item.label == scenario_label), None)
        if scenario is None:
            raise ValueError(f"Scenario '{scenario_label}' is not configured for this project")
        viewport = next((item for item in config.viewports if item.label == viewport_label), None)
        if viewport is None:
            raise ValueError(f"Viewport '{viewport_label}' is not configured for this project")
        return self.status(project_id, scenario, viewport, config.viewports)
