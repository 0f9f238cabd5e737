from __future__ import annotations

from pathlib import Path
from typing import Generator

import pytest
from fastapi.testclient import TestClient

from pixelpilot.main import app
from pixelpilot.services.artifacts import ArtifactStore, get_artifact_store
from pixelpilot.services.backups import BackupManager, get_backup_manager
from pixelpilot.services.orchestrator import RunOrchestrator, get_orchestrator
from pixelpilot.services.pipeline import RunPipeline, get_pipeline
from pixelpilot.services.progress import ProgressChannel, get_progress_channel
from pixelpilot.services.references import ReferenceLibrary, get_reference_library
from pixelpilot.services.reports import ReportStore, get_report_store
from pixelpilot.services.storage import LocalJsonStorage, ProjectRepository, get_repository

from tests.stubs import ApiEnv, StubLauncher, StubValidator


@pytest.fixture
def api(tmp_path: Path) -> Generator[ApiEnv, None, None]:
    """TestClient wired to isolated storage and a stubbed engine."""
    repo = ProjectRepository(LocalJsonStorage(tmp_path / "db.json"))
    artifacts = ArtifactStore(root=tmp_path / "backstop_data")
    channel = ProgressChannel()
    launcher = StubLauncher(artifacts, tests=[])
    validator = StubValidator()
    orchestrator = RunOrchestrator(repo=repo, artifacts=artifacts, channel=channel, launcher=launcher)
    reports = ReportStore(artifacts)
    backups = BackupManager(artifacts, channel)
    pipeline = RunPipeline(
        repo=repo,
        orchestrator=orchestrator,
        reports=reports,
        backups=backups,
        channel=channel,
        artifacts=artifacts,
        validator=validator,
    )
    library = ReferenceLibrary(repo=repo, artifacts=artifacts, orchestrator=orchestrator)

    app.dependency_overrides[get_repository] = lambda: repo
    app.dependency_overrides[get_artifact_store] = lambda: artifacts
    app.dependency_overrides[get_progress_channel] = lambda: channel
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_pipeline] = lambda: pipeline
    app.dependency_overrides[get_reference_library] = lambda: library
    app.dependency_overrides[get_report_store] = lambda: reports
    app.dependency_overrides[get_backup_manager] = lambda: backups
    with TestClient(app) as test_client:
        yield ApiEnv(
            client=test_client,
            repo=repo,
            artifacts=artifacts,
            channel=channel,
            orchestrator=orchestrator,
            launcher=launcher,
            validator=validator,
            reports=reports,
            backups=backups,
        )
    app.dependency_overrides.clear()
