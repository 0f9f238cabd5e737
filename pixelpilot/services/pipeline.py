from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

from pixelpilot.schemas import BackupMetadata, Report, RunRequest
from pixelpilot.services.artifacts import ArtifactStore, get_artifact_store
from pixelpilot.services.backups import BackupManager, get_backup_manager
from pixelpilot.services.errors import (
    EngineLaunchError,
    NoMatchingScenarios,
    ReconciliationError,
    ReportPersistenceError,
    ResourceNotFound,
)
from pixelpilot.services.filenames import expected_filenames
from pixelpilot.services.orchestrator import RunOrchestrator, get_orchestrator
from pixelpilot.services.preflight import PreflightValidator, partition
from pixelpilot.services.progress import EventType, ProgressChannel, get_progress_channel
from pixelpilot.services.reconciler import reconcile
from pixelpilot.services.reports import ReportStore, get_report_store
from pixelpilot.services.storage import ProjectRepository, get_repository

LOGGER = logging.getLogger("pixelpilot.pipeline")


class RunPipeline:
    """Preflight, engine run, reconciliation and persistence for one project."""

    def __init__(
        self,
        repo: Optional[ProjectRepository] = None,
        orchestrator: Optional[RunOrchestrator] = None,
        reports: Optional[ReportStore] = None,
        backups: Optional[BackupManager] = None,
        channel: Optional[ProgressChannel] = None,
        artifacts: Optional[ArtifactStore] = None,
        *,
        validator: Optional[PreflightValidator] = None,
    ) -> None:
        self._repo = repo or get_repository()
        self._orchestrator = orchestrator or get_orchestrator()
        self._reports = reports or get_report_store()
        self._backups = backups or get_backup_manager()
        self._channel = channel or get_progress_channel()
        self._artifacts = artifacts or get_artifact_store()
        self._validator = validator

    def _preflight(self) -> PreflightValidator:
        if self._validator is not None:
            return self._validator
        timeout = self._repo.get_config()["preflight_timeout_seconds"]
        return PreflightValidator(timeout=timeout, channel=self._channel)

    def run_tests(self, project_id: str, filter_labels: Optional[Sequence[str]] = None) -> Report:
        config = self._repo.get_project_config(project_id)
        request = RunRequest(project_id=project_id, filter=filter_labels)
        if request.filter is not None:
            available = [scenario.label for scenario in config.scenarios]
            if not any(label in available for label in request.filter):
                LOGGER.warning("Filter %s matches no scenario of project %s", request.filter, project_id)
                raise NoMatchingScenarios(request.filter, available)

        with self._orchestrator.claim(request) as handle:
            verdicts = self._preflight().validate(config.scenarios, request.filter, project_id=project_id)
            runnable, invalid = partition(verdicts, request.filter)
            try:
                raw = self._orchestrator.run(handle, runnable, config.viewports)
            except EngineLaunchError as exc:
                LOGGER.error("Run for project %s failed: %s", project_id, exc)
                self._channel.emit(
                    EventType.test_complete,
                    project_id,
                    status="failed",
                    percent=100,
                    message=str(exc),
                )
                raise

            try:
                report = reconcile(
                    raw,
                    invalid,
                    config.viewports,
                    project_id=project_id,
                    filter_labels=request.filter,
                )
            except ReconciliationError as exc:
                LOGGER.exception("Report reconciliation failed for project %s", project_id)
                self._channel.emit(EventType.report_enhancement_failed, project_id, error=str(exc))
                raise
            try:
                self._reports.save(report)
            except OSError as exc:
                LOGGER.error("Could not store report for project %s: %s", project_id, exc)
                self._channel.emit(EventType.report_enhancement_failed, project_id, error=str(exc))
                raise ReportPersistenceError(f"Could not store report: {exc}") from exc

            summary = report.summary()
            self._channel.emit(
                EventType.test_complete,
                project_id,
                status="completed",
                percent=100,
                message="Test run completed",
                **summary,
            )
            if report.has_network_errors:
                self._channel.emit(
                    EventType.report_enhanced,
                    project_id,
                    networkErrorCount=report.network_error_count,
                    totalScenarios=report.total_scenarios,
                )
            try:
                self._backups.create(report)
            except (OSError, ValueError) as exc:
                LOGGER.warning("Automatic backup for project %s failed: %s", project_id, exc)
            return report

    def approve(self, project_id: str, filter_labels: Optional[Sequence[str]] = None) -> Dict[str, object]:
        """Promote the latest test bitmaps to references."""
        config = self._repo.get_project_config(project_id)
        request = RunRequest(project_id=project_id, filter=filter_labels)
        with self._orchestrator.claim(request):
            latest = self._artifacts.latest_test_run(project_id)
            if latest is None:
                raise ValueError("No test results available to approve.")
            approved: List[str] = []
            missing: List[str] = []
            for scenario, _selector, _viewport, file_name in expected_filenames(config.scenarios, config.viewports):
                if not request.matches(scenario.label):
                    continue
                source = latest / file_name
                if source.is_file():
                    self._artifacts.copy_to_reference(source, project_id, file_name)
                    approved.append(file_name)
                else:
                    missing.append(file_name)
            LOGGER.info(
                "Approved %s bitmaps for project %s from %s (%s missing)",
                len(approved),
                project_id,
                latest.name,
                len(missing),
            )
            return {"approved": approved, "missing": missing, "source": latest.name}

    def backup(
        self,
        project_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> BackupMetadata:
        """Snapshot the latest report and its bitmaps on demand."""
        self._repo.require_project(project_id)
        with self._orchestrator.claim(RunRequest(project_id=project_id)):
            report = self._reports.load(project_id)
            if report is None:
                raise ResourceNotFound("No test results found to backup. Please run a test first.")
            return self._backups.create(report, manual=True, name=name, description=description)

    def latest_report(self, project_id: str) -> Optional[Report]:
        self._repo.require_project(project_id)
        return self._reports.load(project_id)


_pipeline: Optional[RunPipeline] = None


def get_pipeline() -> RunPipeline:
    global _pipeline
    if _pipeline is None:
        _pipeline = RunPipeline()
    return _pipeline
