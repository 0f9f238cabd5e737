from __future__ import annotations

import csv
import io
import json
import logging
import re
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from pixelpilot.schemas import (
    BackupEntrySummary,
    BackupMetadata,
    BackupStats,
    BackupSummary,
    EntryStatus,
    Report,
)
from pixelpilot.services.artifacts import ArtifactStore, get_artifact_store
from pixelpilot.services.errors import ResourceNotFound
from pixelpilot.services.progress import EventType, ProgressChannel, get_progress_channel

LOGGER = logging.getLogger("pixelpilot.backups")

METADATA_FILE = "backup-metadata.json"
CONFIG_COPY = "backstop-config.json"
CSV_HEADER = ["Scenario", "Viewport", "Status", "Mismatch%", "URL", "Timestamp"]
AUTO_DESCRIPTION = "Automated backup created after test execution"


def summarize(report: Report) -> BackupSummary:
    failed = [entry for entry in report.tests if entry.status == EntryStatus.failed]
    return BackupSummary(
        total_tests=len(report.tests),
        passed_tests=sum(1 for entry in report.tests if entry.status == EntryStatus.passed),
        failed_tests=len(failed),
        avg_mismatch=sum(entry.mismatch for entry in failed) / max(len(failed), 1),
    )


def _slug(name: str) -> str:
    return re.sub(r"[^a-zA-Z0-9]", "_", name)


def _folder_size(path: Path) -> int:
    return sum(item.stat().st_size for item in path.rglob("*") if item.is_file())


class BackupManager:
    """Snapshots of a project's report and engine output under ``backups/<id>/``."""

    def __init__(
        self,
        artifacts: Optional[ArtifactStore] = None,
        channel: Optional[ProgressChannel] = None,
    ) -> None:
        self._artifacts = artifacts or get_artifact_store()
        self._channel = channel or get_progress_channel()

    def create(
        self,
        report: Report,
        *,
        manual: bool = False,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> BackupMetadata:
        project_id = report.project_id
        if not project_id:
            raise ValueError("Cannot back up a report without a project id")
        now = datetime.now(tz=timezone.utc)
        stamp = now.strftime("%Y-%m-%dT%H-%M-%S-%fZ")
        if manual:
            backup_id = f"{stamp}_{_slug(name) if name else 'backup'}"
            display_name = name or f"Backup {stamp}"
            description = description or "Manual backup"
        else:
            backup_id = f"{stamp}_auto_backup"
            display_name = f"Auto Backup - {now.strftime('%Y-%m-%d')}"
            description = description or AUTO_DESCRIPTION
        metadata = BackupMetadata(
            id=backup_id,
            name=display_name,
            description=description,
            project_id=project_id,
            timestamp=now.isoformat(),
            test_summary=summarize(report),
            scenarios=[
                BackupEntrySummary(
                    label=entry.pair.label,
                    viewport=entry.pair.viewport_label,
                    status=entry.status,
                    mismatch_percentage=entry.mismatch,
                    url=entry.pair.url,
                )
                for entry in report.tests
            ],
        )
        target = self._artifacts.backups_dir(project_id) / backup_id
        target.mkdir(parents=True, exist_ok=False)
        self._copy_artifacts(project_id, target)
        (target / "report.json").write_text(
            json.dumps(report.model_dump(by_alias=True, mode="json"), indent=2),
            encoding="utf-8",
        )
        (target / METADATA_FILE).write_text(
            json.dumps(metadata.model_dump(by_alias=True, mode="json"), indent=2),
            encoding="utf-8",
        )
        LOGGER.info("Created backup %s for project %s", backup_id, project_id)
        self._channel.emit(
            EventType.backup_created,
            project_id,
            backupId=backup_id,
            name=metadata.name,
            timestamp=metadata.timestamp,
        )
        return self._describe(target, metadata)

    def _copy_artifacts(self, project_id: str, target: Path) -> None:
        project_dir = self._artifacts.root / project_id
        html_report = project_dir / "html_report"
        if html_report.is_dir():
            shutil.copytree(html_report, target / "html_report")
        latest = self._artifacts.latest_test_run(project_id)
        if latest is not None:
            shutil.copytree(latest, target / "bitmaps_test" / latest.name)
        references = project_dir / "bitmaps_reference"
        if references.is_dir():
            shutil.copytree(references, target / "bitmaps_reference")
        config = project_dir / "backstop.json"
        if config.is_file():
            shutil.copyfile(config, target / CONFIG_COPY)

    def _describe(self, folder: Path, metadata: BackupMetadata) -> BackupMetadata:
        return metadata.model_copy(
            update={
                "size": _folder_size(folder),
                "has_report": (folder / "html_report" / "index.html").is_file(),
            }
        )

    def _backup_dir(self, project_id: str, backup_id: str) -> Path:
        if not backup_id or backup_id in {".", ".."} or Path(backup_id).name != backup_id:
            raise ResourceNotFound("Backup not found")
        folder = self._artifacts.root / project_id / "backups" / backup_id
        if not (folder / METADATA_FILE).is_file():
            raise ResourceNotFound("Backup not found")
        return folder

    def list(self, project_id: str) -> List[BackupMetadata]:
        base = self._artifacts.root / project_id / "backups"
        if not base.exists():
            return []
        backups: List[BackupMetadata] = []
        for child in base.iterdir():
            meta_path = child / METADATA_FILE
            if not meta_path.is_file():
                continue
            try:
                metadata = BackupMetadata.model_validate_json(meta_path.read_text(encoding="utf-8"))
                backups.append(self._describe(child, metadata))
            except (OSError, ValidationError) as exc:
                LOGGER.warning("Skipping unreadable backup %s: %s", child.name, exc)
        return sorted(backups, key=lambda item: item.timestamp, reverse=True)

    def get(self, project_id: str, backup_id: str) -> BackupMetadata:
        folder = self._backup_dir(project_id, backup_id)
        metadata = BackupMetadata.model_validate_json((folder / METADATA_FILE).read_text(encoding="utf-8"))
        return self._describe(folder, metadata)

    def delete(self, project_id: str, backup_id: str) -> None:
        folder = self._backup_dir(project_id, backup_id)
        shutil.rmtree(folder)
        LOGGER.info("Deleted backup %s for project %s", backup_id, project_id)

    def stats(self, project_id: str) -> BackupStats:
        backups = self.list(project_id)
        total_tests = sum(item.test_summary.total_tests for item in backups)
        failures = sum(item.test_summary.failed_tests for item in backups)
        return BackupStats(
            total_backups=len(backups),
            total_tests=total_tests,
            total_size=sum(item.size for item in backups),
            average_failure_rate=failures / total_tests if total_tests else 0.0,
        )

    def to_csv(self, project_id: str, backup_id: str) -> str:
        metadata = self.get(project_id, backup_id)
        buffer = io.StringIO()
        csv.writer(buffer, lineterminator="\n").writerow(CSV_HEADER)
        rows = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
        for item in metadata.scenarios:
            rows.writerow(
                [
                    item.label,
                    item.viewport,
                    item.status.value,
                    item.mismatch_percentage,
                    item.url or "",
                    metadata.timestamp,
                ]
            )
        return buffer.getvalue()


_backup_manager: Optional[BackupManager] = None


def get_backup_manager() -> BackupManager:
    global _backup_manager
    if _backup_manager is None:
        _backup_manager = BackupManager()
    return _backup_manager
