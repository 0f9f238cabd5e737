from __future__ import annotations

import json
import logging
from typing import Optional

from pydantic import ValidationError

from pixelpilot.schemas import Report
from pixelpilot.services.artifacts import ArtifactStore, get_artifact_store

LOGGER = logging.getLogger("pixelpilot.reports")


class ReportStore:
    """Persist the unified report per project; each run overwrites the previous one."""

    def __init__(self, artifacts: Optional[ArtifactStore] = None) -> None:
        self._artifacts = artifacts or get_artifact_store()

    def save(self, report: Report) -> None:
        if not report.project_id:
            raise ValueError("Report has no project id")
        payload = report.model_dump(by_alias=True, mode="json")
        path = self._artifacts.report_path(report.project_id)
        tmp_path = path.with_suffix(".json.tmp")
        tmp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        tmp_path.replace(path)

        # Keep the engine's browser report in step with the unified one.
        html_config = self._artifacts.root / report.project_id / "html_report" / "config.js"
        if html_config.exists():
            html_config.write_text(f"report({json.dumps(payload, indent=2)});", encoding="utf-8")
        LOGGER.info("Stored report for project %s (%s tests)", report.project_id, len(report.tests))

    def load(self, project_id: str) -> Optional[Report]:
        path = self._artifacts.root / project_id / "report.json"
        if not path.exists():
            return None
        try:
            return Report.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as exc:
            LOGGER.warning("Stored report for project %s is unreadable: %s", project_id, exc)
            return None


_report_store: Optional[ReportStore] = None


def get_report_store() -> ReportStore:
    global _report_store
    if _report_store is None:
        _report_store = ReportStore()
    return _report_store
