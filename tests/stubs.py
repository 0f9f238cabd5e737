"""Test doubles standing in for the BackstopJS subprocess and the URL reachability checks."""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from fastapi.testclient import TestClient

from pixelpilot.schemas import PreflightReason, ValidationVerdict
from pixelpilot.services.artifacts import ArtifactStore
from pixelpilot.services.backups import BackupManager
from pixelpilot.services.orchestrator import RunOrchestrator
from pixelpilot.services.progress import ProgressChannel
from pixelpilot.services.reports import ReportStore
from pixelpilot.services.storage import ProjectRepository


def engine_entry(label: str, viewport: str, index: int, status: str = "pass") -> Dict[str, object]:
    return {
        "pair": {
            "reference": "ref.png",
            "test": "test.png",
            "selector": "document",
            "fileName": f"backstop_default_{label}_0_document_{index}_{viewport}.png",
            "label": label,
            "viewportLabel": viewport,
            "diff": {"misMatchPercentage": "0.00" if status == "pass" else "7.50"},
        },
        "status": status,
    }


class StubProcess:
    def __init__(
        self,
        lines: List[str],
        exit_code: int = 0,
        block: Optional[threading.Event] = None,
        stream_error: Optional[Exception] = None,
    ) -> None:
        self._lines = lines
        self._stream_error = stream_error
        self._exit_code = exit_code
        self._block = block
        self.killed = False
        self.pid = 4242
        self.returncode: Optional[int] = None

    def lines(self):
        for line in self._lines:
            yield line
        if self._stream_error is not None:
            raise self._stream_error
        if self._block is not None:
            self._block.wait(timeout=5)

    def wait(self, timeout: Optional[float] = None) -> int:
        self.returncode = self._exit_code
        return self._exit_code

    def kill(self) -> None:
        self.killed = True
        if self._block is not None:
            self._block.set()


class StubLauncher:
    """Pretends to be BackstopJS: records the command and writes a json report."""

    def __init__(
        self,
        artifacts: ArtifactStore,
        *,
        tests: Optional[List[Dict[str, object]]] = None,
        lines: Optional[List[str]] = None,
        exit_code: int = 0,
        error: Optional[Exception] = None,
        block: Optional[threading.Event] = None,
        on_launch: Optional[Callable[[], None]] = None,
        stream_error: Optional[Exception] = None,
    ) -> None:
        self._artifacts = artifacts
        self.tests = tests
        self._lines = lines or []
        self._exit_code = exit_code
        self.error = error
        self._block = block
        self._on_launch = on_launch
        self._stream_error = stream_error
        self.calls: List[Dict[str, object]] = []
        self.process: Optional[StubProcess] = None

    def __call__(self, command: List[str], cwd: Path) -> StubProcess:
        self.calls.append({"command": command, "cwd": cwd})
        if self.error is not None:
            raise self.error
        if self._on_launch is not None:
            self._on_launch()
        project_id = cwd.name
        if self.tests is not None:
            report = {"testSuite": "BackstopJS", "id": "backstop_default", "tests": self.tests}
            (self._artifacts.json_report_dir(project_id) / "jsonReport.json").write_text(json.dumps(report))
        self.process = StubProcess(self._lines, self._exit_code, self._block, self._stream_error)
        return self.process


class StubValidator:
    """Marks the configured labels as unreachable without touching the network."""

    def __init__(self, unreachable: Sequence[str] = ()) -> None:
        self.unreachable = set(unreachable)
        self.seen: List[str] = []

    def validate(self, scenarios, filter_labels=None, *, project_id=None) -> List[ValidationVerdict]:
        verdicts = []
        for scenario in scenarios:
            self.seen.append(scenario.label)
            matched = None if filter_labels is None else scenario.label in filter_labels
            if scenario.label in self.unreachable:
                verdicts.append(
                    ValidationVerdict(
                        scenario=scenario,
                        valid=False,
                        reason=PreflightReason.connection_refused,
                        message="Connection refused - server not responding",
                        severity="high",
                        matched_filter=matched,
                    )
                )
            else:
                verdicts.append(ValidationVerdict(scenario=scenario, valid=True, matched_filter=matched))
        return verdicts


@dataclass
class ApiEnv:
    client: TestClient
    repo: ProjectRepository
    artifacts: ArtifactStore
    channel: ProgressChannel
    orchestrator: RunOrchestrator
    launcher: StubLauncher
    validator: StubValidator
    reports: ReportStore
    backups: BackupManager
