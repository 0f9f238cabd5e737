from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence, Set, Tuple

from pixelpilot.schemas import RawReport, RunRequest, Scenario, Viewport
from pixelpilot.services.artifacts import ArtifactStore, get_artifact_store
from pixelpilot.services.engine import (
    EngineProcess,
    Launcher,
    build_engine_config,
    launch_subprocess,
    load_raw_report,
    parse_compare_line,
    viewport_from_filename,
    write_engine_config,
)
from pixelpilot.services.errors import EngineLaunchError, RunInProgress
from pixelpilot.services.progress import EventType, ProgressChannel, get_progress_channel
from pixelpilot.services.storage import ProjectRepository, get_repository

LOGGER = logging.getLogger("pixelpilot.orchestrator")


def _utcnow() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%S", time.gmtime())


@dataclass
class RunHandle:
    request: RunRequest
    started_at: str = field(default_factory=_utcnow)
    process: Optional[EngineProcess] = None
    log_path: Optional[Path] = None
    timed_out: bool = False
    terminated: bool = False

    @property
    def project_id(self) -> str:
        return self.request.project_id

    def as_dict(self) -> Dict[str, object]:
        return {
            "projectId": self.project_id,
            "filter": self.request.filter,
            "startedAt": self.started_at,
            "enginePid": self.process.pid if self.process else None,
        }


class RunRegistry:
    """At most one active run per project, guarded by a lock."""

    def __init__(self) -> None:
        self._active: Dict[str, RunHandle] = {}
        self._lock = threading.Lock()

    def acquire(self, request: RunRequest) -> RunHandle:
        with self._lock:
            current = self._active.get(request.project_id)
            if current is not None:
                raise RunInProgress(request.project_id, current.started_at)
            handle = RunHandle(request=request)
            self._active[request.project_id] = handle
            return handle

    def release(self, handle: RunHandle) -> None:
        with self._lock:
            if self._active.get(handle.project_id) is handle:
                del self._active[handle.project_id]

    def get(self, project_id: str) -> Optional[RunHandle]:
        with self._lock:
            return self._active.get(project_id)

    def is_active(self, project_id: str) -> bool:
        return self.get(project_id) is not None

    def snapshot(self) -> List[RunHandle]:
        with self._lock:
            return list(self._active.values())


class RunOrchestrator:
    """Drive the BackstopJS engine for the scenarios that survived preflight."""

    def __init__(
        self,
        repo: Optional[ProjectRepository] = None,
        artifacts: Optional[ArtifactStore] = None,
        channel: Optional[ProgressChannel] = None,
        *,
        launcher: Optional[Launcher] = None,
        registry: Optional[RunRegistry] = None,
    ) -> None:
        self._repo = repo or get_repository()
        self._artifacts = artifacts or get_artifact_store()
        self._channel = channel or get_progress_channel()
        self._launcher = launcher or launch_subprocess
        self._registry = registry or RunRegistry()
        config_defaults = self._repo.get_config()
        self._engine_command = list(config_defaults["engine_command"])
        self._run_timeout = float(config_defaults["run_timeout_seconds"])

    @property
    def registry(self) -> RunRegistry:
        return self._registry

    @contextmanager
    def claim(self, request: RunRequest) -> Iterator[RunHandle]:
        handle = self._registry.acquire(request)
        LOGGER.info("Run slot acquired for project %s", request.project_id)
        try:
            yield handle
        finally:
            self._registry.release(handle)
            LOGGER.info("Run slot released for project %s", request.project_id)

    def is_running(self, project_id: str) -> bool:
        return self._registry.is_active(project_id)

    def ensure_idle(self, project_id: str) -> None:
        handle = self._registry.get(project_id)
        if handle is not None:
            raise RunInProgress(project_id, handle.started_at)

    def active_runs(self) -> List[RunHandle]:
        return self._registry.snapshot()

    def terminate(self, project_id: str) -> bool:
        handle = self._registry.get(project_id)
        if handle is None or handle.process is None:
            return False
        handle.terminated = True
        handle.process.kill()
        LOGGER.warning("Terminated engine process for project %s", project_id)
        return True

    def update_engine_command(self, command: List[str]) -> None:
        self._engine_command = list(command)
        LOGGER.info("Updated engine command to %s", " ".join(command))

    def update_run_timeout(self, seconds: float) -> None:
        self._run_timeout = float(seconds)
        LOGGER.info("Updated engine run timeout to %ss", seconds)

    def run(
        self,
        handle: RunHandle,
        scenarios: Sequence[Scenario],
        viewports: Sequence[Viewport],
    ) -> RawReport:
        project_id = handle.project_id
        if not scenarios:
            LOGGER.info("No runnable scenarios for project %s; engine not started", project_id)
            return RawReport()

        config = build_engine_config(project_id, scenarios, viewports, self._artifacts)
        config_path = write_engine_config(config, self._artifacts.engine_config_path(project_id))
        command = self._engine_command + ["test", f"--config={config_path}"]
        handle.log_path = self._artifacts.run_log_path(project_id)
        self._channel.emit(
            EventType.test_progress,
            project_id,
            status="started",
            percent=25,
            message=f"Running {len(scenarios)} scenario(s) across {len(viewports)} viewport(s)",
        )

        started = time.time()
        LOGGER.info("Launching engine for project %s: %s", project_id, " ".join(command))
        try:
            process = self._launcher(command, self._artifacts.project_dir(project_id))
        except OSError as exc:
            LOGGER.error("Failed to launch engine for project %s: %s", project_id, exc)
            raise EngineLaunchError(f"Failed to launch engine: {exc}") from exc
        handle.process = process

        def _expire() -> None:
            handle.timed_out = True
            LOGGER.error("Engine for project %s exceeded %ss; killing", project_id, self._run_timeout)
            process.kill()

        watchdog = threading.Timer(self._run_timeout, _expire)
        watchdog.daemon = True
        watchdog.start()
        announced: Set[Tuple[str, str]] = set()
        try:
            with handle.log_path.open("a", encoding="utf-8") as log:
                for line in process.lines():
                    log.write(line + "\n")
                    LOGGER.debug("[engine %s] %s", project_id, line)
                    compare = parse_compare_line(line)
                    if compare is None:
                        continue
                    viewport_label = viewport_from_filename(compare.file_name, viewports)
                    announced.add((compare.label, viewport_label or ""))
                    self._channel.emit(
                        EventType.test_progress,
                        project_id,
                        scenario=compare.label,
                        viewport=viewport_label,
                        status="pass" if compare.passed else "fail",
                        mismatchPercentage=compare.mismatch_percentage,
                    )
            exit_code = process.wait()
        except OSError as exc:
            LOGGER.error("Lost engine output for project %s: %s", project_id, exc)
            raise EngineLaunchError(f"Engine output could not be recorded: {exc}") from exc
        finally:
            watchdog.cancel()
            # Never outlive the run slot.
            if process.returncode is None:
                process.kill()

        if handle.timed_out:
            raise EngineLaunchError(f"Engine did not finish within {self._run_timeout} seconds")
        LOGGER.info("Engine for project %s exited with code %s", project_id, exit_code)

        report = load_raw_report(self._artifacts, project_id, newer_than=started - 1.0)
        if report is None:
            if handle.terminated:
                raise EngineLaunchError("Engine was terminated before producing a report")
            raise EngineLaunchError(f"Engine exited with code {exit_code} without producing a report")

        for entry in report.tests:
            key = (entry.pair.label, entry.pair.viewport_label)
            if key in announced:
                continue
            announced.add(key)
            self._channel.emit(
                EventType.test_progress,
                project_id,
                scenario=entry.pair.label,
                viewport=entry.pair.viewport_label,
                status=entry.status.value,
                mismatchPercentage=entry.mismatch,
            )
        return report


_orchestrator: Optional[RunOrchestrator] = None


def get_orchestrator() -> RunOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = RunOrchestrator()
    return _orchestrator
