from __future__ import annotations

import json
import logging
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence

from pydantic import ValidationError

from pixelpilot.constants import ENGINE_ID, ENGINE_SCENARIO_FIELDS
from pixelpilot.schemas import RawReport, Scenario, Viewport
from pixelpilot.services.artifacts import ArtifactStore

LOGGER = logging.getLogger("pixelpilot.engine")

_COMPARE_LINE = re.compile(
    r"compare\s*\|\s*(?P<outcome>OK|ERROR)\b(?:\s*\{(?P<detail>[^}]*)\})?:\s*(?P<label>.+?)\s+(?P<file>\S+\.png)\s*$",
    re.IGNORECASE,
)
_MISMATCH = re.compile(r"([0-9]+(?:\.[0-9]+)?)%")
_HTML_REPORT = re.compile(r"report\((.*)\);", re.DOTALL)
_SCRIPT_NAME = re.compile(r"[^a-zA-Z0-9]")

SCRIPT_TEMPLATE = """module.exports = async (page, scenario, vp, isReference, Engine, config) => {{
  try {{
{body}
  }} catch (error) {{
    console.warn('Custom {hook} script error for scenario "' + scenario.label + '":', error.message);
  }}
}};
"""


@dataclass(frozen=True)
class CompareLine:
    label: str
    file_name: str
    passed: bool
    mismatch_percentage: Optional[float] = None


def parse_compare_line(line: str) -> Optional[CompareLine]:
    """Parse one ``COMPARE | OK|ERROR`` line from the engine output."""
    match = _COMPARE_LINE.search(line.strip())
    if not match:
        return None
    passed = match.group("outcome").upper() == "OK"
    mismatch: Optional[float] = 0.0 if passed else None
    detail = match.group("detail")
    if detail:
        found = _MISMATCH.search(detail)
        if found:
            mismatch = float(found.group(1))
    return CompareLine(
        label=match.group("label").strip(),
        file_name=match.group("file"),
        passed=passed,
        mismatch_percentage=mismatch,
    )


def viewport_from_filename(file_name: str, viewports: Sequence[Viewport]) -> Optional[str]:
    stem = file_name[:-4] if file_name.endswith(".png") else file_name
    for viewport in sorted(viewports, key=lambda item: len(item.label), reverse=True):
        if stem.endswith(f"_{viewport.label}"):
            return viewport.label
    return None


def _scenario_script_name(label: str) -> str:
    return _SCRIPT_NAME.sub("_", label)


def _indent(source: str) -> str:
    return "\n".join(f"    {line}" if line.strip() else "" for line in source.strip().splitlines())


def write_custom_scripts(scripts_dir: Path, scenario: Scenario) -> Dict[str, str]:
    """Materialise custom hook scripts for ``scenario`` and return the engine keys to set."""
    puppet_dir = scripts_dir / "puppet"
    hooks: Dict[str, str] = {}
    name = _scenario_script_name(scenario.label)
    for hook, source, key in (
        ("onReady", scenario.custom_script, "onReadyScript"),
        ("onBefore", scenario.custom_before_script, "onBeforeScript"),
    ):
        if not source:
            continue
        puppet_dir.mkdir(parents=True, exist_ok=True)
        filename = f"{hook}_{name}.js"
        (puppet_dir / filename).write_text(
            SCRIPT_TEMPLATE.format(body=_indent(source), hook=hook),
            encoding="utf-8",
        )
        hooks[key] = f"puppet/{filename}"
    return hooks


def build_engine_config(
    project_id: str,
    scenarios: Sequence[Scenario],
    viewports: Sequence[Viewport],
    artifacts: ArtifactStore,
) -> Dict[str, Any]:
    """Build a run-scoped BackstopJS config for the given scenarios."""
    scripts_dir = artifacts.engine_scripts_dir(project_id)
    engine_scenarios: List[Dict[str, Any]] = []
    for scenario in scenarios:
        dumped = scenario.model_dump(by_alias=True, exclude_none=True)
        entry = {key: dumped[key] for key in ENGINE_SCENARIO_FIELDS if key in dumped}
        entry.update(write_custom_scripts(scripts_dir, scenario))
        engine_scenarios.append(entry)
    return {
        "id": ENGINE_ID,
        "viewports": [viewport.model_dump(by_alias=True) for viewport in viewports],
        "scenarios": engine_scenarios,
        "paths": {
            "bitmaps_reference": str(artifacts.reference_dir(project_id)),
            "bitmaps_test": str(artifacts.test_dir(project_id)),
            "engine_scripts": str(scripts_dir),
            "html_report": str(artifacts.html_report_dir(project_id)),
            "json_report": str(artifacts.json_report_dir(project_id)),
        },
        "report": ["json"],
        "engine": "puppeteer",
        "engineOptions": {"args": ["--no-sandbox"]},
        "asyncCaptureLimit": 5,
        "asyncCompareLimit": 50,
        "debug": False,
        "debugWindow": False,
    }


def write_engine_config(config: Dict[str, Any], path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(config, indent=2), encoding="utf-8")
    return path


class EngineProcess:
    """Thin wrapper around the engine subprocess with line-oriented output."""

    def __init__(self, proc: subprocess.Popen) -> None:
        self._proc = proc

    @property
    def pid(self) -> int:
        return self._proc.pid

    @property
    def returncode(self) -> Optional[int]:
        return self._proc.returncode

    def lines(self) -> Iterator[str]:
        if self._proc.stdout is None:
            return
        try:
            for line in iter(self._proc.stdout.readline, b""):
                if not line:
                    break
                yield line.decode("utf-8", errors="ignore").rstrip("\r\n")
        finally:
            self._proc.stdout.close()

    def wait(self, timeout: Optional[float] = None) -> int:
        return self._proc.wait(timeout=timeout)

    def kill(self) -> None:
        if self._proc.poll() is None:
            self._proc.kill()


Launcher = Callable[[List[str], Path], EngineProcess]


def launch_subprocess(command: List[str], cwd: Path) -> EngineProcess:
    proc = subprocess.Popen(
        command,
        cwd=str(cwd),
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
    )
    return EngineProcess(proc)


def _parse_report(payload: Any, source: Path) -> Optional[RawReport]:
    try:
        return RawReport.model_validate(payload)
    except ValidationError as exc:
        LOGGER.warning("Engine report %s is malformed: %s", source, exc)
        return None


def _read_json(path: Path) -> Optional[RawReport]:
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        LOGGER.debug("Engine report %s unreadable: %s", path, exc)
        return None
    return _parse_report(payload, path)


def _read_html_report(path: Path) -> Optional[RawReport]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        LOGGER.debug("Engine html report %s unreadable: %s", path, exc)
        return None
    match = _HTML_REPORT.search(content)
    if not match:
        return None
    try:
        payload = json.loads(match.group(1))
    except ValueError as exc:
        LOGGER.debug("Engine html report %s is not JSON: %s", path, exc)
        return None
    return _parse_report(payload, path)


def load_raw_report(
    artifacts: ArtifactStore,
    project_id: str,
    *,
    newer_than: Optional[float] = None,
) -> Optional[RawReport]:
    """Read back what the engine persisted for the latest run.

    Looks at the JSON report first, then the newest stamped test directory,
    then the browser report's ``config.js``. Files older than ``newer_than``
    belong to a previous run and are ignored.
    """
    project_root = artifacts.root / project_id
    candidates: List[Path] = [project_root / "json_report" / "jsonReport.json"]
    latest = artifacts.latest_test_run(project_id)
    if latest is not None:
        candidates.append(latest / "report.json")
    candidates.append(project_root / "html_report" / "config.js")

    for candidate in candidates:
        try:
            modified = candidate.stat().st_mtime
        except OSError:
            continue
        if newer_than is not None and modified < newer_than:
            LOGGER.debug("Ignoring stale engine report %s", candidate)
            continue
        report = _read_html_report(candidate) if candidate.suffix == ".js" else _read_json(candidate)
        if report is not None:
            LOGGER.info("Loaded engine report from %s (%s tests)", candidate, len(report.tests))
            return report
    return None
