from __future__ import annotations

import re
import shutil
import time
from pathlib import Path
from typing import List, Optional

_TEST_STAMP = re.compile(r"^\d{8}-\d{6}$")


class ArtifactStore:
    """Manage on-disk locations for per-project engine output and uploads."""

    def __init__(self, root: Optional[Path] = None, base_url: str = "/artifacts") -> None:
        resolved_root = root or Path.cwd() / "backstop_data"
        self._root = resolved_root.resolve()
        self._base_url = base_url.rstrip("/")
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    def _ensure_dir(self, path: Path) -> Path:
        path.mkdir(parents=True, exist_ok=True)
        return path

    def project_dir(self, project_id: str) -> Path:
        return self._ensure_dir(self._root / project_id)

    def reference_dir(self, project_id: str) -> Path:
        return self._ensure_dir(self.project_dir(project_id) / "bitmaps_reference")

    def test_dir(self, project_id: str) -> Path:
        return self._ensure_dir(self.project_dir(project_id) / "bitmaps_test")

    def html_report_dir(self, project_id: str) -> Path:
        return self._ensure_dir(self.project_dir(project_id) / "html_report")

    def json_report_dir(self, project_id: str) -> Path:
        return self._ensure_dir(self.project_dir(project_id) / "json_report")

    def engine_scripts_dir(self, project_id: str) -> Path:
        return self._ensure_dir(self.project_dir(project_id) / "engine_scripts")

    def uploads_dir(self, project_id: str) -> Path:
        return self._ensure_dir(self.project_dir(project_id) / "uploads")

    def backups_dir(self, project_id: str) -> Path:
        return self._ensure_dir(self.project_dir(project_id) / "backups")

    def logs_dir(self, project_id: str) -> Path:
        return self._ensure_dir(self.project_dir(project_id) / "logs")

    def engine_config_path(self, project_id: str) -> Path:
        return self.project_dir(project_id) / "backstop.json"

    def report_path(self, project_id: str) -> Path:
        return self.project_dir(project_id) / "report.json"

    def run_log_path(self, project_id: str) -> Path:
        stamp = time.strftime("%Y%m%d-%H%M%S", time.gmtime())
        return self.logs_dir(project_id) / f"run-{stamp}.log"

    def test_runs(self, project_id: str) -> List[Path]:
        """Engine test output directories, oldest first."""
        base = self._root / project_id / "bitmaps_test"
        if not base.exists():
            return []
        return sorted(
            (child for child in base.iterdir() if child.is_dir() and self.is_stamped(child)),
            key=lambda child: child.name,
        )

    def latest_test_run(self, project_id: str) -> Optional[Path]:
        runs = self.test_runs(project_id)
        return runs[-1] if runs else None

    @staticmethod
    def is_stamped(path: Path) -> bool:
        return bool(_TEST_STAMP.match(path.name))

    def relative(self, path: Path) -> str:
        cleaned = path.resolve()
        root = self._root.resolve()
        return str(cleaned.relative_to(root))

    def url(self, path: Path) -> str:
        return f"{self._base_url}/{self.relative(path)}"

    def copy_to_reference(self, source: Path, project_id: str, filename: str) -> Path:
        destination = self.reference_dir(project_id) / filename
        shutil.copyfile(source, destination)
        return destination

    def purge_project(self, project_id: str) -> None:
        """Remove all artifacts associated with a project."""
        target = self._root / project_id
        if target.exists():
            shutil.rmtree(target, ignore_errors=True)


_artifact_store: Optional[ArtifactStore] = None


def get_artifact_store() -> ArtifactStore:
    global _artifact_store
    if _artifact_store is None:
        _artifact_store = ArtifactStore()
    return _artifact_store
