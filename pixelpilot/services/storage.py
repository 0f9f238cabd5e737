from __future__ import annotations

import json
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from fastapi import Depends

from pixelpilot.constants import (
    DEFAULT_DISPLAY_TIMEZONE,
    DEFAULT_ENGINE_COMMAND,
    DEFAULT_PREFLIGHT_TIMEOUT_SECONDS,
    DEFAULT_RUN_TIMEOUT_SECONDS,
    DEFAULT_VIEWPORTS,
)
from pixelpilot.schemas import ProjectConfig, Scenario, UploadRecord, Viewport
from pixelpilot.services.errors import ProjectNotFound

STATE_VERSION = 1


def _utcnow() -> str:
    """Return timezone-aware ISO timestamp."""
    return datetime.now(tz=timezone.utc).isoformat()


def _default_config() -> Dict[str, Any]:
    return {
        "engine_command": list(DEFAULT_ENGINE_COMMAND),
        "run_timeout_seconds": DEFAULT_RUN_TIMEOUT_SECONDS,
        "preflight_timeout_seconds": DEFAULT_PREFLIGHT_TIMEOUT_SECONDS,
        "display_timezone": DEFAULT_DISPLAY_TIMEZONE,
        "default_viewports": [dict(item) for item in DEFAULT_VIEWPORTS],
    }


def _default_state() -> Dict[str, Any]:
    return {
        "version": STATE_VERSION,
        "projects": {},
        "uploads": {},
        "config": _default_config(),
    }


def _unique_labels(items: Iterable[Any], kind: str) -> None:
    seen = set()
    for item in items:
        if item.label in seen:
            raise ValueError(f"Duplicate {kind} label '{item.label}'")
        seen.add(item.label)


class LocalJsonStorage:
    """Small collection-oriented persistence layer backed by a single JSON file.

    Each top-level collection stores items keyed by their primary identifier.
    All writes are synchronised via an internal lock and flushed immediately.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock = threading.Lock()
        self._state = self._load()

    def _load(self) -> Dict[str, Any]:
        if not self._path.exists():
            return _default_state()
        with self._path.open("r", encoding="utf-8") as handle:
            state = json.load(handle)
        state.setdefault("projects", {})
        state.setdefault("uploads", {})
        config = state.setdefault("config", {})
        for key, value in _default_config().items():
            config.setdefault(key, value)
        return state

    def _persist(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._path.open("w", encoding="utf-8") as handle:
            json.dump(self._state, handle, indent=2, sort_keys=True)

    def _collection(self, name: str) -> Dict[str, Any]:
        return self._state.setdefault(name, {})

    def get_config(self) -> Dict[str, Any]:
        return self._state.setdefault("config", _default_config())

    def update_config(self, **changes: Any) -> Dict[str, Any]:
        with self._lock:
            config = self.get_config()
            for key, value in changes.items():
                if value is not None:
                    config[key] = value
            self._persist()
            return config

    def upsert(self, collection: str, item_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        with self._lock:
            self._collection(collection)[item_id] = payload
            self._persist()
            return payload

    def get(self, collection: str, item_id: str) -> Optional[Dict[str, Any]]:
        return self._collection(collection).get(item_id)

    def delete(self, collection: str, item_id: str) -> None:
        with self._lock:
            if item_id in self._collection(collection):
                del self._collection(collection)[item_id]
                self._persist()

    def list(self, collection: str) -> List[Dict[str, Any]]:
        return list(self._collection(collection).values())

    def filter(self, collection: str, *, key: str, value: Any) -> List[Dict[str, Any]]:
        return [item for item in self.list(collection) if item.get(key) == value]

    def bulk_delete(self, collection: str, item_ids: Iterable[str]) -> None:
        with self._lock:
            coll = self._collection(collection)
            removed = False
            for item_id in item_ids:
                if item_id in coll:
                    del coll[item_id]
                    removed = True
            if removed:
                self._persist()


class ProjectRepository:
    """Repository offering domain-focused helpers on top of LocalJsonStorage."""

    def __init__(self, storage: LocalJsonStorage) -> None:
        self._storage = storage

    # -- Config -------------------------------------------------------------------
    def get_config(self) -> Dict[str, Any]:
        config = self._storage.get_config()
        return {
            "engine_command": list(config.get("engine_command") or DEFAULT_ENGINE_COMMAND),
            "run_timeout_seconds": int(config.get("run_timeout_seconds", DEFAULT_RUN_TIMEOUT_SECONDS)),
            "preflight_timeout_seconds": float(
                config.get("preflight_timeout_seconds", DEFAULT_PREFLIGHT_TIMEOUT_SECONDS)
            ),
            "display_timezone": config.get("display_timezone", DEFAULT_DISPLAY_TIMEZONE),
            "default_viewports": list(config.get("default_viewports") or DEFAULT_VIEWPORTS),
        }

    def set_engine_command(self, command: List[str]) -> Dict[str, Any]:
        cleaned = [part.strip() for part in command if part and part.strip()]
        if not cleaned:
            raise ValueError("Engine command cannot be empty.")
        self._storage.update_config(engine_command=cleaned)
        return self.get_config()

    def set_run_timeout_seconds(self, timeout_seconds: int) -> Dict[str, Any]:
        if timeout_seconds <= 0:
            raise ValueError("Run timeout must be a positive number of seconds.")
        self._storage.update_config(run_timeout_seconds=int(timeout_seconds))
        return self.get_config()

    def set_preflight_timeout_seconds(self, timeout_seconds: float) -> Dict[str, Any]:
        if timeout_seconds <= 0:
            raise ValueError("Preflight timeout must be a positive number of seconds.")
        if timeout_seconds > 120:
            raise ValueError("Preflight timeout cannot exceed 120 seconds.")
        self._storage.update_config(preflight_timeout_seconds=float(timeout_seconds))
        return self.get_config()

    def set_display_timezone(self, timezone_pref: str) -> Dict[str, Any]:
        normalized = timezone_pref.lower()
        if normalized not in {"utc", "local"}:
            raise ValueError("Display timezone must be 'utc' or 'local'.")
        self._storage.update_config(display_timezone=normalized)
        return self.get_config()

    # -- Projects -----------------------------------------------------------------
    def list_projects(self) -> List[Dict[str, Any]]:
        return sorted(self._storage.list("projects"), key=lambda it: it["created_at"])

    def get_project(self, project_id: str) -> Optional[Dict[str, Any]]:
        return self._storage.get("projects", project_id)

    def require_project(self, project_id: str) -> Dict[str, Any]:
        project = self.get_project(project_id)
        if not project:
            raise ProjectNotFound(project_id)
        return project

    def create_project(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        now = _utcnow()
        project_id = str(uuid.uuid4())
        viewports = [Viewport.model_validate(item) for item in payload.get("viewports") or self.get_config()["default_viewports"]]
        scenarios = [Scenario.model_validate(item) for item in payload.get("scenarios") or []]
        _unique_labels(viewports, "viewport")
        _unique_labels(scenarios, "scenario")
        record = {
            "id": project_id,
            "name": payload["name"],
            "description": payload.get("description"),
            "viewports": [item.model_dump(by_alias=True) for item in viewports],
            "scenarios": [item.model_dump(by_alias=True) for item in scenarios],
            "created_at": now,
            "updated_at": now,
        }
        return self._storage.upsert("projects", project_id, record)

    def update_project(self, project_id: str, payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        record = self.get_project(project_id)
        if not record:
            return None
        record.update({k: v for k, v in payload.items() if v is not None and k in {"name", "description"}})
        record["updated_at"] = _utcnow()
        return self._storage.upsert("projects", project_id, record)

    def delete_project(self, project_id: str) -> None:
        uploads = [upload["id"] for upload in self._storage.filter("uploads", key="projectId", value=project_id)]
        self._storage.bulk_delete("uploads", uploads)
        self._storage.delete("projects", project_id)

    # -- Scenarios & viewports ------------------------------------------------------
    def get_project_config(self, project_id: str) -> ProjectConfig:
        record = self.require_project(project_id)
        return ProjectConfig(
            project_id=project_id,
            scenarios=[Scenario.model_validate(item) for item in record.get("scenarios", [])],
            viewports=[Viewport.model_validate(item) for item in record.get("viewports", [])],
        )

    def set_scenarios(self, project_id: str, scenarios: List[Scenario]) -> ProjectConfig:
        record = self.require_project(project_id)
        _unique_labels(scenarios, "scenario")
        record["scenarios"] = [item.model_dump(by_alias=True) for item in scenarios]
        record["updated_at"] = _utcnow()
        self._storage.upsert("projects", project_id, record)
        return self.get_project_config(project_id)

    def set_viewports(self, project_id: str, viewports: List[Viewport]) -> ProjectConfig:
        record = self.require_project(project_id)
        if not viewports:
            raise ValueError("At least one viewport must be provided.")
        _unique_labels(viewports, "viewport")
        record["viewports"] = [item.model_dump(by_alias=True) for item in viewports]
        record["updated_at"] = _utcnow()
        self._storage.upsert("projects", project_id, record)
        return self.get_project_config(project_id)

    # -- Uploads ------------------------------------------------------------------
    def record_upload(self, payload: Dict[str, Any]) -> UploadRecord:
        upload = UploadRecord(id=str(uuid.uuid4()), **payload)
        self._storage.upsert("uploads", upload.id, upload.model_dump(by_alias=True))
        return upload

    def list_uploads(
        self,
        project_id: str,
        *,
        scenario: Optional[str] = None,
        viewport: Optional[str] = None,
    ) -> List[UploadRecord]:
        items = [UploadRecord.model_validate(item) for item in self._storage.filter("uploads", key="projectId", value=project_id)]
        if scenario is not None:
            items = [item for item in items if item.scenario == scenario]
        if viewport is not None:
            items = [item for item in items if item.viewport == viewport]
        return sorted(items, key=lambda it: it.uploaded_at)

    def latest_upload(self, project_id: str, scenario: str, viewport: str) -> Optional[UploadRecord]:
        uploads = self.list_uploads(project_id, scenario=scenario, viewport=viewport)
        return uploads[-1] if uploads else None


_repository: Optional[ProjectRepository] = None


def get_repository() -> ProjectRepository:
    """FastAPI dependency to retrieve the singleton repository instance."""
    global _repository
    if _repository is None:
        storage_path = Path("data") / "projects.json"
        backend = LocalJsonStorage(storage_path)
        _repository = ProjectRepository(backend)
    return _repository


RepositoryDep = Depends(get_repository)
