from __future__ import annotations

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException

from pixelpilot.schemas import (
    ConfigUpdate,
    Project,
    ProjectConfig,
    ProjectCreate,
    ProjectUpdate,
    Scenario,
    Viewport,
)
from pixelpilot.routes.errors import to_http
from pixelpilot.services.artifacts import ArtifactStore, get_artifact_store
from pixelpilot.services.errors import PixelPilotError
from pixelpilot.services.orchestrator import RunOrchestrator, get_orchestrator
from pixelpilot.services.storage import ProjectRepository, RepositoryDep

router = APIRouter(prefix="/api", tags=["api"])

OrchestratorDep = Depends(get_orchestrator)
ArtifactsDep = Depends(get_artifact_store)


@router.get("/health")
async def health(orchestrator: RunOrchestrator = OrchestratorDep) -> Dict[str, Any]:
    return {"status": "ok", "activeRuns": [handle.as_dict() for handle in orchestrator.active_runs()]}


# Config --------------------------------------------------------------------------
@router.get("/config")
async def get_config(repo: ProjectRepository = RepositoryDep) -> Dict[str, Any]:
    return repo.get_config()


@router.patch("/config")
async def update_config(
    payload: ConfigUpdate,
    repo: ProjectRepository = RepositoryDep,
    orchestrator: RunOrchestrator = OrchestratorDep,
) -> Dict[str, Any]:
    try:
        if payload.engine_command is not None:
            config = repo.set_engine_command(payload.engine_command)
            orchestrator.update_engine_command(config["engine_command"])
        if payload.run_timeout_seconds is not None:
            config = repo.set_run_timeout_seconds(payload.run_timeout_seconds)
            orchestrator.update_run_timeout(config["run_timeout_seconds"])
        if payload.preflight_timeout_seconds is not None:
            repo.set_preflight_timeout_seconds(payload.preflight_timeout_seconds)
        if payload.display_timezone is not None:
            repo.set_display_timezone(payload.display_timezone)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return repo.get_config()


# Projects ------------------------------------------------------------------------
@router.get("/projects", response_model=List[Project])
async def list_projects(repo: ProjectRepository = RepositoryDep) -> List[Project]:
    return repo.list_projects()


@router.post("/projects", response_model=Project, status_code=201)
async def create_project(
    payload: ProjectCreate, repo: ProjectRepository = RepositoryDep
) -> Project:
    try:
        return repo.create_project(payload.model_dump(by_alias=True))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.get("/projects/{project_id}", response_model=Project)
async def get_project(project_id: str, repo: ProjectRepository = RepositoryDep) -> Project:
    project = repo.get_project(project_id)
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")
    return project


@router.patch("/projects/{project_id}", response_model=Project)
async def update_project(
    project_id: str, payload: ProjectUpdate, repo: ProjectRepository = RepositoryDep
) -> Project:
    record = repo.update_project(project_id, payload.model_dump(exclude_unset=True))
    if not record:
        raise HTTPException(status_code=404, detail="Project not found")
    return record


@router.delete("/projects/{project_id}", status_code=204)
async def delete_project(
    project_id: str,
    repo: ProjectRepository = RepositoryDep,
    orchestrator: RunOrchestrator = OrchestratorDep,
    artifacts: ArtifactStore = ArtifactsDep,
) -> None:
    try:
        orchestrator.ensure_idle(project_id)
    except PixelPilotError as exc:
        raise to_http(exc) from exc
    repo.delete_project(project_id)
    artifacts.purge_project(project_id)


# Scenarios & viewports -------------------------------------------------------------
@router.get("/projects/{project_id}/config", response_model=ProjectConfig)
async def get_project_config(project_id: str, repo: ProjectRepository = RepositoryDep) -> ProjectConfig:
    try:
        return repo.get_project_config(project_id)
    except PixelPilotError as exc:
        raise to_http(exc) from exc


@router.put("/projects/{project_id}/scenarios", response_model=ProjectConfig)
async def replace_scenarios(
    project_id: str,
    scenarios: List[Scenario],
    repo: ProjectRepository = RepositoryDep,
    orchestrator: RunOrchestrator = OrchestratorDep,
) -> ProjectConfig:
    try:
        orchestrator.ensure_idle(project_id)
        return repo.set_scenarios(project_id, scenarios)
    except (PixelPilotError, ValueError) as exc:
        raise to_http(exc) from exc


@router.put("/projects/{project_id}/viewports", response_model=ProjectConfig)
async def replace_viewports(
    project_id: str,
    viewports: List[Viewport],
    repo: ProjectRepository = RepositoryDep,
    orchestrator: RunOrchestrator = OrchestratorDep,
) -> ProjectConfig:
    try:
        orchestrator.ensure_idle(project_id)
        return repo.set_viewports(project_id, viewports)
    except (PixelPilotError, ValueError) as exc:
        raise to_http(exc) from exc
