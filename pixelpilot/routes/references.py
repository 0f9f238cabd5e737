from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, File, Form, Response, UploadFile
from fastapi.concurrency import run_in_threadpool

from pixelpilot.routes.errors import to_http
from pixelpilot.schemas import BackupMetadata, BackupRequest, BackupStats, SyncRequest, SyncStatus
from pixelpilot.services.artifacts import ArtifactStore, get_artifact_store
from pixelpilot.services.backups import BackupManager, get_backup_manager
from pixelpilot.services.errors import PixelPilotError
from pixelpilot.services.pipeline import RunPipeline, get_pipeline
from pixelpilot.services.references import ReferenceLibrary, get_reference_library
from pixelpilot.services.storage import ProjectRepository, RepositoryDep

router = APIRouter(prefix="/api/projects/{project_id}", tags=["references"])

ReferencesDep = Depends(get_reference_library)
BackupsDep = Depends(get_backup_manager)
ArtifactsDep = Depends(get_artifact_store)
PipelineDep = Depends(get_pipeline)


@router.post("/screenshots/upload", status_code=201)
async def upload_screenshot(
    project_id: str,
    screenshot: UploadFile = File(...),
    scenario: str = Form(...),
    viewport: str = Form(...),
    is_reference: bool = Form(default=False, alias="isReference"),
    library: ReferenceLibrary = ReferencesDep,
    artifacts: ArtifactStore = ArtifactsDep,
) -> Dict[str, Any]:
    data = await screenshot.read()
    try:
        record = await run_in_threadpool(
            library.upload,
            project_id,
            scenario,
            viewport,
            data,
            screenshot.filename or "upload.png",
            is_reference=is_reference,
        )
    except (PixelPilotError, ValueError) as exc:
        raise to_http(exc) from exc
    body = record.model_dump(by_alias=True)
    body["url"] = artifacts.url(artifacts.root / record.path)
    return body


@router.get("/sync-status", response_model=List[SyncStatus])
async def project_sync_status(project_id: str, library: ReferenceLibrary = ReferencesDep) -> List[SyncStatus]:
    try:
        return library.tracker.project_status(project_id)
    except PixelPilotError as exc:
        raise to_http(exc) from exc


@router.get("/sync-status/{scenario}/{viewport}", response_model=SyncStatus)
async def scenario_sync_status(
    project_id: str,
    scenario: str,
    viewport: str,
    library: ReferenceLibrary = ReferencesDep,
) -> SyncStatus:
    try:
        return library.tracker.scenario_status(project_id, scenario, viewport)
    except (PixelPilotError, ValueError) as exc:
        raise to_http(exc) from exc


@router.post("/sync-reference", response_model=SyncStatus)
async def sync_reference(
    project_id: str,
    payload: SyncRequest,
    library: ReferenceLibrary = ReferencesDep,
) -> SyncStatus:
    try:
        return await run_in_threadpool(library.sync, project_id, payload.scenario, payload.viewport)
    except (PixelPilotError, ValueError, OSError) as exc:
        raise to_http(exc) from exc


@router.get("/backups", response_model=List[BackupMetadata])
async def list_backups(
    project_id: str,
    repo: ProjectRepository = RepositoryDep,
    backups: BackupManager = BackupsDep,
) -> List[BackupMetadata]:
    try:
        repo.require_project(project_id)
    except PixelPilotError as exc:
        raise to_http(exc) from exc
    return backups.list(project_id)


@router.post("/backups", status_code=201)
async def create_backup(
    project_id: str,
    payload: Optional[BackupRequest] = None,
    pipeline: RunPipeline = PipelineDep,
) -> Dict[str, Any]:
    payload = payload or BackupRequest()
    try:
        backup = await run_in_threadpool(pipeline.backup, project_id, payload.backup_name, payload.description)
    except (PixelPilotError, ValueError, OSError) as exc:
        raise to_http(exc) from exc
    return {
        "success": True,
        "backup": backup.model_dump(by_alias=True, mode="json"),
        "message": f"Backup created successfully: {payload.backup_name or backup.id}",
    }


@router.get("/backups/stats", response_model=BackupStats)
async def backup_stats(
    project_id: str,
    repo: ProjectRepository = RepositoryDep,
    backups: BackupManager = BackupsDep,
) -> BackupStats:
    try:
        repo.require_project(project_id)
    except PixelPilotError as exc:
        raise to_http(exc) from exc
    return backups.stats(project_id)


@router.get("/backups/{backup_id}", response_model=BackupMetadata)
async def get_backup(
    project_id: str,
    backup_id: str,
    repo: ProjectRepository = RepositoryDep,
    backups: BackupManager = BackupsDep,
) -> BackupMetadata:
    try:
        repo.require_project(project_id)
        return backups.get(project_id, backup_id)
    except PixelPilotError as exc:
        raise to_http(exc) from exc


@router.get("/backups/{backup_id}/csv")
async def download_backup_csv(
    project_id: str,
    backup_id: str,
    repo: ProjectRepository = RepositoryDep,
    backups: BackupManager = BackupsDep,
) -> Response:
    try:
        repo.require_project(project_id)
        content = backups.to_csv(project_id, backup_id)
    except PixelPilotError as exc:
        raise to_http(exc) from exc
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="backstop-results-{backup_id}.csv"'},
    )


@router.delete("/backups/{backup_id}")
async def delete_backup(
    project_id: str,
    backup_id: str,
    repo: ProjectRepository = RepositoryDep,
    backups: BackupManager = BackupsDep,
) -> Dict[str, Any]:
    try:
        repo.require_project(project_id)
        await run_in_threadpool(backups.delete, project_id, backup_id)
    except (PixelPilotError, OSError) as exc:
        raise to_http(exc) from exc
    return {"success": True, "message": "Backup deleted successfully"}
