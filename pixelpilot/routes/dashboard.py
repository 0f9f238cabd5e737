from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import HTMLResponse

from pixelpilot.schemas import EntryStatus
from pixelpilot.services.reports import ReportStore, get_report_store
from pixelpilot.services.storage import ProjectRepository, RepositoryDep
from pixelpilot.templating import templates

router = APIRouter(tags=["dashboard"])

ReportsDep = Depends(get_report_store)

STATUS_BADGES = {
    EntryStatus.passed.value: "success",
    EntryStatus.failed.value: "danger",
}


@router.get("/projects/{project_id}/report", response_class=HTMLResponse)
async def report_page(
    request: Request,
    project_id: str,
    repo: ProjectRepository = RepositoryDep,
    reports: ReportStore = ReportsDep,
) -> HTMLResponse:
    project = repo.get_project(project_id)
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")
    report = reports.load(project_id)
    context = {
        "project": project,
        "report": report,
        "summary": report.summary() if report else None,
        "status_badges": STATUS_BADGES,
    }
    return templates.TemplateResponse(request, "report.html", context)
