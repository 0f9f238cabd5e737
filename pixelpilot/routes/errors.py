from __future__ import annotations

from fastapi import HTTPException

from pixelpilot.services.errors import (
    EngineLaunchError,
    NoMatchingScenarios,
    PixelPilotError,
    ProjectNotFound,
    ReconciliationError,
    ResourceNotFound,
    RunInProgress,
)


def to_http(exc: Exception) -> HTTPException:
    """Translate a domain exception into the HTTP error surfaced to the dashboard."""
    if isinstance(exc, ProjectNotFound):
        return HTTPException(status_code=404, detail="Project not found")
    if isinstance(exc, ResourceNotFound):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, RunInProgress):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, NoMatchingScenarios):
        return HTTPException(
            status_code=400,
            detail={
                "error": str(exc),
                "filter": exc.requested,
                "availableScenarios": exc.available,
            },
        )
    if isinstance(exc, ReconciliationError):
        return HTTPException(status_code=500, detail=f"Report enhancement failed: {exc}")
    if isinstance(exc, EngineLaunchError):
        return HTTPException(status_code=500, detail=str(exc))
    if isinstance(exc, PixelPilotError):
        return HTTPException(status_code=500, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))
