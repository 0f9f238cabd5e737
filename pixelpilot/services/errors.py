from __future__ import annotations

from typing import Optional


class PixelPilotError(Exception):
    """Base class for failures surfaced to API callers."""


class ProjectNotFound(PixelPilotError):
    def __init__(self, project_id: str) -> None:
        super().__init__(f"Project '{project_id}' not found")
        self.project_id = project_id


class RunInProgress(PixelPilotError):
    def __init__(self, project_id: str, started_at: Optional[str] = None) -> None:
        message = f"A test run is already in progress for project '{project_id}'"
        if started_at:
            message += f" (started {started_at})"
        super().__init__(message)
        self.project_id = project_id
        self.started_at = started_at


class EngineLaunchError(PixelPilotError):
    """The diff engine could not start, crashed before reporting, or timed out."""


class ReconciliationError(PixelPilotError, ValueError):
    """Malformed reconciliation input; indicates a caller bug rather than a run failure."""


class NoMatchingScenarios(PixelPilotError):
    def __init__(self, requested: list, available: list) -> None:
        super().__init__("No scenarios match the filter criteria")
        self.requested = requested
        self.available = available


class ReportPersistenceError(PixelPilotError):
    """The unified report could not be written to disk."""


class ResourceNotFound(PixelPilotError, LookupError):
    """A stored artifact such as a backup or report does not exist."""
