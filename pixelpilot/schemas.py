from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from pixelpilot.constants import DEFAULT_SELECTOR


class CamelModel(BaseModel):
    """Base for models persisted and served in the engine's camelCase layout."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _split_filter(value: Any) -> Optional[List[str]]:
    if value is None:
        return None
    if isinstance(value, str):
        items = value.split("|")
    elif isinstance(value, (list, tuple, set)):
        items = [str(item) for item in value]
    else:
        raise ValueError("Filter must be a list of scenario labels or a '|' separated string.")
    cleaned = [item.strip() for item in items if item and item.strip()]
    return cleaned or None


# Configuration ---------------------------------------------------------------------
class Viewport(CamelModel):
    label: str
    width: int
    height: int

    model_config = ConfigDict(frozen=True)

    @field_validator("label")
    @classmethod
    def validate_label(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("Viewport label cannot be blank.")
        return stripped

    @field_validator("width", "height")
    @classmethod
    def validate_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("Viewport dimensions must be positive integers.")
        return value


class Scenario(CamelModel):
    label: str
    url: str
    reference_url: Optional[str] = None
    selectors: List[str] = Field(default_factory=lambda: [DEFAULT_SELECTOR])
    delay: int = Field(default=0, ge=0)
    mis_match_threshold: float = Field(default=0.1, ge=0, le=1)
    require_same_dimensions: bool = True
    hide_selectors: List[str] = Field(default_factory=list)
    remove_selectors: List[str] = Field(default_factory=list)
    click_selector: Optional[str] = None
    hover_selector: Optional[str] = None
    custom_script: Optional[str] = None
    custom_before_script: Optional[str] = None
    selector_expansion: bool = True

    model_config = ConfigDict(frozen=True)

    @field_validator("label", "url")
    @classmethod
    def validate_required(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("Scenario label and url cannot be blank.")
        return stripped

    @field_validator("reference_url", "click_selector", "hover_selector", "custom_script", "custom_before_script")
    @classmethod
    def blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        stripped = value.strip()
        return stripped or None

    @field_validator("selectors")
    @classmethod
    def default_selectors(cls, value: List[str]) -> List[str]:
        cleaned = [item.strip() for item in value if item and item.strip()]
        return cleaned or [DEFAULT_SELECTOR]


class ProjectBase(BaseModel):
    name: str
    description: Optional[str] = None


class ProjectCreate(ProjectBase):
    viewports: Optional[List[Viewport]] = None
    scenarios: List[Scenario] = Field(default_factory=list)


class ProjectUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None


class Project(ProjectBase):
    id: str
    created_at: str
    updated_at: str

    model_config = {"from_attributes": True}


class ProjectConfig(CamelModel):
    project_id: str
    scenarios: List[Scenario]
    viewports: List[Viewport]


class ConfigUpdate(BaseModel):
    engine_command: Optional[List[str]] = None
    run_timeout_seconds: Optional[int] = None
    preflight_timeout_seconds: Optional[float] = None
    display_timezone: Optional[str] = None


# Runs ------------------------------------------------------------------------------
class RunRequest(CamelModel):
    project_id: str
    filter: Optional[List[str]] = None

    @field_validator("filter", mode="before")
    @classmethod
    def parse_filter(cls, value: Any) -> Optional[List[str]]:
        return _split_filter(value)

    def matches(self, label: str) -> bool:
        return self.filter is None or label in self.filter


class RunPayload(BaseModel):
    """Request body for test and approve triggers."""

    filter: Optional[Union[List[str], str]] = None

    @field_validator("filter", mode="before")
    @classmethod
    def parse_filter(cls, value: Any) -> Optional[List[str]]:
        return _split_filter(value)


class PreflightReason(str, Enum):
    no_url = "NO_URL"
    invalid_url = "INVALID_URL"
    connection_refused = "ECONNREFUSED"
    dns_failure = "ENOTFOUND"
    timeout = "ETIMEDOUT"
    connection_reset = "ECONNRESET"
    network_error = "NETWORK_ERROR"
    client_error = "CLIENT_ERROR"
    server_error = "SERVER_ERROR"

    @property
    def category(self) -> str:
        if self in (PreflightReason.no_url, PreflightReason.invalid_url):
            return "validation"
        if self in (PreflightReason.client_error, PreflightReason.server_error):
            return "navigation"
        return "network"


class ValidationVerdict(CamelModel):
    scenario: Scenario
    valid: bool
    reason: Optional[PreflightReason] = None
    message: Optional[str] = None
    severity: str = "info"
    status_code: Optional[int] = None
    matched_filter: Optional[bool] = None

    @model_validator(mode="after")
    def require_reason_when_invalid(self) -> "ValidationVerdict":
        if not self.valid and (self.reason is None or not self.message):
            raise ValueError("Invalid verdicts need a reason and a message.")
        return self

    @property
    def label(self) -> str:
        return self.scenario.label


# Reports ---------------------------------------------------------------------------
class DimensionDifference(CamelModel):
    width: float = 0
    height: float = 0


class ViewportSize(CamelModel):
    width: int
    height: int


class PairDiff(CamelModel):
    is_same_dimensions: bool = True
    dimension_difference: DimensionDifference = Field(default_factory=DimensionDifference)
    mis_match_percentage: Union[float, str] = 0
    analysis_time: float = 0

    model_config = ConfigDict(extra="allow")

    @property
    def mismatch(self) -> float:
        try:
            return float(self.mis_match_percentage)
        except (TypeError, ValueError):
            return 0.0


class Pair(CamelModel):
    reference: Optional[str] = None
    test: Optional[str] = None
    selector: str = DEFAULT_SELECTOR
    file_name: str
    label: str
    viewport_label: str
    url: Optional[str] = None
    reference_url: Optional[str] = None
    viewport_size: Optional[ViewportSize] = None
    diff: Optional[PairDiff] = None

    model_config = ConfigDict(extra="allow")


class EntryStatus(str, Enum):
    passed = "pass"
    failed = "fail"


class ReportEntry(CamelModel):
    pair: Pair
    status: EntryStatus
    error: Optional[str] = None
    network_error: bool = False
    error_type: Optional[PreflightReason] = None
    matched_filter: Optional[bool] = None
    timestamp: Optional[str] = None

    model_config = ConfigDict(extra="allow")

    @property
    def key(self) -> tuple:
        return (self.pair.label, self.pair.viewport_label, self.pair.selector)

    @property
    def mismatch(self) -> float:
        return self.pair.diff.mismatch if self.pair.diff else 0.0


class RawReport(CamelModel):
    test_suite: Optional[Any] = None
    id: Optional[str] = None
    tests: List[ReportEntry] = Field(default_factory=list)

    model_config = ConfigDict(extra="allow")


class Report(CamelModel):
    project_id: Optional[str] = None
    test_suite: Optional[Any] = None
    generated_at: Optional[str] = None
    filter: Optional[List[str]] = None
    tests: List[ReportEntry] = Field(default_factory=list)
    has_network_errors: bool = False
    network_error_count: int = 0
    total_scenarios: int = 0
    valid_scenarios_count: int = 0
    invalid_scenarios_count: int = 0

    def summary(self) -> Dict[str, int]:
        invalid = sum(1 for entry in self.tests if entry.network_error)
        return {
            "totalTests": len(self.tests),
            "validTests": len(self.tests) - invalid,
            "invalidTests": invalid,
            "passedTests": sum(1 for entry in self.tests if entry.status == EntryStatus.passed),
            "failedTests": sum(1 for entry in self.tests if entry.status == EntryStatus.failed),
        }


# References ------------------------------------------------------------------------
class SyncState(str, Enum):
    synced = "synced"
    outdated = "outdated"
    missing = "missing"


class SyncStatus(CamelModel):
    scenario: str
    viewport: str
    state: SyncState
    file_name: str
    reference_modified_at: Optional[float] = None
    uploaded_at: Optional[float] = None


class UploadRecord(CamelModel):
    id: str
    project_id: str
    scenario: str
    viewport: str
    path: str
    original_name: str
    is_reference: bool = False
    uploaded_at: float


class SyncRequest(CamelModel):
    scenario: str
    viewport: str


# Backups ---------------------------------------------------------------------------
class BackupEntrySummary(CamelModel):
    label: str
    viewport: str
    status: EntryStatus
    mismatch_percentage: float = 0.0
    url: Optional[str] = None


class BackupSummary(CamelModel):
    total_tests: int = 0
    passed_tests: int = 0
    failed_tests: int = 0
    avg_mismatch: float = 0.0


class BackupMetadata(CamelModel):
    id: str
    name: str
    description: Optional[str] = None
    project_id: str
    timestamp: str
    test_summary: BackupSummary = Field(default_factory=BackupSummary)
    scenarios: List[BackupEntrySummary] = Field(default_factory=list)
    size: int = 0
    has_report: bool = False


class BackupRequest(CamelModel):
    backup_name: Optional[str] = None
    description: Optional[str] = None


class BackupStats(CamelModel):
    total_backups: int = 0
    total_tests: int = 0
    total_size: int = 0
    average_failure_rate: float = 0.0
