from __future__ import annotations

from typing import List

import pytest

from pixelpilot.schemas import (
    EntryStatus,
    PreflightReason,
    RawReport,
    ReportEntry,
    Scenario,
    ValidationVerdict,
    Viewport,
)
from pixelpilot.services.errors import ReconciliationError
from pixelpilot.services.reconciler import reconcile

TABLET = Viewport(label="Tablet_Landscape", width=1024, height=768)


def _engine_entry(label: str, viewport: str, status: str = "pass", selector: str = "document") -> dict:
    return {
        "pair": {
            "reference": f"../bitmaps_reference/{label}_{viewport}.png",
            "test": f"../bitmaps_test/20240101-120000/{label}_{viewport}.png",
            "selector": selector,
            "fileName": f"{label}_{viewport}.png",
            "label": label,
            "viewportLabel": viewport,
            "requireSameDimensions": True,
            "misMatchThreshold": 0.1,
            "diff": {
                "isSameDimensions": True,
                "dimensionDifference": {"width": 0, "height": 0},
                "misMatchPercentage": "0.00" if status == "pass" else "4.20",
                "analysisTime": 12,
            },
        },
        "status": status,
    }


def _raw(entries: List[dict]) -> RawReport:
    return RawReport.model_validate({"testSuite": "BackstopJS", "id": "backstop_default", "tests": entries})


def _invalid(label: str, reason: PreflightReason, message: str, matched=None) -> ValidationVerdict:
    return ValidationVerdict(
        scenario=Scenario(label=label, url=f"http://{label}.test/"),
        valid=False,
        reason=reason,
        message=message,
        severity="high",
        matched_filter=matched,
    )


@pytest.mark.unit
def test_network_test_scenario_is_appended() -> None:
    raw = _raw([_engine_entry(f"page-{index}", "Tablet_Landscape") for index in range(4)])
    verdict = _invalid(
        "network-test",
        PreflightReason.connection_refused,
        "Connection refused - server not responding",
        matched=True,
    )

    report = reconcile(raw, [verdict], [TABLET], project_id="demo")

    assert len(report.tests) == 5
    assert report.network_error_count == 1
    assert report.total_scenarios == 5
    assert report.valid_scenarios_count == 4
    assert report.invalid_scenarios_count == 1
    assert report.has_network_errors

    synthetic = report.tests[-1]
    assert synthetic.status == EntryStatus.failed
    assert synthetic.network_error
    assert synthetic.error_type == PreflightReason.connection_refused
    assert "ECONNREFUSED" in synthetic.error
    assert "(Matched Filter)" in synthetic.error
    assert synthetic.pair.label == "network-test"
    assert synthetic.pair.viewport_label == "Tablet_Landscape"
    assert synthetic.pair.reference is None and synthetic.pair.test is None
    assert synthetic.pair.diff.mismatch == 100
    assert synthetic.pair.diff.is_same_dimensions is False
    assert synthetic.pair.file_name == "demo_network-test_Tablet_Landscape_network_error"
    assert synthetic.pair.viewport_size.width == 1024


@pytest.mark.unit
def test_counts_hold_for_multiple_viewports() -> None:
    viewports = [Viewport(label="phone", width=320, height=480), TABLET]
    raw = _raw([_engine_entry("home", "phone"), _engine_entry("home", "Tablet_Landscape", "fail")])
    verdicts = [
        _invalid("down", PreflightReason.server_error, "Server error: 503"),
        _invalid("gone", PreflightReason.dns_failure, "DNS resolution failed - domain not found"),
    ]
    report = reconcile(raw, verdicts, viewports)

    assert report.total_scenarios == report.valid_scenarios_count + report.invalid_scenarios_count
    assert report.total_scenarios == len(report.tests) == 6
    assert report.invalid_scenarios_count == 4
    assert report.network_error_count == 2
    assert [entry.pair.label for entry in report.tests[:2]] == ["home", "home"]
    assert report.tests[2].pair.file_name == "down_phone_network_error"


@pytest.mark.unit
def test_filter_annotations() -> None:
    outside = _invalid("other", PreflightReason.timeout, "Request timeout - server not responding in time", matched=False)
    unfiltered = _invalid("plain", PreflightReason.timeout, "Request timeout - server not responding in time")
    report = reconcile(_raw([]), [outside, unfiltered], [TABLET])
    assert report.tests[0].error.endswith("(Outside Filter - Shown for Awareness)")
    assert report.tests[1].error == "Network Error [ETIMEDOUT]: Request timeout - server not responding in time"


@pytest.mark.unit
def test_raw_report_is_not_mutated() -> None:
    raw = _raw([_engine_entry("home", "Tablet_Landscape")])
    before = raw.model_dump(by_alias=True)
    report = reconcile(raw, [_invalid("x", PreflightReason.network_error, "Network error: boom")], [TABLET])
    report.tests[0].pair.label = "changed"
    assert raw.model_dump(by_alias=True) == before


@pytest.mark.unit
def test_unknown_engine_fields_are_preserved() -> None:
    entry = _engine_entry("home", "Tablet_Landscape")
    entry["pair"]["diffImage"] = "../bitmaps_test/failed_diff_home.png"
    report = reconcile(_raw([entry]), [], [TABLET])
    dumped = report.tests[0].model_dump(by_alias=True)
    assert dumped["pair"]["diffImage"] == "../bitmaps_test/failed_diff_home.png"
    assert dumped["pair"]["misMatchThreshold"] == 0.1


@pytest.mark.unit
def test_no_invalid_verdicts_leaves_report_clean() -> None:
    report = reconcile(_raw([_engine_entry("home", "Tablet_Landscape")]), [], [TABLET])
    assert not report.has_network_errors
    assert report.network_error_count == 0
    assert report.invalid_scenarios_count == 0


@pytest.mark.unit
def test_multi_selector_entries_are_distinct() -> None:
    raw = _raw(
        [
            _engine_entry("blog", "Tablet_Landscape", selector="header"),
            _engine_entry("blog", "Tablet_Landscape", selector=".post"),
        ]
    )
    report = reconcile(raw, [], [TABLET])
    assert report.valid_scenarios_count == 2


@pytest.mark.unit
@pytest.mark.parametrize("viewports", [None, []])
def test_missing_viewports_is_rejected(viewports) -> None:
    with pytest.raises(ReconciliationError):
        reconcile(_raw([]), [_invalid("x", PreflightReason.network_error, "Network error: boom")], viewports)


@pytest.mark.unit
def test_valid_verdict_is_rejected() -> None:
    verdict = ValidationVerdict(scenario=Scenario(label="ok", url="http://ok.test/"), valid=True)
    with pytest.raises(ReconciliationError):
        reconcile(_raw([]), [verdict], [TABLET])


@pytest.mark.unit
def test_duplicate_engine_entries_are_rejected() -> None:
    raw = _raw([_engine_entry("home", "Tablet_Landscape"), _engine_entry("home", "Tablet_Landscape")])
    with pytest.raises(ReconciliationError):
        reconcile(raw, [], [TABLET])


@pytest.mark.unit
def test_synthetic_entry_cannot_shadow_engine_entry() -> None:
    raw = _raw([_engine_entry("home", "Tablet_Landscape")])
    with pytest.raises(ReconciliationError):
        reconcile(raw, [_invalid("home", PreflightReason.network_error, "Network error: boom")], [TABLET])


@pytest.mark.unit
def test_report_entries_round_trip_through_aliases() -> None:
    report = reconcile(_raw([]), [_invalid("x", PreflightReason.client_error, "Client error: 404")], [TABLET])
    dumped = report.model_dump(by_alias=True, mode="json")
    assert dumped["networkErrorCount"] == 1
    assert dumped["tests"][0]["networkError"] is True
    assert dumped["tests"][0]["errorType"] == "CLIENT_ERROR"
    assert ReportEntry.model_validate(dumped["tests"][0]).network_error
