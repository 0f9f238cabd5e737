"""Merge preflight rejections into the engine's report.

Scenarios that never reached the engine still have to show up in the report
the dashboard renders, with the same shape as a real comparison. Each invalid
scenario becomes one failed entry per viewport, appended after the engine's
own entries.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Set, Tuple

from pixelpilot.constants import DEFAULT_SELECTOR
from pixelpilot.schemas import (
    DimensionDifference,
    EntryStatus,
    Pair,
    PairDiff,
    RawReport,
    Report,
    ReportEntry,
    ValidationVerdict,
    Viewport,
    ViewportSize,
)
from pixelpilot.services.errors import ReconciliationError

LOGGER = logging.getLogger("pixelpilot.reconciler")


def _error_text(verdict: ValidationVerdict) -> str:
    text = f"Network Error [{verdict.reason.value}]: {verdict.message}"
    if verdict.matched_filter is True:
        text += " (Matched Filter)"
    elif verdict.matched_filter is False:
        text += " (Outside Filter - Shown for Awareness)"
    return text


def _synthetic_file_name(project_id: Optional[str], label: str, viewport: Viewport) -> str:
    stem = f"{label}_{viewport.label}_network_error"
    return f"{project_id}_{stem}" if project_id else stem


def synthesize_entry(
    verdict: ValidationVerdict,
    viewport: Viewport,
    *,
    project_id: Optional[str] = None,
    timestamp: Optional[str] = None,
) -> ReportEntry:
    scenario = verdict.scenario
    selector = scenario.selectors[0] if scenario.selectors else DEFAULT_SELECTOR
    return ReportEntry(
        pair=Pair(
            reference=None,
            test=None,
            selector=selector,
            file_name=_synthetic_file_name(project_id, scenario.label, viewport),
            label=scenario.label,
            viewport_label=viewport.label,
            url=scenario.url,
            reference_url=scenario.reference_url or scenario.url,
            viewport_size=ViewportSize(width=viewport.width, height=viewport.height),
            diff=PairDiff(
                is_same_dimensions=False,
                dimension_difference=DimensionDifference(width=0, height=0),
                mis_match_percentage=100,
                analysis_time=0,
            ),
        ),
        status=EntryStatus.failed,
        error=_error_text(verdict),
        network_error=True,
        error_type=verdict.reason,
        matched_filter=verdict.matched_filter,
        timestamp=timestamp or datetime.now(tz=timezone.utc).isoformat(),
    )


def reconcile(
    raw: RawReport,
    invalid_verdicts: Sequence[ValidationVerdict],
    viewports: Optional[Sequence[Viewport]],
    *,
    project_id: Optional[str] = None,
    filter_labels: Optional[Sequence[str]] = None,
) -> Report:
    """Return a unified report; ``raw`` is never mutated."""
    if invalid_verdicts and not viewports:
        raise ReconciliationError("Cannot reconcile invalid scenarios without a viewport list")
    for verdict in invalid_verdicts:
        if verdict.valid:
            raise ReconciliationError(f"Verdict for scenario '{verdict.label}' is marked valid")

    tests: List[ReportEntry] = []
    seen: Set[Tuple[str, str, str]] = set()
    engine_pairs: Set[Tuple[str, str]] = set()
    for entry in raw.tests:
        if entry.key in seen:
            raise ReconciliationError(f"Duplicate engine entry for {entry.key}")
        seen.add(entry.key)
        engine_pairs.add((entry.pair.label, entry.pair.viewport_label))
        tests.append(entry.model_copy(deep=True))

    timestamp = datetime.now(tz=timezone.utc).isoformat()
    synthetic_pairs: Set[Tuple[str, str]] = set()
    for verdict in invalid_verdicts:
        for viewport in viewports or []:
            pair_key = (verdict.label, viewport.label)
            if pair_key in engine_pairs or pair_key in synthetic_pairs:
                raise ReconciliationError(
                    f"Scenario '{verdict.label}' on viewport '{viewport.label}' already has a report entry"
                )
            synthetic_pairs.add(pair_key)
            tests.append(synthesize_entry(verdict, viewport, project_id=project_id, timestamp=timestamp))

    valid_count = len(raw.tests)
    invalid_count = len(tests) - valid_count
    LOGGER.info(
        "Reconciled report for project %s: %s engine entries, %s synthetic entries",
        project_id,
        valid_count,
        invalid_count,
    )
    return Report(
        project_id=project_id,
        test_suite=raw.test_suite,
        generated_at=timestamp,
        filter=list(filter_labels) if filter_labels else None,
        tests=tests,
        has_network_errors=len(invalid_verdicts) > 0,
        network_error_count=len(invalid_verdicts),
        total_scenarios=len(tests),
        valid_scenarios_count=valid_count,
        invalid_scenarios_count=invalid_count,
    )
