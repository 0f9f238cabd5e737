"""Canonical artifact filenames shared by the diff engine and reference uploads.

BackstopJS names every captured bitmap after the scenario, the selector and the
viewport. Manual uploads must land under exactly the same name or the engine
will not pick them up, so every caller goes through :func:`resolve`.
"""

from __future__ import annotations

import re
from typing import Iterator, List, Sequence, Tuple

from pixelpilot.constants import ENGINE_ID
from pixelpilot.schemas import Scenario, Viewport

_WHITESPACE = re.compile(r"\s+")
_CHILD_COMBINATOR = re.compile(r"\s*>\s*")
_HYPHEN_RUN = re.compile(r"-{2,}")


def sanitize_label(label: str) -> str:
    return _WHITESPACE.sub("_", label)


def sanitize_selector(selector: str) -> str:
    cleaned = selector.replace("#", "").replace(".", "")
    cleaned = _CHILD_COMBINATOR.sub("-", cleaned)
    cleaned = _WHITESPACE.sub("-", cleaned)
    cleaned = _HYPHEN_RUN.sub("-", cleaned).strip("-")
    return cleaned.lower()


def resolve(
    scenario_label: str,
    selector_index: int,
    selector: str,
    viewport_index: int,
    viewport_label: str,
) -> str:
    return (
        f"{ENGINE_ID}_{sanitize_label(scenario_label)}_{selector_index}_"
        f"{sanitize_selector(selector)}_{viewport_index}_{viewport_label}.png"
    )


def resolve_for(
    scenario: Scenario,
    viewport: Viewport,
    viewports: Sequence[Viewport],
    *,
    selector_index: int = 0,
) -> str:
    """Resolve the filename for one selector of ``scenario`` within a project's viewport list."""
    viewport_index = _viewport_index(viewport, viewports)
    selector = scenario.selectors[selector_index]
    return resolve(scenario.label, selector_index, selector, viewport_index, viewport.label)


def expected_filenames(
    scenarios: Sequence[Scenario],
    viewports: Sequence[Viewport],
) -> Iterator[Tuple[Scenario, str, Viewport, str]]:
    for scenario in scenarios:
        for selector_index, selector in enumerate(scenario.selectors):
            for viewport_index, viewport in enumerate(viewports):
                yield (
                    scenario,
                    selector,
                    viewport,
                    resolve(scenario.label, selector_index, selector, viewport_index, viewport.label),
                )


def _viewport_index(viewport: Viewport, viewports: Sequence[Viewport]) -> int:
    labels: List[str] = [item.label for item in viewports]
    try:
        return labels.index(viewport.label)
    except ValueError as exc:
        raise ValueError(f"Viewport '{viewport.label}' is not configured for this project") from exc
