from __future__ import annotations

import pytest

from pixelpilot.schemas import Scenario, Viewport
from pixelpilot.services.filenames import (
    expected_filenames,
    resolve,
    resolve_for,
    sanitize_label,
    sanitize_selector,
)

VIEWPORTS = [
    Viewport(label="phone", width=320, height=480),
    Viewport(label="Tablet_Landscape", width=1024, height=768),
]


@pytest.mark.unit
def test_resolve_matches_engine_convention() -> None:
    name = resolve("Home Page", 0, "#latest-blog > .container", 1, "Tablet_Landscape")
    assert name == "backstop_default_Home_Page_0_latest-blog-container_1_Tablet_Landscape.png"


@pytest.mark.unit
def test_resolve_document_selector() -> None:
    assert resolve("home", 0, "document", 0, "phone") == "backstop_default_home_0_document_0_phone.png"


@pytest.mark.unit
@pytest.mark.parametrize(
    "selector, expected",
    [
        (".Hero  .Title", "hero-title"),
        ("#main>nav", "main-nav"),
        (" > header > ", "header"),
        ("div   span", "div-span"),
    ],
)
def test_sanitize_selector(selector: str, expected: str) -> None:
    assert sanitize_selector(selector) == expected


@pytest.mark.unit
def test_sanitize_label_collapses_whitespace() -> None:
    assert sanitize_label("About   us\tpage") == "About_us_page"


@pytest.mark.unit
def test_resolve_is_idempotent() -> None:
    first = resolve("Checkout", 2, ".cart > .total", 0, "phone")
    second = resolve("Checkout", 2, ".cart > .total", 0, "phone")
    assert first == second


@pytest.mark.unit
def test_resolve_for_uses_viewport_position() -> None:
    scenario = Scenario(label="Landing", url="https://example.com")
    assert resolve_for(scenario, VIEWPORTS[1], VIEWPORTS) == (
        "backstop_default_Landing_0_document_1_Tablet_Landscape.png"
    )


@pytest.mark.unit
def test_resolve_for_rejects_unknown_viewport() -> None:
    scenario = Scenario(label="Landing", url="https://example.com")
    with pytest.raises(ValueError):
        resolve_for(scenario, Viewport(label="watch", width=100, height=100), VIEWPORTS)


@pytest.mark.unit
def test_expected_filenames_cover_every_selector_and_viewport() -> None:
    scenario = Scenario(label="Blog", url="https://example.com/blog", selectors=["header", ".post"])
    names = [item[3] for item in expected_filenames([scenario], VIEWPORTS)]
    assert names == [
        "backstop_default_Blog_0_header_0_phone.png",
        "backstop_default_Blog_0_header_1_Tablet_Landscape.png",
        "backstop_default_Blog_1_post_0_phone.png",
        "backstop_default_Blog_1_post_1_Tablet_Landscape.png",
    ]
