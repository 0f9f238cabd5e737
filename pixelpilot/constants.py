DEFAULT_VIEWPORTS = [
    {"label": "phone", "width": 320, "height": 480},
    {"label": "tablet", "width": 1024, "height": 768},
    {"label": "desktop", "width": 1920, "height": 1080},
]

DEFAULT_ENGINE_COMMAND = ["npx", "backstop"]
DEFAULT_RUN_TIMEOUT_SECONDS = 600
DEFAULT_PREFLIGHT_TIMEOUT_SECONDS = 8
DEFAULT_DISPLAY_TIMEZONE = "utc"

ENGINE_ID = "backstop_default"
DEFAULT_SELECTOR = "document"

# Scenario fields forwarded verbatim into the generated engine config.
ENGINE_SCENARIO_FIELDS = (
    "label",
    "url",
    "referenceUrl",
    "selectors",
    "delay",
    "misMatchThreshold",
    "requireSameDimensions",
    "hideSelectors",
    "removeSelectors",
    "clickSelector",
    "hoverSelector",
    "selectorExpansion",
)
