from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from fastapi.templating import Jinja2Templates

from pixelpilot.services.storage import get_repository

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"


def _format_timestamp(value: Any) -> str:
    if value in (None, ""):
        return "-"
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)):
        dt = datetime.fromtimestamp(value, tz=timezone.utc)
    else:
        try:
            dt = datetime.fromisoformat(str(value))
        except ValueError:
            return str(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    preference = get_repository().get_config().get("display_timezone", "utc")
    if preference == "local":
        dt = dt.astimezone()
    else:
        dt = dt.astimezone(timezone.utc)
    return dt.strftime("%d %b %y %H:%M:%S")


def _format_mismatch(value: Any) -> str:
    try:
        return f"{float(value):.2f}%"
    except (TypeError, ValueError):
        return "-"


templates = Jinja2Templates(directory=str(TEMPLATES_DIR))
templates.env.globals.update({"len": len})
templates.env.filters["format_ts"] = _format_timestamp
templates.env.filters["format_mismatch"] = _format_mismatch
