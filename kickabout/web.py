"""Template environment and static web pages for Kickabout."""

from __future__ import annotations

from pathlib import Path

from fastapi import Request
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates

from .events import format_event_time
from .users import ANIMAL_EMOJIS, DEFAULT_PROFILE_EMOJI
from .utils import format_event_date, format_timestamp, humanize_time

templates = Jinja2Templates(directory=Path(__file__).parent / "templates")

templates.env.filters["event_date"] = format_event_date
templates.env.filters["timestamp"] = format_timestamp
templates.env.filters["relative_time"] = humanize_time
templates.env.globals["event_time"] = format_event_time
templates.env.globals["animal_emojis"] = ANIMAL_EMOJIS
templates.env.globals["default_emoji"] = DEFAULT_PROFILE_EMOJI


def faq(request: Request):
    """Render the FAQ page."""
    settings = request.app.state.settings
    return templates.TemplateResponse(
        request,
        "faq.html",
        {
            "request": request,
            "viewer": None,
            "toasts": [],
            "defaults": {
                "title": settings.default_event_title,
                "location": settings.default_event_location,
            },
        },
    )


def register_web_routes(app):
    """Register web routes on the FastAPI app."""
    app.get("/faq", response_class=HTMLResponse)(faq)
