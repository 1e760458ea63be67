"""FastAPI application for Kickabout."""

from __future__ import annotations

import logging
import math
from contextlib import asynccontextmanager
from datetime import datetime
from itertools import groupby
from typing import Callable

from fastapi import Depends, FastAPI, Form, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import events as event_service
from . import notices as notice_service
from . import users as user_service
from .auth import Capability, Denial, Viewer, current_user_id, resolve_viewer
from .config import Settings, load_settings
from .database import Database
from .errors import ExternalServiceError, KickaboutError, NotFound, ValidationError
from .events import BulkResult, EventState
from .mail import Mailer
from .sessions import SessionManager
from .storage import init_db
from .utils import local_now, parse_id_list, utcnow
from .web import register_web_routes, templates

# Use uvicorn's error logger so messages get the level prefix in the default log
# format.
logger = logging.getLogger("uvicorn.error")

Clock = Callable[[], datetime]

INVALID_LOGIN = "Invalid username or password."


class DismissResponse(BaseModel):
    dismissed: bool


def _no_cache(response):
    """Prevent clients from caching dynamic pages so fresh data is shown."""
    response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, max-age=0"
    response.headers["Pragma"] = "no-cache"
    response.headers["Expires"] = "0"
    return response


def get_db(request: Request):
    db = request.app.state.database.SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_viewer(request: Request, db: Session = Depends(get_db)) -> Viewer:
    sessions: SessionManager = request.app.state.sessions
    return resolve_viewer(db, current_user_id(request, sessions))


def _settings(request: Request) -> Settings:
    return request.app.state.settings


def _now(request: Request) -> datetime:
    return request.app.state.clock()


def _redirect(url: str) -> RedirectResponse:
    return RedirectResponse(url, status_code=303)


def _wants_json(request: Request) -> bool:
    accept = (request.headers.get("accept") or "").lower()
    return "application/json" in accept and "text/html" not in accept


def _render_error(request: Request, status_code: int, message: str | None):
    context = {
        "request": request,
        "viewer": None,
        "toasts": [],
        "status_code": status_code,
        "error_message": message or "Something went wrong.",
    }
    return templates.TemplateResponse(
        request, "error.html", context, status_code=status_code
    )


def _deny(request: Request, denial: Denial):
    """Turn a capability denial into the matching response."""
    if _wants_json(request):
        status = 403 if denial is Denial.FORBIDDEN else 401
        return JSONResponse({"detail": denial.value}, status_code=status)
    if denial is Denial.UNAUTHENTICATED:
        return _redirect("/login")
    if denial is Denial.UNVERIFIED:
        return _redirect("/verify-email")
    return _render_error(request, 403, "This page is for admins only.")


def _page(
    request: Request,
    viewer: Viewer,
    db: Session,
    template: str,
    context: dict | None = None,
    *,
    status_code: int = 200,
):
    """Render ``template`` with the viewer and their pending notices."""
    toasts = []
    if viewer.capability >= Capability.VERIFIED:
        toasts = notice_service.list_for_user(db, viewer.user)
    settings = _settings(request)
    payload = {
        "request": request,
        "viewer": viewer,
        "toasts": toasts,
        "defaults": {
            "title": settings.default_event_title,
            "description": settings.default_event_description,
            "location": settings.default_event_location,
        },
    }
    payload.update(context or {})
    return _no_cache(
        templates.TemplateResponse(request, template, payload, status_code=status_code)
    )


def _resend_wait_seconds(user, settings: Settings, now: datetime) -> int:
    issued_at = user_service.verification_issued_at(user)
    if issued_at is None:
        return 0
    elapsed = (now - issued_at).total_seconds()
    return max(0, math.ceil(settings.verification_resend_cooldown_seconds - elapsed))


def _send_verification(request: Request, db: Session, user) -> None:
    """Issue a fresh verification token and mail the link."""
    mailer: Mailer = request.app.state.mailer
    mailer.ensure_configured()
    token = user_service.resend_verification(db, user)
    link = user_service.verification_link(_settings(request).origin, token)
    mailer.send_verification_email(user.email, link)


def _parse_int(raw: str | None) -> int | None:
    try:
        return int((raw or "").strip())
    except ValueError:
        return None


# -- exception handlers ------------------------------------------------------


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Render HTTP errors as friendly pages unless JSON was requested."""
    if _wants_json(request):
        return JSONResponse({"detail": exc.detail}, status_code=exc.status_code)
    detail = exc.detail if isinstance(exc.detail, str) else "Something went wrong."
    return _render_error(request, exc.status_code, detail)


async def not_found_handler(request: Request, exc: NotFound):
    if _wants_json(request):
        return JSONResponse({"detail": exc.message}, status_code=404)
    return _render_error(request, 404, exc.message)


async def kickabout_error_handler(request: Request, exc: KickaboutError):
    status = 502 if isinstance(exc, ExternalServiceError) else 400
    if _wants_json(request):
        return JSONResponse({"detail": exc.message}, status_code=status)
    return _render_error(request, status, exc.message)


async def operational_error_handler(request: Request, exc: OperationalError):
    raw = str(exc.orig) if getattr(exc, "orig", None) else str(exc)
    if "database is locked" in raw.lower():
        logger.error(
            "SQLite database is locked while handling %s %s",
            request.method,
            request.url.path,
        )
        detail = "The database is busy at the moment. Please wait a few seconds and try again."
        status = 503
    else:
        logger.error(
            "Operational database error on %s %s: %s",
            request.method,
            request.url.path,
            raw,
        )
        detail = "We hit a database issue. Please try again."
        status = 500
    if _wants_json(request):
        return JSONResponse({"detail": detail}, status_code=status)
    return _render_error(request, status, detail)


async def validation_error_handler(request: Request, exc: RequestValidationError):
    if _wants_json(request):
        return JSONResponse({"detail": exc.errors()}, status_code=422)
    return _render_error(
        request,
        422,
        "Some of the fields were invalid. Please double-check and try again.",
    )


async def generic_exception_handler(request: Request, exc: Exception):
    """Gracefully handle unexpected errors."""
    logger.exception(
        "Unhandled error while processing %s %s", request.method, request.url.path
    )
    if _wants_json(request):
        return JSONResponse({"detail": "Internal server error"}, status_code=500)
    return _render_error(
        request,
        500,
        "We hit a snag while processing that request. Please try again.",
    )


def _register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(NotFound, not_found_handler)
    app.add_exception_handler(KickaboutError, kickabout_error_handler)
    app.add_exception_handler(OperationalError, operational_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, generic_exception_handler)


# -- account routes ----------------------------------------------------------


def homepage(viewer: Viewer = Depends(get_viewer)):
    return _redirect("/events" if viewer.user else "/login")


def login_page(
    request: Request,
    db: Session = Depends(get_db),
    viewer: Viewer = Depends(get_viewer),
):
    if viewer.user:
        return _redirect("/events")
    return _page(
        request,
        viewer,
        db,
        "login.html",
        {
            "verified": request.query_params.get("verified") == "1",
            "reset": request.query_params.get("reset") == "1",
        },
    )


def login(
    request: Request,
    username: str = Form(""),
    password: str = Form(""),
    db: Session = Depends(get_db),
    viewer: Viewer = Depends(get_viewer),
):
    username = username.strip()
    if not username or not password:
        error = "Username and password are required."
    else:
        user = user_service.authenticate(db, username, password)
        if user is not None:
            response = _redirect("/events")
            request.app.state.sessions.create(response, user.id)
            logger.info("User %s logged in", user.id)
            return response
        error = INVALID_LOGIN
    return _page(request, viewer, db, "login.html", {"error": error, "username": username})


def logout(request: Request):
    response = _redirect("/login")
    request.app.state.sessions.destroy(response)
    return response


def logout_page():
    return _redirect("/events")


def signup_page(
    request: Request,
    db: Session = Depends(get_db),
    viewer: Viewer = Depends(get_viewer),
):
    if viewer.user is not None:
        return _redirect("/events" if viewer.user.email_verified else "/verify-email")
    return _page(request, viewer, db, "signup.html", {"form": {}})


def signup(
    request: Request,
    username: str = Form(""),
    email: str = Form(""),
    password: str = Form(""),
    confirm_password: str = Form(""),
    first_name: str = Form(""),
    last_name: str = Form(""),
    profile_emoji: str = Form(""),
    db: Session = Depends(get_db),
    viewer: Viewer = Depends(get_viewer),
):
    form = {
        "username": username,
        "email": email,
        "first_name": first_name,
        "last_name": last_name,
        "profile_emoji": profile_emoji,
    }
    mailer: Mailer = request.app.state.mailer
    try:
        if not first_name.strip():
            raise ValidationError("Please enter your first name.")
        if not last_name.strip():
            raise ValidationError("Please enter your last name.")
        mailer.ensure_configured()
        user = user_service.register(
            db,
            username=username,
            email=email,
            password=password,
            confirm_password=confirm_password,
            first_name=first_name,
            last_name=last_name,
            profile_emoji=profile_emoji,
        )
    except KickaboutError as exc:
        return _page(request, viewer, db, "signup.html", {"form": form, "error": exc.message})

    link = user_service.verification_link(_settings(request).origin, user.verification_token)
    try:
        mailer.send_verification_email(user.email, link)
    except ExternalServiceError as exc:
        response = _page(
            request,
            Viewer(user=user, capability=Capability.AUTHENTICATED),
            db,
            "verify_email.html",
            {"sent": False, "error": exc.message, "dev_mode": not mailer.delivers},
        )
    else:
        response = _redirect("/verify-email?sent=1")
    request.app.state.sessions.create(response, user.id)
    return response


def verify_email_page(
    request: Request,
    token: str | None = None,
    sent: str | None = None,
    db: Session = Depends(get_db),
    viewer: Viewer = Depends(get_viewer),
):
    if token:
        if user_service.verify_email(db, token):
            return _redirect("/login?verified=1")
        return _page(
            request,
            viewer,
            db,
            "verify_email.html",
            {
                "error": "This verification link is invalid or has expired.",
                "dev_mode": not request.app.state.mailer.delivers,
            },
        )
    if viewer.user is not None and viewer.user.email_verified:
        return _redirect("/events")
    return _page(
        request,
        viewer,
        db,
        "verify_email.html",
        {"sent": bool(sent), "dev_mode": not request.app.state.mailer.delivers},
    )


def verify_email_action(
    request: Request,
    intent: str = Form("resend"),
    db: Session = Depends(get_db),
    viewer: Viewer = Depends(get_viewer),
):
    if viewer.user is None:
        return _redirect("/login")
    if viewer.user.email_verified:
        return _redirect("/events")
    mailer: Mailer = request.app.state.mailer

    if intent == "confirm":
        if mailer.delivers:
            return _redirect("/verify-email")
        user_service.mark_verified(db, viewer.user)
        return _redirect("/events")

    wait = _resend_wait_seconds(viewer.user, _settings(request), utcnow())
    if wait:
        error = f"Please wait {wait} seconds before requesting another email."
    else:
        try:
            _send_verification(request, db, viewer.user)
        except ExternalServiceError as exc:
            error = exc.message
        else:
            return _redirect("/verify-email?sent=1")
    return _page(
        request,
        viewer,
        db,
        "verify_email.html",
        {"error": error, "dev_mode": not mailer.delivers},
    )


def forgot_password_page(
    request: Request,
    db: Session = Depends(get_db),
    viewer: Viewer = Depends(get_viewer),
):
    return _page(request, viewer, db, "forgot_password.html")


def forgot_password(
    request: Request,
    email: str = Form(""),
    db: Session = Depends(get_db),
    viewer: Viewer = Depends(get_viewer),
):
    try:
        user_service.request_password_reset(
            db,
            email,
            mailer=request.app.state.mailer,
            origin=_settings(request).origin,
        )
    except KickaboutError as exc:
        return _page(
            request, viewer, db, "forgot_password.html", {"error": exc.message, "email": email}
        )
    return _page(request, viewer, db, "forgot_password.html", {"success": True})


def reset_password_page(
    request: Request,
    token: str | None = None,
    db: Session = Depends(get_db),
    viewer: Viewer = Depends(get_viewer),
):
    context = {"token": token or ""}
    if not token:
        context["error"] = user_service.INVALID_RESET_LINK
    return _page(request, viewer, db, "reset_password.html", context)


def reset_password(
    request: Request,
    token: str = Form(""),
    password: str = Form(""),
    confirm_password: str = Form(""),
    db: Session = Depends(get_db),
    viewer: Viewer = Depends(get_viewer),
):
    try:
        if password != confirm_password:
            raise ValidationError("Passwords do not match.")
        user_service.reset_password(db, token, password)
    except KickaboutError as exc:
        return _page(
            request, viewer, db, "reset_password.html", {"token": token, "error": exc.message}
        )
    return _redirect("/login?reset=1")


# -- events ------------------------------------------------------------------


def _group_by_month(events) -> list[dict]:
    months = []
    for _, items in groupby(
        events, key=lambda e: (e.event_date.year, e.event_date.month)
    ):
        items = list(items)
        months.append({"label": items[0].event_date.strftime("%B %Y"), "events": items})
    return months


def _events_page(
    request: Request,
    viewer: Viewer,
    db: Session,
    *,
    result: BulkResult | None = None,
    intent: str | None = None,
):
    settings = _settings(request)
    now = _now(request)
    event_service.ensure_upcoming(
        db,
        count=settings.upcoming_event_count,
        weekday=settings.event_weekday,
        now=now,
    )
    upcoming = event_service.list_upcoming(
        db, now=now, weekday=settings.event_weekday, duration=settings.event_duration
    )
    return _page(
        request,
        viewer,
        db,
        "events.html",
        {
            "months": _group_by_month(upcoming),
            "signed_up_ids": event_service.signed_up_event_ids(db, viewer.user),
            "previews": {event.id: event_service.signup_preview(event) for event in upcoming},
            "started_ids": {
                event.id
                for event in upcoming
                if event_service.is_event_started(event, now, duration=settings.event_duration)
            },
            "result": result,
            "intent": intent,
        },
    )


def events_list(
    request: Request,
    db: Session = Depends(get_db),
    viewer: Viewer = Depends(get_viewer),
):
    denial = viewer.require(Capability.VERIFIED)
    if denial:
        return _deny(request, denial)
    return _events_page(request, viewer, db)


def events_bulk(
    request: Request,
    intent: str = Form(""),
    event_id: list[str] = Form([]),
    signup_event_ids: str = Form(""),
    unsignup_event_ids: str = Form(""),
    db: Session = Depends(get_db),
    viewer: Viewer = Depends(get_viewer),
):
    denial = viewer.require(Capability.VERIFIED)
    if denial:
        return _deny(request, denial)
    now = _now(request)
    duration = _settings(request).event_duration
    result = None
    if intent == "bulk_signup":
        result = event_service.bulk_sign_up(
            db, parse_id_list(event_id), viewer.user, now=now, duration=duration
        )
    elif intent == "bulk_unsignup":
        result = event_service.bulk_cancel(
            db, parse_id_list(event_id), viewer.user, now=now, duration=duration
        )
    elif intent == "bulk_save":
        result = event_service.bulk_apply(
            db,
            parse_id_list(signup_event_ids),
            parse_id_list(unsignup_event_ids),
            viewer.user,
            now=now,
            duration=duration,
        )
    return _events_page(request, viewer, db, result=result, intent=intent)


def _load_event(db: Session, raw_id: str):
    event_id = _parse_int(raw_id)
    event = event_service.get_event(db, event_id) if event_id is not None else None
    if event is None:
        raise HTTPException(status_code=404, detail="Event not found")
    return event


def _event_page(
    request: Request,
    viewer: Viewer,
    db: Session,
    event,
    context: dict | None = None,
):
    settings = _settings(request)
    state = event_service.event_state(event, _now(request), duration=settings.event_duration)
    own_signup = next((s for s in event.signups if s.user_id == viewer.user_id), None)
    payload = {
        "event": event,
        "signups": list(event.signups),
        "own_signup": own_signup,
        "state": state.value,
        "is_open": state is EventState.SCHEDULED,
        "attendee_count": event_service.attendee_count(event),
        "editing": False,
    }
    payload.update(context or {})
    return _page(request, viewer, db, "event.html", payload)


def event_detail(
    event_id: str,
    request: Request,
    db: Session = Depends(get_db),
    viewer: Viewer = Depends(get_viewer),
):
    denial = viewer.require(Capability.VERIFIED)
    if denial:
        return _deny(request, denial)
    event = _load_event(db, event_id)
    return _event_page(
        request, viewer, db, event, {"editing": request.query_params.get("edit") == "1"}
    )


def event_action(
    event_id: str,
    request: Request,
    intent: str = Form("signup"),
    guest_count: str = Form("0"),
    event_date: str = Form(""),
    title: str | None = Form(None),
    description: str | None = Form(None),
    location: str | None = Form(None),
    time: str | None = Form(None),
    db: Session = Depends(get_db),
    viewer: Viewer = Depends(get_viewer),
):
    required = Capability.ADMIN if intent == "edit" else Capability.VERIFIED
    denial = viewer.require(required)
    if denial:
        return _deny(request, denial)
    event = _load_event(db, event_id)
    settings = _settings(request)
    now = _now(request)
    duration = settings.event_duration
    message = None
    try:
        if intent == "edit":
            submitted = {
                "title": title,
                "description": description,
                "location": location,
                "time": time,
            }
            event_service.update_event_details(
                db,
                event.id,
                event_date=event_date,
                weekday=settings.event_weekday,
                **{field: value for field, value in submitted.items() if value is not None},
            )
            message = "Saved."
        elif intent == "unsignup":
            event_service.cancel_signup(db, event.id, viewer.user, now=now, duration=duration)
            message = "You're no longer signed up for this session."
        elif intent == "update_guests":
            event_service.update_guest_count(
                db, event.id, viewer.user, guest_count, now=now, duration=duration
            )
            message = "Guest count updated."
        else:
            event_service.sign_up(
                db, event.id, viewer.user, guest_count, now=now, duration=duration
            )
            message = "You're signed up. See you there!"
    except ValidationError as exc:
        db.expire(event)
        return _event_page(
            request, viewer, db, event, {"error": exc.message, "editing": intent == "edit"}
        )
    db.expire(event)
    return _event_page(request, viewer, db, event, {"message": message})


# -- admin -------------------------------------------------------------------


def _filter_flag(raw: str | None) -> bool | None:
    if raw == "yes":
        return True
    if raw == "no":
        return False
    return None


def _admin_users_page(
    request: Request,
    viewer: Viewer,
    db: Session,
    context: dict | None = None,
):
    params = request.query_params
    payload = {
        "users": user_service.list_users(
            db,
            search=params.get("q"),
            verified=_filter_flag(params.get("verified")),
            admin=_filter_flag(params.get("admin")),
        ),
        "filters": {
            "q": params.get("q", ""),
            "verified": params.get("verified", "all"),
            "admin": params.get("admin", "all"),
        },
    }
    payload.update(context or {})
    return _page(request, viewer, db, "admin_users.html", payload)


def admin_users(
    request: Request,
    db: Session = Depends(get_db),
    viewer: Viewer = Depends(get_viewer),
):
    denial = viewer.require(Capability.ADMIN)
    if denial:
        return _deny(request, denial)
    return _admin_users_page(request, viewer, db)


def admin_users_action(
    request: Request,
    intent: str = Form(""),
    user_id: list[str] = Form([]),
    is_admin: str = Form(""),
    db: Session = Depends(get_db),
    viewer: Viewer = Depends(get_viewer),
):
    denial = viewer.require(Capability.ADMIN)
    if denial:
        return _deny(request, denial)
    user_ids = parse_id_list(user_id)
    mailer: Mailer = request.app.state.mailer
    context: dict = {}

    if intent == "resend-verification" and user_ids:
        origin = _settings(request).origin
        sent = 0
        last_link = None
        try:
            mailer.ensure_configured()
            for target_id in user_ids:
                target = user_service.get_user(db, target_id)
                if target is None:
                    continue
                token = user_service.resend_verification(db, target)
                last_link = user_service.verification_link(origin, token)
                mailer.send_verification_email(target.email, last_link)
                sent += 1
        except ExternalServiceError as exc:
            context["error"] = exc.message
        context["resent"] = sent
        if not mailer.delivers:
            context["verification_link"] = last_link
    elif intent == "set-admin" and is_admin in {"0", "1"}:
        changed = user_service.set_admin(
            db, user_ids, make_admin=is_admin == "1", acting_user=viewer.user
        )
        context["admin_changed"] = changed
    return _admin_users_page(request, viewer, db, context)


# -- notices -----------------------------------------------------------------


def notices_list(
    request: Request,
    db: Session = Depends(get_db),
    viewer: Viewer = Depends(get_viewer),
):
    denial = viewer.require(Capability.VERIFIED)
    if denial:
        return _deny(request, denial)
    if viewer.is_admin:
        items = notice_service.list_all(db)
    else:
        items = notice_service.list_for_user(db, viewer.user)
    return _page(
        request,
        viewer,
        db,
        "notices.html",
        {"notices": items, "created": request.query_params.get("created") == "1"},
    )


def _notice_form(request: Request, viewer: Viewer, db: Session, context: dict | None = None):
    settings = _settings(request)
    event_service.ensure_upcoming(
        db,
        count=settings.upcoming_event_count,
        weekday=settings.event_weekday,
        now=_now(request),
    )
    payload = {"events": event_service.list_all_events(db)}
    payload.update(context or {})
    return _page(request, viewer, db, "notice_create.html", payload)


def notice_create_page(
    request: Request,
    db: Session = Depends(get_db),
    viewer: Viewer = Depends(get_viewer),
):
    denial = viewer.require(Capability.ADMIN)
    if denial:
        return _deny(request, denial)
    return _notice_form(request, viewer, db)


def notice_create(
    request: Request,
    event_id: str = Form(""),
    message: str = Form(""),
    db: Session = Depends(get_db),
    viewer: Viewer = Depends(get_viewer),
):
    denial = viewer.require(Capability.ADMIN)
    if denial:
        return _deny(request, denial)
    parsed_id = _parse_int(event_id)
    try:
        if parsed_id is None or not message.strip():
            raise ValidationError("Please select an event and enter a message.")
        notice_service.create_notice(db, event_id=parsed_id, message=message, author=viewer.user)
    except (ValidationError, NotFound) as exc:
        return _notice_form(
            request,
            viewer,
            db,
            {"error": exc.message, "message": message, "selected_event_id": parsed_id},
        )
    return _redirect("/notices?created=1")


def notice_dismiss(
    request: Request,
    notice_id: str = Form(""),
    next_url: str = Form("/events", alias="next"),
    db: Session = Depends(get_db),
    viewer: Viewer = Depends(get_viewer),
):
    denial = viewer.require(Capability.VERIFIED)
    if denial:
        return _deny(request, denial)
    parsed_id = _parse_int(notice_id)
    if not parsed_id:
        raise HTTPException(status_code=400, detail="Bad Request")
    notice_service.dismiss(db, viewer.user, parsed_id)
    if _wants_json(request):
        return JSONResponse(DismissResponse(dismissed=True).model_dump())
    if not next_url.startswith("/") or next_url.startswith("//"):
        next_url = "/events"
    return _redirect(next_url)


def notice_detail(
    notice_id: str,
    request: Request,
    db: Session = Depends(get_db),
    viewer: Viewer = Depends(get_viewer),
):
    denial = viewer.require(Capability.VERIFIED)
    if denial:
        return _deny(request, denial)
    parsed_id = _parse_int(notice_id)
    if parsed_id is None:
        raise HTTPException(status_code=404, detail="Notice not found")
    notice = notice_service.get_notice(db, parsed_id)
    return _page(request, viewer, db, "notice.html", {"notice": notice})


# -- settings ----------------------------------------------------------------


def settings_page(
    request: Request,
    db: Session = Depends(get_db),
    viewer: Viewer = Depends(get_viewer),
):
    denial = viewer.require(Capability.VERIFIED)
    if denial:
        return _deny(request, denial)
    return _page(
        request, viewer, db, "settings.html", {"updated": request.query_params.get("updated")}
    )


def settings_action(
    request: Request,
    intent: str = Form(""),
    first_name: str = Form(""),
    last_name: str = Form(""),
    profile_emoji: str = Form(""),
    username: str = Form(""),
    email: str = Form(""),
    current_password: str = Form(""),
    new_password: str = Form(""),
    confirm_password: str = Form(""),
    db: Session = Depends(get_db),
    viewer: Viewer = Depends(get_viewer),
):
    denial = viewer.require(Capability.VERIFIED)
    if denial:
        return _deny(request, denial)
    user = viewer.user
    try:
        if intent == "profile":
            if not first_name.strip():
                raise ValidationError("First name is required.")
            if not last_name.strip():
                raise ValidationError("Last name is required.")
            user_service.update_profile(
                db,
                user,
                first_name=first_name,
                last_name=last_name,
                profile_emoji=profile_emoji or None,
                username=username or None,
            )
            return _redirect("/settings?updated=profile")

        if intent == "email":
            email_changing = user_service.normalize_email(email) != user.email
            if email_changing and not current_password.strip():
                raise ValidationError("Current password is required to change email.")
            if email_changing:
                try:
                    request.app.state.mailer.ensure_configured()
                except ExternalServiceError as exc:
                    raise ValidationError(exc.message) from exc
            user_service.update_profile(
                db, user, email=email, current_password=current_password
            )
            if not email_changing:
                return _redirect("/settings")
            try:
                _send_verification(request, db, user)
            except ExternalServiceError as exc:
                logger.error("Verification mail for user %s not sent: %s", user.id, exc.message)
                return _page(
                    request,
                    Viewer(user=user, capability=Capability.AUTHENTICATED),
                    db,
                    "verify_email.html",
                    {"error": exc.message, "dev_mode": not request.app.state.mailer.delivers},
                )
            return _redirect("/verify-email?sent=1")

        if intent == "password":
            if not (current_password.strip() or new_password.strip() or confirm_password.strip()):
                raise ValidationError("Fill in the fields below to change your password.")
            if new_password and new_password != confirm_password:
                raise ValidationError("New password and confirmation do not match.")
            if new_password and not current_password.strip():
                raise ValidationError("Current password is required to change password.")
            if not new_password:
                return _redirect("/settings")
            user_service.update_profile(
                db, user, current_password=current_password, new_password=new_password
            )
            return _redirect("/settings?updated=password")
    except ValidationError as exc:
        db.refresh(user)
        return _page(
            request, viewer, db, "settings.html", {"error": exc.message, "error_intent": intent}
        )
    return _redirect("/settings")


def _register_routes(app: FastAPI) -> None:
    app.get("/")(homepage)
    app.get("/login")(login_page)
    app.post("/login")(login)
    app.post("/logout")(logout)
    app.get("/logout")(logout_page)
    app.get("/signup")(signup_page)
    app.post("/signup")(signup)
    app.get("/verify-email")(verify_email_page)
    app.post("/verify-email")(verify_email_action)
    app.get("/forgot-password")(forgot_password_page)
    app.post("/forgot-password")(forgot_password)
    app.get("/reset-password")(reset_password_page)
    app.post("/reset-password")(reset_password)
    app.get("/events")(events_list)
    app.post("/events")(events_bulk)
    app.get("/events/{event_id}")(event_detail)
    app.post("/events/{event_id}")(event_action)
    app.get("/admin/users")(admin_users)
    app.post("/admin/users")(admin_users_action)
    app.get("/notices")(notices_list)
    app.get("/notices/create")(notice_create_page)
    app.post("/notices/create")(notice_create)
    app.post("/notices/dismiss")(notice_dismiss)
    app.get("/notices/{notice_id}")(notice_detail)
    app.get("/settings")(settings_page)
    app.post("/settings")(settings_action)
    register_web_routes(app)


def create_app(
    settings: Settings,
    database: Database | None = None,
    *,
    clock: Clock | None = None,
    mailer: Mailer | None = None,
    sessions: SessionManager | None = None,
) -> FastAPI:
    """Build the application around explicitly constructed collaborators."""
    database = database or Database.from_settings(settings)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        init_db(database)
        yield

    app = FastAPI(title="Kickabout", lifespan=lifespan)
    app.state.settings = settings
    app.state.database = database
    app.state.sessions = sessions or SessionManager.from_settings(settings)
    app.state.mailer = mailer or Mailer(settings)
    app.state.clock = clock or (lambda: local_now(settings.timezone))
    _register_exception_handlers(app)
    _register_routes(app)
    return app


def create_default_app() -> FastAPI:
    """Application factory used by ``kickabout runserver``."""
    return create_app(load_settings())
