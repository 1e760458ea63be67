"""Weekly sessions and the sign-ups attached to them.

Session state is derived, never stored: an event is *scheduled* until its
start time, *started* for the following ``duration`` (two hours by default)
and *ended* afterwards. Sign-ups, guest-count edits and cancellations are
only accepted while an event is scheduled.
"""

from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterable, Sequence

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from .errors import (
    AlreadySignedUp,
    Conflict,
    EventEnded,
    EventNotFound,
    EventStarted,
    ValidationError,
)
from .models import MAX_GUESTS, Event, Signup, User
from .utils import format_event_date

logger = logging.getLogger("uvicorn.error")

DEFAULT_EVENT_HOUR = 10
DEFAULT_EVENT_MINUTE = 30
DEFAULT_EVENT_DURATION = timedelta(hours=2)
DEFAULT_UPCOMING_COUNT = 12
SATURDAY = 5
WINDOW_CUTOFF_HOUR = 12

_time_pattern = re.compile(r"^(\d{1,2}):?(\d{2})\s*(am|pm)?$", re.IGNORECASE)

_UNSET = object()


class EventState(str, enum.Enum):
    SCHEDULED = "scheduled"
    STARTED = "started"
    ENDED = "ended"


@dataclass
class BulkResult:
    signed_up: int = 0
    removed: int = 0
    skipped: int = 0


def parse_event_time(raw: str | None) -> tuple[int, int]:
    """Parse ``10:30``, ``9:05pm`` or ``1030am`` into a 24h (hour, minute).

    Missing or unparseable values fall back to 10:30.
    """
    if not raw or not isinstance(raw, str):
        return DEFAULT_EVENT_HOUR, DEFAULT_EVENT_MINUTE
    match = _time_pattern.match(raw.strip())
    if not match:
        return DEFAULT_EVENT_HOUR, DEFAULT_EVENT_MINUTE
    hour = int(match.group(1))
    minute = min(59, max(0, int(match.group(2))))
    meridiem = (match.group(3) or "").lower()
    if meridiem == "pm" and hour < 12:
        hour += 12
    if meridiem == "am" and hour == 12:
        hour = 0
    return min(23, max(0, hour)), minute


def format_event_time(hour: int | None, minute: int | None) -> str:
    """Return ``10:30am`` style text for a stored start time."""
    if hour is None or minute is None:
        hour, minute = DEFAULT_EVENT_HOUR, DEFAULT_EVENT_MINUTE
    suffix = "am" if hour < 12 else "pm"
    display_hour = hour % 12 or 12
    return f"{display_hour}:{minute:02d}{suffix}"


def event_start(event: Event) -> datetime:
    hour = event.start_hour if event.start_hour is not None else DEFAULT_EVENT_HOUR
    minute = event.start_minute if event.start_minute is not None else DEFAULT_EVENT_MINUTE
    return datetime.combine(event.event_date, time(hour, minute))


def event_state(
    event: Event, now: datetime, *, duration: timedelta = DEFAULT_EVENT_DURATION
) -> EventState:
    start = event_start(event)
    if now < start:
        return EventState.SCHEDULED
    if now < start + duration:
        return EventState.STARTED
    return EventState.ENDED


def is_event_started(
    event: Event, now: datetime, *, duration: timedelta = DEFAULT_EVENT_DURATION
) -> bool:
    return event_state(event, now, duration=duration) is not EventState.SCHEDULED


def is_event_ended(
    event: Event, now: datetime, *, duration: timedelta = DEFAULT_EVENT_DURATION
) -> bool:
    return event_state(event, now, duration=duration) is EventState.ENDED


def _ensure_open(event: Event, now: datetime, duration: timedelta) -> None:
    state = event_state(event, now, duration=duration)
    if state is EventState.ENDED:
        raise EventEnded
    if state is EventState.STARTED:
        raise EventStarted


def clamp_guest_count(raw: object) -> int:
    try:
        value = int(raw or 0)
    except (TypeError, ValueError):
        value = 0
    return max(0, min(value, MAX_GUESTS))


def upcoming_dates(count: int, weekday: int, now: datetime) -> list[date]:
    """Return the next ``count`` dates falling on ``weekday``.

    Today counts as the first occurrence until noon; after that the window
    starts a week later.
    """
    today = now.date()
    days_ahead = (weekday - today.weekday()) % 7
    if days_ahead == 0 and now.hour >= WINDOW_CUTOFF_HOUR:
        days_ahead = 7
    first = today + timedelta(days=days_ahead)
    return [first + timedelta(weeks=offset) for offset in range(count)]


def ensure_upcoming(
    db: Session,
    *,
    count: int = DEFAULT_UPCOMING_COUNT,
    weekday: int = SATURDAY,
    now: datetime,
) -> list[Event]:
    """Reconcile stored events with the rolling weekly window.

    Events on any other weekday are removed (their sign-ups and notices go
    with them) and missing upcoming dates are inserted. Safe to call on
    every listing request.
    """
    purged = 0
    for event in db.scalars(select(Event)).all():
        if event.event_date.weekday() != weekday:
            db.delete(event)
            purged += 1
    if purged:
        db.flush()
        logger.info("Purged %s events not on weekday %s", purged, weekday)

    wanted = upcoming_dates(count, weekday, now)
    existing = set(db.scalars(select(Event.event_date).where(Event.event_date.in_(wanted))))
    created: list[Event] = []
    for event_date in wanted:
        if event_date in existing:
            continue
        try:
            with db.begin_nested():
                event = Event(event_date=event_date)
                db.add(event)
                db.flush()
        except IntegrityError:
            # Created concurrently by another request.
            continue
        created.append(event)
    if created:
        logger.info("Created %s upcoming events", len(created))
    return created


def get_event(db: Session, event_id: int) -> Event | None:
    return db.get(Event, event_id)


def _require_event(db: Session, event_id: int) -> Event:
    event = db.get(Event, event_id)
    if event is None:
        raise EventNotFound
    return event


def list_upcoming(
    db: Session,
    *,
    now: datetime,
    weekday: int = SATURDAY,
    duration: timedelta = DEFAULT_EVENT_DURATION,
) -> list[Event]:
    """Events on ``weekday`` that have not ended, soonest first."""
    stmt = (
        select(Event)
        .where(Event.event_date >= now.date() - timedelta(days=1))
        .options(selectinload(Event.signups).selectinload(Signup.user))
        .order_by(Event.event_date.asc())
    )
    return [
        event
        for event in db.scalars(stmt).all()
        if event.event_date.weekday() == weekday
        and not is_event_ended(event, now, duration=duration)
    ]


def list_all_events(db: Session) -> Sequence[Event]:
    return db.scalars(select(Event).order_by(Event.event_date.asc())).all()


def attendee_count(event: Event) -> int:
    return event.attendee_count


def signup_preview(event: Event, *, limit: int = 3, default_emoji: str = "🦁") -> dict:
    """First few sign-up emojis in sign-up order, for the listing cards."""
    emojis = [
        (signup.user.profile_emoji if signup.user else None) or default_emoji
        for signup in event.signups[:limit]
    ]
    return {"emojis": emojis, "user_count": len(event.signups)}


def get_signup(db: Session, event_id: int, user_id: int) -> Signup | None:
    stmt = select(Signup).where(Signup.event_id == event_id, Signup.user_id == user_id)
    return db.scalars(stmt).first()


def signed_up_event_ids(db: Session, user: User) -> set[int]:
    return set(db.scalars(select(Signup.event_id).where(Signup.user_id == user.id)))


def sign_up(
    db: Session,
    event_id: int,
    user: User,
    guest_count: object = 0,
    *,
    now: datetime,
    duration: timedelta = DEFAULT_EVENT_DURATION,
) -> Signup:
    """Sign ``user`` up for a scheduled event.

    The insert is attempted directly; the (event, user) unique constraint is
    what rejects duplicates, including concurrent ones.
    """
    event = _require_event(db, event_id)
    _ensure_open(event, now, duration)
    signup = Signup(event_id=event.id, user_id=user.id, guest_count=clamp_guest_count(guest_count))
    try:
        with db.begin_nested():
            db.add(signup)
            db.flush()
    except IntegrityError as exc:
        raise AlreadySignedUp from exc
    logger.info("User %s signed up for event %s (+%s)", user.id, event.id, signup.guest_count)
    return signup


def update_guest_count(
    db: Session,
    event_id: int,
    user: User,
    guest_count: object,
    *,
    now: datetime,
    duration: timedelta = DEFAULT_EVENT_DURATION,
) -> bool:
    """Change the guest count on an existing sign-up.

    Returns ``False`` when the user has no sign-up for the event.
    """
    event = _require_event(db, event_id)
    _ensure_open(event, now, duration)
    result = db.execute(
        update(Signup)
        .where(Signup.event_id == event.id, Signup.user_id == user.id)
        .values(guest_count=clamp_guest_count(guest_count))
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount > 0


def cancel_signup(
    db: Session,
    event_id: int,
    user: User,
    *,
    now: datetime,
    duration: timedelta = DEFAULT_EVENT_DURATION,
) -> bool:
    """Remove the user's sign-up; returns whether a row was deleted."""
    event = _require_event(db, event_id)
    _ensure_open(event, now, duration)
    result = db.execute(
        delete(Signup)
        .where(Signup.event_id == event.id, Signup.user_id == user.id)
        .execution_options(synchronize_session="fetch")
    )
    removed = result.rowcount > 0
    if removed:
        logger.info("User %s cancelled sign-up for event %s", user.id, event.id)
    return removed


def bulk_sign_up(
    db: Session,
    event_ids: Iterable[int],
    user: User,
    *,
    now: datetime,
    duration: timedelta = DEFAULT_EVENT_DURATION,
) -> BulkResult:
    result = BulkResult()
    for event_id in event_ids:
        try:
            sign_up(db, event_id, user, 0, now=now, duration=duration)
        except (EventNotFound, ValidationError):
            result.skipped += 1
            continue
        result.signed_up += 1
    return result


def bulk_cancel(
    db: Session,
    event_ids: Iterable[int],
    user: User,
    *,
    now: datetime,
    duration: timedelta = DEFAULT_EVENT_DURATION,
) -> BulkResult:
    result = BulkResult()
    for event_id in event_ids:
        try:
            removed = cancel_signup(db, event_id, user, now=now, duration=duration)
        except (EventNotFound, ValidationError):
            result.skipped += 1
            continue
        if removed:
            result.removed += 1
    return result


def bulk_apply(
    db: Session,
    signup_ids: Iterable[int],
    cancel_ids: Iterable[int],
    user: User,
    *,
    now: datetime,
    duration: timedelta = DEFAULT_EVENT_DURATION,
) -> BulkResult:
    """Sign up for ``signup_ids`` and cancel ``cancel_ids`` in one pass.

    Events the user is already signed up for are left alone rather than
    counted as failures.
    """
    already = signed_up_event_ids(db, user)
    fresh = [event_id for event_id in signup_ids if event_id not in already]
    signed = bulk_sign_up(db, fresh, user, now=now, duration=duration)
    cancelled = bulk_cancel(db, cancel_ids, user, now=now, duration=duration)
    return BulkResult(
        signed_up=signed.signed_up,
        removed=cancelled.removed,
        skipped=signed.skipped + cancelled.skipped,
    )


def _blank_to_none(value: str | None) -> str | None:
    if value is None:
        return None
    return value.strip() or None


def update_event_details(
    db: Session,
    event_id: int,
    *,
    event_date: date | str | None = None,
    title=_UNSET,
    description=_UNSET,
    location=_UNSET,
    time=_UNSET,
    weekday: int = SATURDAY,
) -> Event:
    """Partially update an event; blank strings clear a field.

    ``time`` is free text normalised through :func:`parse_event_time`.
    """
    event = _require_event(db, event_id)
    changes: dict[str, object] = {}

    if event_date not in (None, ""):
        if isinstance(event_date, str):
            try:
                event_date = date.fromisoformat(event_date.strip())
            except ValueError as exc:
                raise ValidationError("Enter the date as YYYY-MM-DD.") from exc
        if event_date.weekday() != weekday:
            day_name = format_event_date(event_date).split(" ", 1)[0]
            raise ValidationError(f"Sessions can't be moved to a {day_name}.")
        if event_date != event.event_date:
            changes["event_date"] = event_date
    if title is not _UNSET:
        changes["title"] = _blank_to_none(title)
    if description is not _UNSET:
        changes["description"] = _blank_to_none(description)
    if location is not _UNSET:
        changes["location"] = _blank_to_none(location)
    if time is not _UNSET:
        if _blank_to_none(time) is None:
            changes["start_hour"], changes["start_minute"] = None, None
        else:
            changes["start_hour"], changes["start_minute"] = parse_event_time(time)

    if not changes:
        return event
    try:
        with db.begin_nested():
            for field, value in changes.items():
                setattr(event, field, value)
            db.flush()
    except IntegrityError as exc:
        raise Conflict("Another session already uses that date.") from exc
    logger.info("Updated event %s (%s)", event.id, ", ".join(sorted(changes)))
    return event
