"""Utility helpers for Kickabout."""

from __future__ import annotations

from datetime import UTC, date, datetime
from zoneinfo import ZoneInfo


def utcnow() -> datetime:
    """Return a naive UTC datetime."""

    return datetime.now(UTC).replace(tzinfo=None)


def local_now(timezone: str) -> datetime:
    """Return the naive wall-clock time in ``timezone``.

    Session start times are local wall-clock values, so all scheduling
    comparisons use this instead of UTC.
    """

    return datetime.now(ZoneInfo(timezone)).replace(tzinfo=None)


def format_event_date(value: date | None, *, long: bool = True) -> str:
    """Return ``Saturday 24 October 2026`` (or ``Sat 24 Oct 2026``)."""
    if not value:
        return ""
    if long:
        return f"{value.strftime('%A')} {value.day} {value.strftime('%B %Y')}"
    return f"{value.strftime('%a')} {value.day} {value.strftime('%b %Y')}"


def format_timestamp(value: datetime | None) -> str:
    if not value:
        return ""
    return f"{value.day} {value.strftime('%b %Y, %H:%M')}"


def humanize_time(value: datetime | None, *, now: datetime | None = None) -> str:
    """Return a friendly string such as 'in 2 weeks' or '3 hours ago'."""
    if not value:
        return ""
    now = now or utcnow()
    delta_seconds = (value - now).total_seconds()
    past = delta_seconds < 0
    seconds = abs(delta_seconds)

    units = [
        ("year", 365 * 24 * 3600),
        ("month", 30 * 24 * 3600),
        ("week", 7 * 24 * 3600),
        ("day", 24 * 3600),
        ("hour", 3600),
        ("minute", 60),
    ]

    amount = 0
    label = "minute"
    for name, step in units:
        value_count = int(seconds // step)
        if value_count >= 1:
            amount = value_count
            label = name
            break
    else:
        return "in moments" if not past else "moments ago"

    if amount != 1:
        label = f"{label}s"
    if past:
        return f"{amount} {label} ago"
    return f"in {amount} {label}"


def parse_id_list(raw_values) -> list[int]:
    """Parse form values (lists or comma separated strings) into ints.

    Blank and non-numeric entries are dropped; order is kept and duplicates
    removed.
    """
    if raw_values is None:
        return []
    if isinstance(raw_values, str):
        raw_values = [raw_values]
    seen: set[int] = set()
    ids: list[int] = []
    for raw in raw_values:
        for piece in str(raw).split(","):
            piece = piece.strip()
            if not piece:
                continue
            try:
                value = int(piece)
            except ValueError:
                continue
            if value not in seen:
                seen.add(value)
                ids.append(value)
    return ids
