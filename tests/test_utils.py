from __future__ import annotations

from datetime import date, datetime, timedelta

from kickabout.utils import (
    format_event_date,
    format_timestamp,
    humanize_time,
    parse_id_list,
)


def test_format_event_date():
    assert format_event_date(date(2026, 10, 24)) == "Saturday 24 October 2026"
    assert format_event_date(date(2026, 10, 3), long=False) == "Sat 3 Oct 2026"
    assert format_event_date(None) == ""


def test_format_timestamp():
    assert format_timestamp(datetime(2026, 10, 4, 9, 5)) == "4 Oct 2026, 09:05"
    assert format_timestamp(None) == ""


def test_humanize_time_handles_future_and_past():
    now = datetime(2026, 10, 19, 12, 0)
    assert humanize_time(now + timedelta(days=14), now=now) == "in 2 weeks"
    assert humanize_time(now - timedelta(hours=3), now=now) == "3 hours ago"
    assert humanize_time(now - timedelta(minutes=1), now=now) == "1 minute ago"
    assert humanize_time(now + timedelta(seconds=10), now=now) == "in moments"
    assert humanize_time(None) == ""


def test_parse_id_list_accepts_lists_and_commas():
    assert parse_id_list(["3", "1,2", " 3 ", "", "x"]) == [3, 1, 2]
    assert parse_id_list("4, 5,,6") == [4, 5, 6]
    assert parse_id_list(None) == []
