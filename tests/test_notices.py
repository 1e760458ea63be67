from __future__ import annotations

from datetime import date, timedelta

import pytest

from kickabout import notices
from kickabout.errors import EventNotFound, ValidationError
from kickabout.models import Event, Signup, User
from kickabout.notices import NoticeNotFound


def _user(db, username, *, admin=False) -> User:
    user = User(
        username=username,
        email=f"{username}@example.com",
        password_hash="x",
        email_verified=True,
        is_admin=admin,
    )
    db.add(user)
    db.flush()
    return user


@pytest.fixture()
def saturday(db) -> Event:
    event = Event(event_date=date(2026, 10, 24))
    db.add(event)
    db.flush()
    return event


def test_notice_reaches_only_signed_up_users(db, saturday):
    admin = _user(db, "root", admin=True)
    going = _user(db, "going")
    not_going = _user(db, "away")
    db.add(Signup(event_id=saturday.id, user_id=going.id))
    db.flush()

    notice = notices.create_notice(
        db, event_id=saturday.id, message="  Bring a bib  ", author=admin
    )

    assert notice.message == "Bring a bib"
    assert notice.created_by == admin.id
    assert [n.id for n in notices.list_for_user(db, going)] == [notice.id]
    assert notices.list_for_user(db, not_going) == []


def test_dismissed_notice_disappears_for_that_user_only(db, saturday):
    first = _user(db, "first")
    second = _user(db, "second")
    for user in (first, second):
        db.add(Signup(event_id=saturday.id, user_id=user.id))
    db.flush()
    notice = notices.create_notice(db, event_id=saturday.id, message="Pitch moved")

    notices.dismiss(db, first, notice.id)
    notices.dismiss(db, first, notice.id)

    assert notices.is_dismissed(db, first, notice.id)
    assert notices.list_for_user(db, first) == []
    assert [n.id for n in notices.list_for_user(db, second)] == [notice.id]


def test_notices_for_other_events_are_hidden(db, saturday):
    user = _user(db, "alice")
    next_week = Event(event_date=saturday.event_date + timedelta(weeks=1))
    db.add(next_week)
    db.add(Signup(event_id=saturday.id, user_id=user.id))
    db.flush()

    mine = notices.create_notice(db, event_id=saturday.id, message="See you Saturday")
    notices.create_notice(db, event_id=next_week.id, message="Next week")

    assert [n.id for n in notices.list_for_user(db, user)] == [mine.id]
    assert len(notices.list_all(db)) == 2


@pytest.mark.parametrize("message", ["", "   "])
def test_create_notice_requires_message(db, saturday, message):
    with pytest.raises(ValidationError):
        notices.create_notice(db, event_id=saturday.id, message=message)


def test_create_notice_rejects_long_message(db, saturday):
    with pytest.raises(ValidationError):
        notices.create_notice(
            db, event_id=saturday.id, message="x" * (notices.MAX_MESSAGE_LENGTH + 1)
        )


def test_create_notice_for_unknown_event(db):
    with pytest.raises(EventNotFound):
        notices.create_notice(db, event_id=404, message="Hello")


def test_dismiss_unknown_notice(db):
    user = _user(db, "alice")

    with pytest.raises(NoticeNotFound):
        notices.dismiss(db, user, 404)
    with pytest.raises(NoticeNotFound):
        notices.get_notice(db, 404)
