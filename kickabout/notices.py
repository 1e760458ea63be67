"""Admin notices broadcast to the people signed up for an event."""

from __future__ import annotations

import logging
from typing import Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from .errors import EventNotFound, NotFound, ValidationError
from .models import Event, Notice, NoticeDismissal, Signup, User
from .utils import utcnow

logger = logging.getLogger("uvicorn.error")

MAX_MESSAGE_LENGTH = 2000


class NoticeNotFound(NotFound):
    default_message = "Notice not found."


def create_notice(
    db: Session, *, event_id: int, message: str, author: User | None = None
) -> Notice:
    text = (message or "").strip()
    if not text:
        raise ValidationError("Please write a message.")
    if len(text) > MAX_MESSAGE_LENGTH:
        raise ValidationError(f"Notices are limited to {MAX_MESSAGE_LENGTH} characters.")
    event = db.get(Event, event_id)
    if event is None:
        raise EventNotFound
    notice = Notice(
        event_id=event.id,
        message=text,
        created_by=author.id if author else None,
        created_at=utcnow(),
    )
    db.add(notice)
    db.flush()
    logger.info(
        "Notice %s posted to event %s by user %s",
        notice.id,
        event.id,
        notice.created_by,
    )
    return notice


def list_for_user(db: Session, user: User) -> Sequence[Notice]:
    """Notices on the user's signed-up events that they have not dismissed."""
    signed_up = select(Signup.event_id).where(Signup.user_id == user.id)
    dismissed = select(NoticeDismissal.notice_id).where(NoticeDismissal.user_id == user.id)
    stmt = (
        select(Notice)
        .where(Notice.event_id.in_(signed_up), Notice.id.not_in(dismissed))
        .options(joinedload(Notice.event), joinedload(Notice.author))
        .order_by(Notice.created_at.desc(), Notice.id.desc())
    )
    return db.scalars(stmt).all()


def list_all(db: Session) -> Sequence[Notice]:
    stmt = (
        select(Notice)
        .options(joinedload(Notice.event), joinedload(Notice.author))
        .order_by(Notice.created_at.desc(), Notice.id.desc())
    )
    return db.scalars(stmt).all()


def get_notice(db: Session, notice_id: int) -> Notice:
    notice = db.get(Notice, notice_id)
    if notice is None:
        raise NoticeNotFound
    return notice


def is_dismissed(db: Session, user: User, notice_id: int) -> bool:
    return db.get(NoticeDismissal, (user.id, notice_id)) is not None


def dismiss(db: Session, user: User, notice_id: int) -> None:
    """Hide a notice for ``user``; dismissing twice is harmless."""
    get_notice(db, notice_id)
    if is_dismissed(db, user, notice_id):
        return
    try:
        with db.begin_nested():
            db.add(NoticeDismissal(user_id=user.id, notice_id=notice_id, dismissed_at=utcnow()))
            db.flush()
    except IntegrityError:
        # A concurrent request recorded the same dismissal.
        return
