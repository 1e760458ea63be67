"""SQLAlchemy models for Kickabout."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import declarative_base, relationship

from .utils import utcnow

Base = declarative_base()

MAX_GUESTS = 5


def _now() -> datetime:
    return utcnow()


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(64), nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    password_hash = Column(String(255), nullable=False)
    email_verified = Column(Boolean, default=False, nullable=False)
    verification_token = Column(String(64), nullable=True, index=True)
    verification_expires = Column(DateTime, nullable=True)
    reset_token = Column(String(64), nullable=True, index=True)
    reset_token_expires = Column(DateTime, nullable=True)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    profile_emoji = Column(String(8), nullable=True)
    is_admin = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=_now, nullable=False)

    signups = relationship(
        "Signup",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    dismissals = relationship(
        "NoticeDismissal",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def display_name(self) -> str:
        name = " ".join(part for part in (self.first_name, self.last_name) if part)
        return name.strip() or self.username


Index("uq_users_username_lower", func.lower(User.username), unique=True)


class Event(Base):
    __tablename__ = "events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_date = Column(Date, nullable=False, unique=True)
    start_hour = Column(Integer, nullable=True)
    start_minute = Column(Integer, nullable=True)
    title = Column(String(255), nullable=True)
    description = Column(Text, nullable=True)
    location = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=_now, nullable=False)

    signups = relationship(
        "Signup",
        back_populates="event",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Signup.created_at",
    )
    notices = relationship(
        "Notice",
        back_populates="event",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="desc(Notice.created_at)",
    )

    @property
    def attendee_count(self) -> int:
        """Return the total party size (signups + guests)."""
        return sum((s.guest_count or 0) + 1 for s in self.signups)


class Signup(Base):
    __tablename__ = "event_signups"
    __table_args__ = (
        UniqueConstraint("event_id", "user_id", name="uq_event_signups_event_user"),
        CheckConstraint(
            f"guest_count >= 0 AND guest_count <= {MAX_GUESTS}",
            name="ck_event_signups_guest_count",
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(
        Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    guest_count = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=_now, nullable=False)

    event = relationship("Event", back_populates="signups")
    user = relationship("User", back_populates="signups")


class Notice(Base):
    __tablename__ = "notices"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(
        Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True
    )
    message = Column(Text, nullable=False)
    created_at = Column(DateTime, default=_now, nullable=False)
    created_by = Column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    event = relationship("Event", back_populates="notices")
    author = relationship("User")
    dismissals = relationship(
        "NoticeDismissal",
        back_populates="notice",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class NoticeDismissal(Base):
    __tablename__ = "notice_dismissals"

    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    notice_id = Column(
        Integer, ForeignKey("notices.id", ondelete="CASCADE"), primary_key=True
    )
    dismissed_at = Column(DateTime, default=_now, nullable=False)

    user = relationship("User", back_populates="dismissals")
    notice = relationship("Notice", back_populates="dismissals")
