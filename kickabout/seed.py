"""Development helper that fills the next session with fake sign-ups."""

from __future__ import annotations

import random
from datetime import datetime

from faker import Faker
from sqlalchemy import func, select

from .database import Database
from .events import clamp_guest_count, ensure_upcoming
from .models import Event, Signup, User
from .security import hash_password
from .users import ANIMAL_EMOJIS

FAKE_PASSWORD = "fake-password-123"


def seed_fake_signups(
    database: Database,
    *,
    user_count: int = 100,
    now: datetime,
    weekday: int,
    upcoming_count: int = 12,
    max_guests: int = 2,
) -> dict[str, int]:
    """Create verified fake users and sign them all up for the next session.

    Existing fake accounts are reused, so running this twice does not
    duplicate anyone.
    """
    if user_count < 0:
        raise ValueError("user_count must be >= 0")

    fake = Faker("en_GB")
    stats = {"event_id": 0, "users": 0, "signups": 0}
    password_hash = hash_password(FAKE_PASSWORD)

    with database.session() as session:
        ensure_upcoming(session, count=upcoming_count, weekday=weekday, now=now)
        event = session.scalars(
            select(Event).where(Event.event_date > now.date()).order_by(Event.event_date.asc())
        ).first()
        stats["event_id"] = event.id

        for index in range(1, user_count + 1):
            username = f"fake_user_{index}"
            user = session.scalars(
                select(User).where(func.lower(User.username) == username)
            ).first()
            if user is None:
                user = User(
                    username=username,
                    email=f"fake{index}@example.com",
                    password_hash=password_hash,
                    email_verified=True,
                    first_name=fake.first_name(),
                    last_name=fake.last_name(),
                    profile_emoji=random.choice(ANIMAL_EMOJIS),
                )
                session.add(user)
                session.flush()
                stats["users"] += 1

            already = session.scalars(
                select(Signup.id).where(Signup.event_id == event.id, Signup.user_id == user.id)
            ).first()
            if already is None:
                session.add(
                    Signup(
                        event_id=event.id,
                        user_id=user.id,
                        guest_count=clamp_guest_count(random.randint(0, max_guests)),
                    )
                )
                stats["signups"] += 1
    return stats
