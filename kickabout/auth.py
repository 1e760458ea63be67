"""Request-level capability resolution.

Each request resolves a :class:`Viewer` once; handlers then ask it for the
minimum capability they need and get back either ``None`` or a
:class:`Denial` describing how to respond.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum

from fastapi import Request
from sqlalchemy.orm import Session

from .models import User
from .sessions import SessionManager


class Capability(IntEnum):
    ANONYMOUS = 0
    AUTHENTICATED = 1
    VERIFIED = 2
    ADMIN = 3


class Denial(Enum):
    UNAUTHENTICATED = "unauthenticated"
    UNVERIFIED = "unverified"
    FORBIDDEN = "forbidden"


@dataclass(frozen=True)
class Viewer:
    user: User | None
    capability: Capability

    @property
    def user_id(self) -> int | None:
        return self.user.id if self.user else None

    @property
    def is_admin(self) -> bool:
        return self.capability >= Capability.ADMIN

    def require(self, minimum: Capability) -> Denial | None:
        if self.capability >= minimum:
            return None
        if self.user is None:
            return Denial.UNAUTHENTICATED
        if minimum >= Capability.VERIFIED and not self.user.email_verified:
            return Denial.UNVERIFIED
        return Denial.FORBIDDEN


ANONYMOUS = Viewer(user=None, capability=Capability.ANONYMOUS)


def capability_for(user: User | None) -> Capability:
    if user is None:
        return Capability.ANONYMOUS
    if not user.email_verified:
        return Capability.AUTHENTICATED
    if user.is_admin:
        return Capability.ADMIN
    return Capability.VERIFIED


def resolve_viewer(db: Session, user_id: int | None) -> Viewer:
    """Load the user behind ``user_id`` fresh from the database."""
    if user_id is None:
        return ANONYMOUS
    user = db.get(User, user_id)
    return Viewer(user=user, capability=capability_for(user))


def current_user_id(request: Request, sessions: SessionManager) -> int | None:
    return sessions.read(request)


def current_user(db: Session, request: Request, sessions: SessionManager) -> User | None:
    user_id = current_user_id(request, sessions)
    if user_id is None:
        return None
    return db.get(User, user_id)


def require_verified_user(viewer: Viewer) -> User | Denial:
    denial = viewer.require(Capability.VERIFIED)
    return denial or viewer.user


def require_admin(viewer: Viewer) -> User | Denial:
    denial = viewer.require(Capability.ADMIN)
    return denial or viewer.user
