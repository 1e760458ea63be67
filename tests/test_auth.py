from __future__ import annotations

from starlette.requests import Request

from kickabout.auth import (
    ANONYMOUS,
    Capability,
    Denial,
    capability_for,
    current_user,
    require_admin,
    require_verified_user,
    resolve_viewer,
)
from kickabout.models import User
from kickabout.sessions import SESSION_COOKIE, SessionManager


def _user(**overrides) -> User:
    values = {"username": "alice", "email": "alice@example.com", "password_hash": "x"}
    values.update(overrides)
    return User(**values)


def test_capability_escalates_with_account_state():
    assert capability_for(None) is Capability.ANONYMOUS
    assert capability_for(_user(email_verified=False, is_admin=False)) is Capability.AUTHENTICATED
    assert capability_for(_user(email_verified=True, is_admin=False)) is Capability.VERIFIED
    assert capability_for(_user(email_verified=True, is_admin=True)) is Capability.ADMIN


def test_unverified_admin_is_only_authenticated():
    assert capability_for(_user(email_verified=False, is_admin=True)) is Capability.AUTHENTICATED


def test_anonymous_viewer_is_unauthenticated():
    assert ANONYMOUS.require(Capability.ANONYMOUS) is None
    assert ANONYMOUS.require(Capability.VERIFIED) is Denial.UNAUTHENTICATED
    assert require_verified_user(ANONYMOUS) is Denial.UNAUTHENTICATED
    assert require_admin(ANONYMOUS) is Denial.UNAUTHENTICATED


def test_resolve_viewer_reads_role_fresh(db):
    user = _user(email_verified=False, is_admin=False)
    db.add(user)
    db.flush()

    viewer = resolve_viewer(db, user.id)
    assert viewer.capability is Capability.AUTHENTICATED
    assert require_verified_user(viewer) is Denial.UNVERIFIED
    assert require_admin(viewer) is Denial.UNVERIFIED

    user.email_verified = True
    db.flush()
    viewer = resolve_viewer(db, user.id)
    assert require_verified_user(viewer) is user
    assert require_admin(viewer) is Denial.FORBIDDEN

    user.is_admin = True
    db.flush()
    viewer = resolve_viewer(db, user.id)
    assert viewer.is_admin
    assert require_admin(viewer) is user


def test_resolve_viewer_for_missing_user(db):
    assert resolve_viewer(db, None) is ANONYMOUS
    viewer = resolve_viewer(db, 999)
    assert viewer.user is None
    assert viewer.require(Capability.VERIFIED) is Denial.UNAUTHENTICATED


def _request(cookie: str | None) -> Request:
    headers = []
    if cookie is not None:
        headers.append((b"cookie", f"{SESSION_COOKIE}={cookie}".encode()))
    return Request({"type": "http", "headers": headers})


def test_current_user_follows_the_session_cookie(db):
    sessions = SessionManager("test-secret")
    user = _user(email_verified=True, is_admin=False)
    db.add(user)
    db.flush()
    token = sessions.encode(user.id)

    assert current_user(db, _request(token), sessions) is user
    assert current_user(db, _request(None), sessions) is None
    assert current_user(db, _request(token + "a"), sessions) is None
    assert current_user(db, _request(SessionManager("other").encode(user.id)), sessions) is None

    db.delete(user)
    db.flush()
    assert current_user(db, _request(token), sessions) is None
