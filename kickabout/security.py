"""Password hashing and single-use token helpers."""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta

from pwdlib import PasswordHash
from pwdlib.exceptions import UnknownHashError

from .utils import utcnow

VERIFICATION_TOKEN_TTL = timedelta(hours=24)
RESET_TOKEN_TTL = timedelta(hours=1)
TOKEN_BYTES = 32

password_hash = PasswordHash.recommended()


@dataclass(frozen=True)
class IssuedToken:
    token: str
    expires_at: datetime


def hash_password(password: str) -> str:
    """Return a salted Argon2 hash of ``password``."""
    return password_hash.hash(password)


def verify_password(password: str, hashed_password: str | None) -> bool:
    """Check ``password`` against ``hashed_password``.

    Malformed or unknown hashes count as a mismatch.
    """
    if not password or not hashed_password:
        return False
    try:
        return password_hash.verify(password, hashed_password)
    except (UnknownHashError, ValueError):
        return False


def new_token(ttl: timedelta, *, now: datetime | None = None) -> IssuedToken:
    """Return a 256-bit hex token expiring ``ttl`` after ``now``."""
    issued_at = now or utcnow()
    return IssuedToken(token=secrets.token_hex(TOKEN_BYTES), expires_at=issued_at + ttl)


def is_token_live(expires_at: datetime | None, *, now: datetime | None = None) -> bool:
    return expires_at is not None and expires_at > (now or utcnow())
