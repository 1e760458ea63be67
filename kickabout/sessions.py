"""Signed session cookies carrying only the user id."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt
from fastapi import Request, Response
from jwt.exceptions import InvalidTokenError

from .config import Settings

SESSION_COOKIE = "__session"
ALGORITHM = "HS256"


class SessionManager:
    def __init__(
        self,
        secret: str,
        *,
        max_age: timedelta = timedelta(days=30),
        secure: bool = False,
        cookie_name: str = SESSION_COOKIE,
    ) -> None:
        if not secret:
            raise ValueError("A session secret is required")
        self.secret = secret
        self.max_age = max_age
        self.secure = secure
        self.cookie_name = cookie_name

    @classmethod
    def from_settings(cls, settings: Settings) -> "SessionManager":
        return cls(
            settings.session_secret,
            max_age=settings.session_max_age,
            secure=settings.is_production,
        )

    def encode(self, user_id: int, *, now: datetime | None = None) -> str:
        issued_at = now or datetime.now(timezone.utc)
        payload = {
            "sub": str(user_id),
            "iat": issued_at,
            "exp": issued_at + self.max_age,
        }
        return jwt.encode(payload, self.secret, algorithm=ALGORITHM)

    def decode(self, token: str | None) -> int | None:
        if not token:
            return None
        try:
            payload = jwt.decode(token, self.secret, algorithms=[ALGORITHM])
            return int(payload["sub"])
        except (InvalidTokenError, KeyError, TypeError, ValueError):
            return None

    def create(self, response: Response, user_id: int) -> str:
        """Attach a fresh session cookie for ``user_id`` to ``response``."""
        token = self.encode(user_id)
        response.set_cookie(
            self.cookie_name,
            token,
            max_age=int(self.max_age.total_seconds()),
            path="/",
            httponly=True,
            samesite="lax",
            secure=self.secure,
        )
        return token

    def read(self, request: Request) -> int | None:
        return self.decode(request.cookies.get(self.cookie_name))

    def destroy(self, response: Response) -> None:
        response.delete_cookie(
            self.cookie_name,
            path="/",
            httponly=True,
            samesite="lax",
            secure=self.secure,
        )
