"""Shared pytest fixtures for Kickabout."""

from __future__ import annotations

import sys
from datetime import datetime
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from kickabout import users
from kickabout.api import create_app
from kickabout.config import DEFAULTS, Settings
from kickabout.database import Database
from kickabout.mail import Mailer

# Wednesday; the next Saturday is 24 October 2026.
DEFAULT_NOW = datetime(2026, 10, 21, 9, 0)
PASSWORD = "correct-horse"


class FrozenClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def make_settings(tmp_path: Path, **overrides) -> Settings:
    values = {**DEFAULTS, "session_secret": "test-secret", **overrides}
    return Settings(
        base_dir=tmp_path,
        data_dir=tmp_path,
        database_path=tmp_path / "kickabout.db",
        config_path=tmp_path / "kickabout.toml",
        **values,
    )


@pytest.fixture()
def settings(tmp_path) -> Settings:
    return make_settings(tmp_path)


@pytest.fixture()
def database():
    """A fresh in-memory database per test."""

    db = Database("sqlite+pysqlite:///:memory:", poolclass=StaticPool)
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture()
def db(database):
    """A session for service-level tests; never shared with the test client."""

    session = database.SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture()
def clock() -> FrozenClock:
    return FrozenClock(DEFAULT_NOW)


@pytest.fixture()
def app(settings, database, clock):
    return create_app(settings, database, clock=clock, mailer=Mailer(settings))


@pytest.fixture()
def client(app):
    return TestClient(app)


def create_user(
    database: Database,
    *,
    username: str = "alice",
    email: str | None = None,
    password: str = PASSWORD,
    verified: bool = True,
    admin: bool = False,
) -> int:
    with database.session() as session:
        user = users.register(
            session,
            username=username,
            email=email or f"{username}@example.com",
            password=password,
            confirm_password=password,
            first_name=username.title(),
            last_name="Tester",
        )
        if verified:
            users.mark_verified(session, user)
        user.is_admin = admin
        return user.id


def login(client: TestClient, username: str = "alice", password: str = PASSWORD):
    response = client.post(
        "/login",
        data={"username": username, "password": password},
        follow_redirects=False,
    )
    assert response.status_code == 303, response.text
    return response


@pytest.fixture()
def alice(database) -> int:
    return create_user(database)


@pytest.fixture()
def admin(database) -> int:
    return create_user(database, username="root", admin=True)


@pytest.fixture()
def alice_client(client, alice):
    login(client)
    return client


@pytest.fixture()
def admin_client(client, admin):
    login(client, "root")
    return client
