from __future__ import annotations

import pytest
from sqlalchemy import inspect, text
from sqlalchemy.exc import IntegrityError

from kickabout import storage
from kickabout.database import Database


@pytest.fixture()
def file_database(tmp_path):
    db_path = tmp_path / "kickabout.sqlite"
    database = Database(f"sqlite:///{db_path}")
    yield database, db_path
    database.dispose()


def _get_version(database: Database) -> str | None:
    with database.engine.connect() as conn:
        return conn.execute(text("select version_num from alembic_version")).scalar()


def test_upgrade_database_creates_fresh_schema(file_database):
    database, _ = file_database

    actions = storage.upgrade_database(database, make_backup=False)

    assert "Ran Alembic upgrade to head (fresh database)" in actions
    assert _get_version(database) == "0001_initial"
    inspector = inspect(database.engine)
    for table in ("users", "events", "event_signups", "notices", "notice_dismissals"):
        assert inspector.has_table(table)


def test_upgrade_database_stamps_existing_db(file_database):
    database, _ = file_database
    database.create_all()  # existing schema without Alembic tracking

    actions = storage.upgrade_database(database, make_backup=False)

    assert "Stamped existing database to Alembic head" in actions
    assert _get_version(database) == "0001_initial"


def test_upgrade_database_is_repeatable_and_backs_up(file_database):
    database, db_path = file_database
    storage.init_db(database)

    actions = storage.upgrade_database(database)

    backup = db_path.with_suffix(db_path.suffix + ".bak")
    assert backup.exists()
    assert f"Backup created at {backup}" in actions
    assert "Applied Alembic migrations to head" in actions
    assert _get_version(database) == "0001_initial"


def test_username_index_is_case_insensitive(file_database):
    database, _ = file_database
    storage.init_db(database)

    insert = text(
        "insert into users (username, email, password_hash, email_verified, is_admin, created_at) "
        "values (:username, :email, 'x', 0, 0, '2026-10-19 00:00:00')"
    )
    with database.engine.begin() as conn:
        conn.execute(insert, {"username": "Alice", "email": "a@example.com"})
    with pytest.raises(IntegrityError):
        with database.engine.begin() as conn:
            conn.execute(insert, {"username": "alice", "email": "b@example.com"})


def test_signup_cascades_with_event(file_database):
    database, _ = file_database
    storage.init_db(database)

    with database.engine.begin() as conn:
        conn.execute(
            text(
                "insert into users (id, username, email, password_hash, email_verified, is_admin, created_at) "
                "values (1, 'alice', 'a@example.com', 'x', 1, 0, '2026-10-19 00:00:00')"
            )
        )
        conn.execute(
            text("insert into events (id, event_date, created_at) values (1, '2026-10-24', '2026-10-19 00:00:00')")
        )
        conn.execute(
            text(
                "insert into event_signups (event_id, user_id, guest_count, created_at) "
                "values (1, 1, 0, '2026-10-19 00:00:00')"
            )
        )
        conn.execute(text("delete from events where id = 1"))
        remaining = conn.execute(text("select count(*) from event_signups")).scalar()

    assert remaining == 0
