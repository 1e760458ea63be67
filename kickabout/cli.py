"""Typer CLI for Kickabout."""

from __future__ import annotations

import json

import typer
import uvicorn
from sqlalchemy.exc import OperationalError

from .config import load_settings, settings_as_dict, update_config_file
from .database import Database
from .events import ensure_upcoming
from .seed import seed_fake_signups
from .storage import init_db, upgrade_database
from .users import get_user_by_username
from .utils import local_now

app = typer.Typer(help="Kickabout command-line interface")


def _open_database():
    settings = load_settings()
    return settings, Database.from_settings(settings)


def _exit_if_readonly(exc: OperationalError, database_path) -> None:
    message = str(getattr(exc, "orig", exc)).lower()
    if "readonly" in message or "read-only" in message:
        typer.secho(
            "The database is read-only. "
            f"Ensure the process can write to {database_path}.",
            err=True,
            fg=typer.colors.RED,
        )
        raise typer.Exit(code=1)


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Show help when no subcommand is provided."""
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


@app.command("runserver")
def runserver(
    host: str | None = typer.Option(None, "--host", help="Host to bind"),
    port: int | None = typer.Option(None, "--port", help="Port to bind"),
):
    """Start the web application."""
    settings = load_settings()
    host = host or settings.app_host
    port = port or settings.app_port
    config = uvicorn.Config(
        "kickabout.api:create_default_app",
        factory=True,
        host=host,
        port=port,
        reload=False,
        proxy_headers=True,
        forwarded_allow_ips="*",
    )
    server = uvicorn.Server(config)
    typer.echo(f"Starting Kickabout on {host}:{port}")
    server.run()


@app.command("upgrade-db")
def upgrade_db(
    no_backup: bool = typer.Option(
        False,
        "--no-backup",
        help="Skip creating a .bak copy of the database before upgrading",
    ),
) -> None:
    """Upgrade the SQLite database schema if needed."""
    settings, database = _open_database()
    try:
        actions = upgrade_database(database, make_backup=not no_backup)
    except OperationalError as exc:
        _exit_if_readonly(exc, settings.database_path)
        raise
    finally:
        database.dispose()

    typer.echo("Database upgrade complete:")
    for action in actions:
        typer.echo(f"- {action}")


@app.command("ensure-events")
def ensure_events() -> None:
    """Create the upcoming weekly sessions and purge off-day ones."""
    settings, database = _open_database()
    try:
        init_db(database)
        with database.session() as session:
            created = ensure_upcoming(
                session,
                count=settings.upcoming_event_count,
                weekday=settings.event_weekday,
                now=local_now(settings.timezone),
            )
            dates = [event.event_date.isoformat() for event in created]
    finally:
        database.dispose()
    if dates:
        typer.echo(f"Created {len(dates)} sessions: {', '.join(dates)}")
    else:
        typer.echo("Upcoming sessions already exist.")


@app.command("set-admin")
def set_admin(
    username: str = typer.Argument(..., help="Account to change"),
    revoke: bool = typer.Option(False, "--revoke", help="Remove admin access instead"),
) -> None:
    """Grant (or revoke) admin access for an account."""
    _, database = _open_database()
    try:
        init_db(database)
        with database.session() as session:
            user = get_user_by_username(session, username)
            if user is None:
                typer.secho(f"No user named {username!r}.", err=True, fg=typer.colors.RED)
                raise typer.Exit(code=1)
            user.is_admin = not revoke
            name = user.username
    finally:
        database.dispose()
    state = "no longer an admin" if revoke else "now an admin"
    typer.echo(f"{name} is {state}.")


@app.command("seed-signups")
def seed_signups(
    users: int = typer.Option(100, "--users", min=0, help="Number of fake users to sign up"),
) -> None:
    """Sign fake users up for the next session (development only)."""
    settings, database = _open_database()
    if settings.is_production:
        typer.secho("Refusing to seed a production database.", err=True, fg=typer.colors.RED)
        raise typer.Exit(code=1)
    try:
        init_db(database)
        stats = seed_fake_signups(
            database,
            user_count=users,
            now=local_now(settings.timezone),
            weekday=settings.event_weekday,
            upcoming_count=settings.upcoming_event_count,
        )
    finally:
        database.dispose()
    typer.echo(
        f"Seed complete: event {stats['event_id']}, {stats['users']} users and "
        f"{stats['signups']} sign-ups created."
    )


@app.command("config")
def configure(
    set_values: list[str] = typer.Option(
        None, "--set", help="KEY=VALUE pair to persist (repeatable)"
    ),
    reveal_secrets: bool = typer.Option(
        False, "--reveal-secrets", help="Print secrets instead of masking them"
    ),
):
    """View or update the persistent configuration file."""
    settings = load_settings()
    updates = {}
    for pair in set_values or []:
        key, sep, value = pair.partition("=")
        if not sep:
            typer.secho(f"Expected KEY=VALUE, got {pair!r}", err=True, fg=typer.colors.RED)
            raise typer.Exit(code=2)
        updates[key.strip()] = value.strip()

    if updates:
        try:
            settings = update_config_file(updates, path=settings.config_path)
        except KeyError as exc:
            typer.secho(f"Unknown setting {exc.args[0]!r}", err=True, fg=typer.colors.RED)
            raise typer.Exit(code=2)
        except ValueError as exc:
            typer.secho(str(exc), err=True, fg=typer.colors.RED)
            raise typer.Exit(code=2)
        typer.echo(f"Updated configuration in {settings.config_path}")
    effective = settings_as_dict(settings, reveal_secrets=reveal_secrets)
    effective["config_path"] = str(settings.config_path)
    typer.echo(json.dumps(effective, indent=2))


if __name__ == "__main__":
    app()
