"""Global configuration for Kickabout."""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any, Callable

logger = logging.getLogger("uvicorn.error")

DEV_SESSION_SECRET = "dev-secret-change-in-production"

DEFAULTS: dict[str, Any] = {
    "environment": "development",
    "session_secret": "",
    "session_max_age_days": 30,
    "origin": "http://localhost:8000",
    "timezone": "Europe/London",
    "event_weekday": 5,
    "upcoming_event_count": 12,
    "event_duration_hours": 2,
    "default_event_title": "Kickabout",
    "default_event_description": "Weekly football session",
    "default_event_location": "Wavertree Botanic Gardens, Edge Lane, Liverpool",
    "verification_resend_cooldown_seconds": 60,
    "smtp_host": "smtp.protonmail.ch",
    "smtp_port": 587,
    "smtp_user": "",
    "smtp_password": "",
    "smtp_secure": False,
    "smtp_from": "",
    "smtp_from_name": "Kickabout",
    "app_host": "0.0.0.0",
    "app_port": 8000,
}

TYPE_CASTERS: dict[str, Callable[[Any], Any]] = {
    "environment": str,
    "session_secret": str,
    "session_max_age_days": int,
    "origin": str,
    "timezone": str,
    "event_weekday": int,
    "upcoming_event_count": int,
    "event_duration_hours": int,
    "default_event_title": str,
    "default_event_description": str,
    "default_event_location": str,
    "verification_resend_cooldown_seconds": int,
    "smtp_host": str,
    "smtp_port": int,
    "smtp_user": str,
    "smtp_password": str,
    "smtp_secure": bool,
    "smtp_from": str,
    "smtp_from_name": str,
    "app_host": str,
    "app_port": int,
}

SECRET_KEYS = {"session_secret", "smtp_password"}


@dataclass(frozen=True)
class Settings:
    base_dir: Path
    data_dir: Path
    database_path: Path
    environment: str
    session_secret: str
    session_max_age_days: int
    origin: str
    timezone: str
    event_weekday: int
    upcoming_event_count: int
    event_duration_hours: int
    default_event_title: str
    default_event_description: str
    default_event_location: str
    verification_resend_cooldown_seconds: int
    smtp_host: str
    smtp_port: int
    smtp_user: str
    smtp_password: str
    smtp_secure: bool
    smtp_from: str
    smtp_from_name: str
    app_host: str
    app_port: int
    config_path: Path

    @property
    def is_production(self) -> bool:
        return self.environment.strip().lower() == "production"

    @property
    def session_max_age(self) -> timedelta:
        return timedelta(days=self.session_max_age_days)

    @property
    def event_duration(self) -> timedelta:
        return timedelta(hours=self.event_duration_hours)

    @property
    def database_url(self) -> str:
        return f"sqlite:///{self.database_path}"


def _boolify(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    raise ValueError(f"Cannot parse boolean value from {value!r}")


def _cast_value(key: str, value: Any) -> Any:
    if key not in TYPE_CASTERS:
        return value
    caster = TYPE_CASTERS[key]
    if caster is bool:
        return _boolify(value)
    return caster(value)


def _load_toml_config(config_path: Path) -> dict[str, Any]:
    if not config_path.exists():
        return {}
    with config_path.open("rb") as handle:
        return tomllib.load(handle)


def _config_layered_value(key: str, *, toml_config: dict[str, Any]) -> Any:
    env_key = f"KICKABOUT_{key.upper()}"
    if env_key in os.environ:
        return _cast_value(key, os.environ[env_key])
    if key in toml_config:
        return _cast_value(key, toml_config[key])
    return DEFAULTS[key]


def _resolve_paths(
    *,
    base_dir: Path,
    data_dir: str | Path | None,
    database_path: str | Path | None,
):
    resolved_base = Path(base_dir)
    resolved_data = Path(data_dir) if data_dir else resolved_base / "data"
    if not resolved_data.is_absolute():
        resolved_data = resolved_base / resolved_data
    resolved_db = Path(database_path) if database_path else resolved_data / "kickabout.db"
    if not resolved_db.is_absolute():
        resolved_db = resolved_base / resolved_db
    return resolved_base, resolved_data, resolved_db


def _resolve_session_secret(raw: str, *, environment: str) -> str:
    secret = (raw or "").strip()
    if secret:
        return secret
    if environment.strip().lower() == "production":
        raise ValueError("KICKABOUT_SESSION_SECRET must be set in production")
    logger.warning("No session secret configured; using the development secret")
    return DEV_SESSION_SECRET


def load_settings(config_override: Path | None = None, *, create_dirs: bool = True) -> Settings:
    base_dir = Path(os.getenv("KICKABOUT_BASE_DIR", Path.cwd()))
    env_config = os.getenv("KICKABOUT_CONFIG")
    config_path = Path(config_override or env_config or base_dir / "kickabout.toml")
    toml_config = _load_toml_config(config_path)

    base_dir_value, data_dir_value, database_path_value = _resolve_paths(
        base_dir=base_dir,
        data_dir=os.getenv("KICKABOUT_DATA_DIR", toml_config.get("data_dir")),
        database_path=os.getenv("KICKABOUT_DB", toml_config.get("database_path")),
    )

    values = {key: _config_layered_value(key, toml_config=toml_config) for key in DEFAULTS}
    values["session_secret"] = _resolve_session_secret(
        values["session_secret"], environment=values["environment"]
    )
    if not 0 <= values["event_weekday"] <= 6:
        raise ValueError("event_weekday must be between 0 (Monday) and 6 (Sunday)")

    settings = Settings(
        base_dir=base_dir_value,
        data_dir=data_dir_value,
        database_path=database_path_value,
        config_path=config_path,
        **values,
    )
    if create_dirs:
        settings.data_dir.mkdir(parents=True, exist_ok=True)
    return settings


def settings_as_dict(settings: Settings, *, reveal_secrets: bool = False) -> dict[str, Any]:
    data: dict[str, Any] = {
        "base_dir": str(settings.base_dir),
        "data_dir": str(settings.data_dir),
        "database_path": str(settings.database_path),
    }
    for key in DEFAULTS:
        value = getattr(settings, key)
        if key in SECRET_KEYS and value and not reveal_secrets:
            value = "********"
        data[key] = value
    return data


def _toml_literal(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def write_config_file(config: dict[str, Any], *, path: Path) -> None:
    lines = ["# Kickabout configuration\n"]
    for key in sorted(config.keys()):
        lines.append(f"{key} = {_toml_literal(config[key])}\n")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("".join(lines), encoding="utf-8")


def update_config_file(updates: dict[str, Any], *, path: Path) -> Settings:
    """Merge ``updates`` into the TOML file at ``path`` and reload settings.

    Unknown keys raise ``KeyError`` so typos are not silently dropped.
    """
    existing = _load_toml_config(path)
    merged = {**existing}
    for key, value in updates.items():
        if key not in DEFAULTS:
            raise KeyError(key)
        merged[key] = _cast_value(key, value)
    write_config_file(merged, path=path)
    return load_settings(path)
