"""User directory: registration, profile changes and token flows."""

from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Iterable, Sequence

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .errors import Conflict, ExternalServiceError, ValidationError
from .mail import Mailer
from .models import User
from .security import (
    RESET_TOKEN_TTL,
    VERIFICATION_TOKEN_TTL,
    hash_password,
    new_token,
    verify_password,
)
from .utils import utcnow

logger = logging.getLogger("uvicorn.error")

MIN_USERNAME_LENGTH = 2
MIN_PASSWORD_LENGTH = 8
MAX_NAME_LENGTH = 100
MAX_EMOJI_LENGTH = 8
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

USERNAME_TAKEN = "Username is already taken."
EMAIL_TAKEN = "An account with this email already exists."
INVALID_RESET_LINK = "Invalid or expired reset link. Please request a new one."

# Animal emojis only; the first is the default.
ANIMAL_EMOJIS = (
    "🦁", "🐝", "🐶", "🐱", "🐭", "🐹", "🐰", "🦊", "🐻", "🐼",
    "🐨", "🐯", "🐮", "🐷", "🐸", "🐵", "🐔", "🐧", "🐦", "🦆",
    "🦅", "🦉", "🦇", "🐺", "🐗", "🐴", "🦄", "🐢", "🐍", "🦎",
    "🐠", "🐟", "🐬", "🐳", "🐋", "🦈", "🐊",
)
DEFAULT_PROFILE_EMOJI = ANIMAL_EMOJIS[0]


def is_allowed_profile_emoji(emoji: str | None) -> bool:
    if not emoji or not isinstance(emoji, str):
        return False
    return emoji.strip()[:MAX_EMOJI_LENGTH] in ANIMAL_EMOJIS


def normalize_email(raw: str | None) -> str:
    return (raw or "").strip().lower()


def verification_link(origin: str, token: str) -> str:
    return f"{origin.rstrip('/')}/verify-email?token={token}"


def reset_link(origin: str, token: str) -> str:
    return f"{origin.rstrip('/')}/reset-password?token={token}"


def _clean_name(value: str) -> str | None:
    return value.strip()[:MAX_NAME_LENGTH] or None


def _validate_username(raw: str) -> str:
    username = (raw or "").strip()
    if len(username) < MIN_USERNAME_LENGTH:
        raise ValidationError("Username must be at least 2 characters.")
    return username


def _validate_email(email: str) -> str:
    if not EMAIL_PATTERN.match(email):
        raise ValidationError("Please enter a valid email address.")
    return email


def _validate_password(password: str, *, label: str = "Password") -> None:
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"{label} must be at least 8 characters.")


def _username_taken(db: Session, username: str, *, exclude_id: int | None = None) -> bool:
    stmt = select(User.id).where(func.lower(User.username) == username.lower())
    if exclude_id is not None:
        stmt = stmt.where(User.id != exclude_id)
    return db.scalars(stmt).first() is not None


def _email_taken(db: Session, email: str, *, exclude_id: int | None = None) -> bool:
    stmt = select(User.id).where(func.lower(User.email) == email.lower())
    if exclude_id is not None:
        stmt = stmt.where(User.id != exclude_id)
    return db.scalars(stmt).first() is not None


def get_user(db: Session, user_id: int) -> User | None:
    return db.get(User, user_id)


def get_user_by_username(db: Session, username: str) -> User | None:
    stmt = select(User).where(func.lower(User.username) == (username or "").strip().lower())
    return db.scalars(stmt).first()


def register(
    db: Session,
    *,
    username: str,
    email: str,
    password: str,
    confirm_password: str,
    first_name: str | None = None,
    last_name: str | None = None,
    profile_emoji: str | None = None,
    now: datetime | None = None,
) -> User:
    """Create an unverified user with a fresh 24h verification token."""
    username = (username or "").strip()
    email = normalize_email(email)
    if not username or not email or not password:
        raise ValidationError("Username, email and password are required.")
    _validate_username(username)
    _validate_email(email)
    _validate_password(password)
    if password != confirm_password:
        raise ValidationError("Passwords do not match.")
    if _username_taken(db, username):
        raise Conflict(USERNAME_TAKEN)
    if _email_taken(db, email):
        raise Conflict(EMAIL_TAKEN)

    emoji = (
        profile_emoji.strip()[:MAX_EMOJI_LENGTH]
        if is_allowed_profile_emoji(profile_emoji)
        else DEFAULT_PROFILE_EMOJI
    )
    issued = new_token(VERIFICATION_TOKEN_TTL, now=now)
    user = User(
        username=username,
        email=email,
        password_hash=hash_password(password),
        email_verified=False,
        verification_token=issued.token,
        verification_expires=issued.expires_at,
        first_name=_clean_name(first_name or ""),
        last_name=_clean_name(last_name or ""),
        profile_emoji=emoji,
        is_admin=False,
        created_at=now or utcnow(),
    )
    try:
        with db.begin_nested():
            db.add(user)
            db.flush()
    except IntegrityError as exc:
        # Another request won the race between the pre-check and the insert.
        if _username_taken(db, username):
            raise Conflict(USERNAME_TAKEN) from exc
        raise Conflict(EMAIL_TAKEN) from exc
    logger.info("Registered user %s (%s)", user.id, user.username)
    return user


def authenticate(db: Session, username: str, password: str) -> User | None:
    """Return the user when the credentials match, otherwise ``None``."""
    if not (username or "").strip() or not password:
        return None
    user = get_user_by_username(db, username)
    if user is None or not verify_password(password, user.password_hash):
        return None
    return user


def update_profile(
    db: Session,
    user: User,
    *,
    first_name: str | None = None,
    last_name: str | None = None,
    profile_emoji: str | None = None,
    username: str | None = None,
    email: str | None = None,
    current_password: str | None = None,
    new_password: str | None = None,
) -> User:
    """Apply independent profile changes.

    ``None`` leaves a field untouched. Changing email or password requires
    ``current_password``; every field is validated before anything is
    written, so a rejected update leaves the user unchanged.
    """
    new_email = normalize_email(email) if email is not None else None
    email_changing = new_email is not None and new_email != (user.email or "")
    password_changing = bool(new_password)
    if email_changing or password_changing:
        if not (current_password or "").strip():
            raise ValidationError(
                "Current password is required to change email or password."
            )
        if not verify_password(current_password, user.password_hash):
            raise ValidationError("Current password is incorrect.")

    changes: dict[str, object] = {}
    if first_name is not None:
        changes["first_name"] = _clean_name(first_name)
    if last_name is not None:
        changes["last_name"] = _clean_name(last_name)
    if profile_emoji is not None and profile_emoji.strip():
        emoji = profile_emoji.strip()[:MAX_EMOJI_LENGTH]
        if emoji not in ANIMAL_EMOJIS:
            raise ValidationError("Please pick one of the animal emojis.")
        changes["profile_emoji"] = emoji
    if username is not None:
        cleaned = _validate_username(username)
        if cleaned != user.username:
            if _username_taken(db, cleaned, exclude_id=user.id):
                raise Conflict(USERNAME_TAKEN)
            changes["username"] = cleaned
    if new_email is not None:
        _validate_email(new_email)
        if email_changing:
            if _email_taken(db, new_email, exclude_id=user.id):
                raise Conflict(EMAIL_TAKEN)
            changes.update(
                email=new_email,
                email_verified=False,
                verification_token=None,
                verification_expires=None,
            )
    if password_changing:
        _validate_password(new_password, label="New password")
        changes["password_hash"] = hash_password(new_password)

    if not changes:
        return user
    try:
        with db.begin_nested():
            for field, value in changes.items():
                setattr(user, field, value)
            db.flush()
    except IntegrityError as exc:
        if "username" in changes and _username_taken(
            db, str(changes["username"]), exclude_id=user.id
        ):
            raise Conflict(USERNAME_TAKEN) from exc
        raise Conflict(EMAIL_TAKEN) from exc
    logger.info("Updated profile for user %s (%s)", user.id, ", ".join(sorted(changes)))
    return user


def request_password_reset(
    db: Session,
    email: str,
    *,
    mailer: Mailer,
    origin: str,
    now: datetime | None = None,
) -> None:
    """Issue a 1h reset token and mail it when the email is registered.

    Returns normally whether or not the account exists.
    """
    normalized = normalize_email(email)
    if not normalized:
        raise ValidationError("Please enter your email address.")
    mailer.ensure_configured()
    user = db.scalars(select(User).where(User.email == normalized)).first()
    if user is None:
        logger.info("Password reset requested for an unknown email")
        return
    issued = new_token(RESET_TOKEN_TTL, now=now)
    user.reset_token = issued.token
    user.reset_token_expires = issued.expires_at
    db.flush()
    try:
        mailer.send_password_reset_email(user.email, reset_link(origin, issued.token))
    except ExternalServiceError as exc:
        logger.error("Password reset mail for user %s not delivered: %s", user.id, exc.message)


def reset_password(
    db: Session, token: str, new_password: str, *, now: datetime | None = None
) -> User:
    cleaned = (token or "").strip()
    if not cleaned:
        raise ValidationError(INVALID_RESET_LINK)
    _validate_password(new_password)
    stmt = select(User).where(
        User.reset_token == cleaned, User.reset_token_expires > (now or utcnow())
    )
    user = db.scalars(stmt).first()
    if user is None:
        raise ValidationError(INVALID_RESET_LINK)
    user.password_hash = hash_password(new_password)
    user.reset_token = None
    user.reset_token_expires = None
    db.flush()
    logger.info("Password reset for user %s", user.id)
    return user


def verify_email(db: Session, token: str, *, now: datetime | None = None) -> bool:
    cleaned = (token or "").strip()
    if not cleaned:
        return False
    stmt = select(User).where(
        User.verification_token == cleaned,
        User.verification_expires > (now or utcnow()),
    )
    user = db.scalars(stmt).first()
    if user is None:
        return False
    mark_verified(db, user)
    return True


def mark_verified(db: Session, user: User) -> None:
    user.email_verified = True
    user.verification_token = None
    user.verification_expires = None
    db.flush()
    logger.info("Verified email for user %s", user.id)


def resend_verification(db: Session, user: User, *, now: datetime | None = None) -> str:
    """Replace any pending verification token with a fresh one."""
    issued = new_token(VERIFICATION_TOKEN_TTL, now=now)
    user.verification_token = issued.token
    user.verification_expires = issued.expires_at
    db.flush()
    return issued.token


def verification_issued_at(user: User) -> datetime | None:
    if user.verification_expires is None:
        return None
    return user.verification_expires - VERIFICATION_TOKEN_TTL


def list_users(
    db: Session,
    *,
    search: str | None = None,
    verified: bool | None = None,
    admin: bool | None = None,
) -> Sequence[User]:
    stmt = select(User).order_by(User.created_at.desc(), User.id.desc())
    term = (search or "").strip()
    if term:
        pattern = f"%{term}%"
        stmt = stmt.where(
            or_(
                User.username.ilike(pattern),
                User.email.ilike(pattern),
                User.first_name.ilike(pattern),
                User.last_name.ilike(pattern),
            )
        )
    if verified is not None:
        stmt = stmt.where(User.email_verified == verified)
    if admin is not None:
        stmt = stmt.where(User.is_admin == admin)
    return db.scalars(stmt).all()


def set_admin(
    db: Session, user_ids: Iterable[int], *, make_admin: bool, acting_user: User
) -> int:
    """Grant or revoke admin; an admin cannot revoke their own access."""
    changed = 0
    for user_id in user_ids:
        if user_id == acting_user.id and not make_admin:
            continue
        target = db.get(User, user_id)
        if target is None or target.is_admin == make_admin:
            continue
        target.is_admin = make_admin
        changed += 1
        logger.info(
            "Admin %s %s admin for user %s",
            acting_user.id,
            "granted" if make_admin else "revoked",
            target.id,
        )
    db.flush()
    return changed
