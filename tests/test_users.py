from __future__ import annotations

from datetime import timedelta

import pytest

from kickabout import users
from kickabout.errors import Conflict, ExternalServiceError, ValidationError
from kickabout.models import User
from kickabout.security import verify_password
from kickabout.utils import utcnow

PASSWORD = "correct-horse"


def _register(db, username="alice", email=None, **overrides) -> User:
    fields = {
        "username": username,
        "email": email or f"{username}@example.com",
        "password": PASSWORD,
        "confirm_password": PASSWORD,
        "first_name": "Alice",
        "last_name": "Tester",
    }
    fields.update(overrides)
    return users.register(db, **fields)


class RecordingMailer:
    def __init__(self, *, configured: bool = True, fail: bool = False) -> None:
        self.configured = configured
        self.fail = fail
        self.sent: list[tuple[str, str]] = []

    def ensure_configured(self) -> None:
        if not self.configured:
            raise ExternalServiceError("Email is not configured.")

    def send_password_reset_email(self, to: str, url: str) -> None:
        if self.fail:
            raise ExternalServiceError("Could not send email: boom")
        self.sent.append((to, url))


def test_register_creates_unverified_user_with_token(db):
    user = _register(db, email="  Alice@Example.COM ")

    assert user.id is not None
    assert user.email == "alice@example.com"
    assert user.email_verified is False
    assert len(user.verification_token) == 64
    assert user.verification_expires > utcnow() + timedelta(hours=23)
    assert user.profile_emoji == users.DEFAULT_PROFILE_EMOJI
    assert verify_password(PASSWORD, user.password_hash)


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"username": "a"}, "Username must be at least 2 characters."),
        ({"email": "not-an-email"}, "Please enter a valid email address."),
        ({"password": "short", "confirm_password": "short"}, "Password must be at least 8 characters."),
        ({"confirm_password": "different-pass"}, "Passwords do not match."),
    ],
)
def test_register_validation(db, overrides, message):
    with pytest.raises(ValidationError) as excinfo:
        _register(db, **overrides)
    assert excinfo.value.message == message


def test_username_is_unique_case_insensitively(db):
    _register(db, "alice")

    with pytest.raises(Conflict) as excinfo:
        _register(db, "ALICE", email="other@example.com")
    assert excinfo.value.message == users.USERNAME_TAKEN


def test_email_is_unique(db):
    _register(db, "alice", email="shared@example.com")

    with pytest.raises(Conflict) as excinfo:
        _register(db, "bob", email="SHARED@example.com")
    assert excinfo.value.message == users.EMAIL_TAKEN


def test_insert_race_is_reported_as_conflict(db, monkeypatch):
    _register(db, "alice")
    monkeypatch.setattr(users, "_username_taken", lambda *args, **kwargs: False)

    with pytest.raises(Conflict):
        _register(db, "Alice", email="other@example.com")
    assert db.query(User).count() == 1


def test_register_keeps_allowed_emoji_and_rejects_others(db):
    fox = _register(db, "fox", profile_emoji="🦊")
    pizza = _register(db, "pizza", profile_emoji="🍕")

    assert fox.profile_emoji == "🦊"
    assert pizza.profile_emoji == users.DEFAULT_PROFILE_EMOJI


def test_authenticate(db):
    _register(db, "alice")

    assert users.authenticate(db, "ALICE", PASSWORD) is not None
    assert users.authenticate(db, "alice", "wrong-password") is None
    assert users.authenticate(db, "nobody", PASSWORD) is None
    assert users.authenticate(db, "", PASSWORD) is None


def test_verify_email_consumes_token(db):
    user = _register(db)
    token = user.verification_token

    assert users.verify_email(db, token)
    assert user.email_verified is True
    assert user.verification_token is None
    assert not users.verify_email(db, token)


def test_verify_email_rejects_expired_token(db):
    user = _register(db)

    later = utcnow() + timedelta(hours=25)
    assert not users.verify_email(db, user.verification_token, now=later)
    assert user.email_verified is False


def test_resend_verification_supersedes_previous_token(db):
    user = _register(db)
    old_token = user.verification_token

    new_token = users.resend_verification(db, user)

    assert new_token != old_token
    assert not users.verify_email(db, old_token)
    assert users.verify_email(db, new_token)


def test_update_profile_changes_names_and_emoji(db):
    user = _register(db)

    users.update_profile(db, user, first_name="  Ally ", last_name="", profile_emoji="🐼")

    assert user.first_name == "Ally"
    assert user.last_name is None
    assert user.profile_emoji == "🐼"


def test_update_profile_truncates_long_names(db):
    user = _register(db)

    users.update_profile(db, user, first_name="x" * 150)

    assert user.first_name == "x" * 100


def test_update_profile_rejects_unknown_emoji(db):
    user = _register(db)

    with pytest.raises(ValidationError):
        users.update_profile(db, user, profile_emoji="🍕")


def test_email_change_requires_current_password(db):
    user = _register(db)
    users.mark_verified(db, user)

    with pytest.raises(ValidationError):
        users.update_profile(db, user, email="new@example.com")
    with pytest.raises(ValidationError):
        users.update_profile(
            db, user, email="new@example.com", current_password="wrong-password"
        )
    assert user.email == "alice@example.com"
    assert user.email_verified is True


def test_rejected_guard_writes_nothing(db):
    user = _register(db)

    with pytest.raises(ValidationError):
        users.update_profile(
            db,
            user,
            first_name="Changed",
            new_password="brand-new-password",
            current_password="wrong-password",
        )
    db.refresh(user)
    assert user.first_name == "Alice"
    assert verify_password(PASSWORD, user.password_hash)


def test_email_change_resets_verification(db):
    user = _register(db)
    users.mark_verified(db, user)

    users.update_profile(db, user, email="New@Example.com", current_password=PASSWORD)

    assert user.email == "new@example.com"
    assert user.email_verified is False
    assert user.verification_token is None


def test_email_change_conflict(db):
    _register(db, "bob", email="bob@example.com")
    user = _register(db, "alice")

    with pytest.raises(Conflict):
        users.update_profile(db, user, email="bob@example.com", current_password=PASSWORD)
    assert user.email == "alice@example.com"


def test_username_change_checks_other_users_only(db):
    _register(db, "bob")
    user = _register(db, "alice")

    users.update_profile(db, user, username="alice")
    with pytest.raises(Conflict):
        users.update_profile(db, user, username="BOB")
    users.update_profile(db, user, username="ally")
    assert user.username == "ally"


def test_password_change(db):
    user = _register(db)

    with pytest.raises(ValidationError):
        users.update_profile(db, user, new_password="short", current_password=PASSWORD)
    users.update_profile(db, user, new_password="brand-new-password", current_password=PASSWORD)

    assert users.authenticate(db, "alice", "brand-new-password") is not None
    assert users.authenticate(db, "alice", PASSWORD) is None


def test_password_reset_is_single_use(db):
    user = _register(db)
    mailer = RecordingMailer()

    users.request_password_reset(db, "ALICE@example.com", mailer=mailer, origin="https://kick.test/")

    assert len(mailer.sent) == 1
    to, url = mailer.sent[0]
    assert to == "alice@example.com"
    assert url == f"https://kick.test/reset-password?token={user.reset_token}"

    token = user.reset_token
    users.reset_password(db, token, "brand-new-password")
    assert user.reset_token is None
    assert users.authenticate(db, "alice", "brand-new-password") is not None

    with pytest.raises(ValidationError):
        users.reset_password(db, token, "another-password")


def test_password_reset_rejects_expired_and_unknown_tokens(db):
    user = _register(db)
    users.request_password_reset(db, user.email, mailer=RecordingMailer(), origin="http://x")

    with pytest.raises(ValidationError):
        users.reset_password(db, user.reset_token, "brand-new-password", now=utcnow() + timedelta(hours=2))
    with pytest.raises(ValidationError):
        users.reset_password(db, "0" * 64, "brand-new-password")
    with pytest.raises(ValidationError):
        users.reset_password(db, "", "brand-new-password")
    with pytest.raises(ValidationError):
        users.reset_password(db, user.reset_token, "short")


def test_password_reset_does_not_reveal_unknown_email(db):
    mailer = RecordingMailer()

    users.request_password_reset(db, "nobody@example.com", mailer=mailer, origin="http://x")

    assert mailer.sent == []


def test_password_reset_requires_email_and_configuration(db):
    _register(db)

    with pytest.raises(ValidationError):
        users.request_password_reset(db, "  ", mailer=RecordingMailer(), origin="http://x")
    with pytest.raises(ExternalServiceError):
        users.request_password_reset(
            db, "alice@example.com", mailer=RecordingMailer(configured=False), origin="http://x"
        )


def test_password_reset_swallows_transport_failures(db):
    user = _register(db)

    users.request_password_reset(db, user.email, mailer=RecordingMailer(fail=True), origin="http://x")

    assert user.reset_token is not None


def test_list_users_filters(db):
    alice = _register(db, "alice")
    bob = _register(db, "bob", first_name="Robert")
    users.mark_verified(db, bob)
    bob.is_admin = True
    db.flush()

    assert {u.id for u in users.list_users(db)} == {alice.id, bob.id}
    assert [u.id for u in users.list_users(db, search="robert")] == [bob.id]
    assert [u.id for u in users.list_users(db, verified=False)] == [alice.id]
    assert [u.id for u in users.list_users(db, admin=True)] == [bob.id]


def test_set_admin_never_demotes_self(db):
    root = _register(db, "root")
    root.is_admin = True
    other = _register(db, "other")
    db.flush()

    assert users.set_admin(db, [other.id], make_admin=True, acting_user=root) == 1
    assert other.is_admin is True

    assert users.set_admin(db, [root.id, other.id], make_admin=False, acting_user=root) == 1
    assert root.is_admin is True
    assert other.is_admin is False
