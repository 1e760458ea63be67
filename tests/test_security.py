from __future__ import annotations

from datetime import datetime, timedelta

from kickabout.security import (
    RESET_TOKEN_TTL,
    VERIFICATION_TOKEN_TTL,
    hash_password,
    is_token_live,
    new_token,
    verify_password,
)


def test_hash_is_salted_and_verifies():
    first = hash_password("s3cret-pass")
    second = hash_password("s3cret-pass")

    assert first != second
    assert first.startswith("$argon2")
    assert verify_password("s3cret-pass", first)
    assert verify_password("s3cret-pass", second)


def test_verify_rejects_wrong_password():
    hashed = hash_password("s3cret-pass")

    assert not verify_password("not-it", hashed)
    assert not verify_password("", hashed)


def test_verify_returns_false_for_garbage_hashes():
    assert not verify_password("whatever", "not-a-hash")
    assert not verify_password("whatever", "")
    assert not verify_password("whatever", None)


def test_new_token_has_256_bits_of_hex():
    issued = new_token(VERIFICATION_TOKEN_TTL)

    assert len(issued.token) == 64
    int(issued.token, 16)
    assert new_token(VERIFICATION_TOKEN_TTL).token != issued.token


def test_token_expiry_uses_ttl():
    now = datetime(2026, 1, 1, 12, 0)

    assert new_token(VERIFICATION_TOKEN_TTL, now=now).expires_at == now + timedelta(hours=24)
    assert new_token(RESET_TOKEN_TTL, now=now).expires_at == now + timedelta(hours=1)


def test_is_token_live():
    now = datetime(2026, 1, 1, 12, 0)

    assert is_token_live(now + timedelta(seconds=1), now=now)
    assert not is_token_live(now, now=now)
    assert not is_token_live(None, now=now)
