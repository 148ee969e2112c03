"""Unit tests for the auth building blocks — tokens and passwords.

Learn: No HTTP and no database here. The API tests cover the same rules
end to end; these pin down the edge cases that are awkward to reach
through requests (expired tokens, tampered signatures).
"""

import jwt as pyjwt
import pytest

from waypoint.auth.jwt import (
    TokenError,
    create_access_token,
    create_refresh_token,
    verify_token,
)
from waypoint.auth.password import (
    check_password_strength,
    hash_password,
    verify_password,
)
from waypoint.config import settings
from waypoint.errors import ValidationError

USER_ID = "7b0c1e4e-8f7a-4a8e-9f2d-3c2b1a0d9e8f"


# ─── Tokens ──────────────────────────────────────────────


def test_access_token_roundtrip():
    claims = verify_token(create_access_token(USER_ID))
    assert claims.user_id == USER_ID
    assert claims.token_type == "access"


def test_refresh_token_needs_refresh_type():
    token = create_refresh_token(USER_ID)
    assert verify_token(token, expected_type="refresh").user_id == USER_ID
    with pytest.raises(TokenError, match="Expected a access token"):
        verify_token(token)


def test_expired_token():
    token = create_access_token(USER_ID, expires_minutes=-1)
    with pytest.raises(TokenError, match="expired"):
        verify_token(token)


def test_wrong_signature():
    token = pyjwt.encode(
        {"sub": USER_ID, "type": "access", "exp": 9999999999},
        "some-other-secret-that-is-long-enough-for-hs256",
        algorithm=settings.jwt_algorithm,
    )
    with pytest.raises(TokenError, match="Invalid token"):
        verify_token(token)


def test_token_without_subject():
    token = pyjwt.encode(
        {"type": "access", "exp": 9999999999},
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
    )
    with pytest.raises(TokenError):
        verify_token(token)


def test_garbage_token():
    with pytest.raises(TokenError):
        verify_token("not.a.jwt")


# ─── Passwords ───────────────────────────────────────────


def test_hash_and_verify():
    hashed = hash_password("1234")
    assert hashed.startswith("$2")
    assert hashed != "1234"
    assert verify_password("1234", hashed)
    assert not verify_password("12345", hashed)


def test_same_password_different_salts():
    assert hash_password("secret-pw") != hash_password("secret-pw")


def test_verify_against_garbage_hash():
    assert verify_password("1234", "not-a-bcrypt-hash") is False


@pytest.mark.parametrize("password", ["", "   ", "abc"])
def test_weak_passwords_rejected(password):
    with pytest.raises(ValidationError):
        check_password_strength(password)


def test_minimum_length_password_accepted():
    check_password_strength("1234")
