"""JWT token creation and verification.

Learn: JWT (JSON Web Token) provides stateless authentication.
- Access token: short-lived (60min), used for API calls
- Refresh token: long-lived (30 days), used to get new access tokens

Tokens are never stored. The claims (sub = user id, type, iat, exp)
are checked on every request.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from waypoint.config import settings


class TokenError(Exception):
    """Raised when token creation/verification fails."""


@dataclass(frozen=True)
class UserClaims:
    """The verified contents of a token."""

    user_id: str
    token_type: str
    expires_at: datetime


def _encode(user_id: str, token_type: str, lifetime: timedelta) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "type": token_type,
        "exp": now + lifetime,
        "iat": now,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def create_access_token(user_id: str, expires_minutes: Optional[int] = None) -> str:
    """Create a JWT access token."""
    return _encode(
        user_id,
        "access",
        timedelta(minutes=expires_minutes or settings.access_token_expire_minutes),
    )


def create_refresh_token(user_id: str, expires_days: Optional[int] = None) -> str:
    """Create a JWT refresh token."""
    return _encode(
        user_id,
        "refresh",
        timedelta(days=expires_days or settings.refresh_token_expire_days),
    )


def verify_token(token: str, expected_type: Optional[str] = "access") -> UserClaims:
    """Verify and decode a JWT token.

    Returns the claims on success.
    Raises TokenError on an expired, malformed, badly signed or
    wrong-type token.
    """
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError:
        raise TokenError("Token has expired")
    except jwt.InvalidTokenError as e:
        raise TokenError(f"Invalid token: {e}")

    token_type = payload.get("type", "access")
    if expected_type and token_type != expected_type:
        raise TokenError(f"Expected a {expected_type} token")

    return UserClaims(
        user_id=payload["sub"],
        token_type=token_type,
        expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
    )
