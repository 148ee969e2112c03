"""FastAPI auth dependencies.

Learn: These are used as Depends() in route handlers to extract
and validate the current user identity from the Authorization header.
Ownership decisions are made by the services, not here. This only
answers "who is calling?".
"""

import uuid
from typing import Optional

from fastapi import Header

from waypoint.auth.jwt import TokenError, verify_token
from waypoint.errors import Unauthorized


class CurrentIdentity:
    """Represents the authenticated user making the request."""

    def __init__(self, user_id: uuid.UUID):
        self.user_id = user_id

    def owns(self, owner_id: uuid.UUID) -> bool:
        return self.user_id == owner_id

    def __repr__(self) -> str:
        return f"CurrentIdentity(user_id={self.user_id})"


async def get_current_user_optional(
    authorization: Optional[str] = Header(None),
) -> Optional[CurrentIdentity]:
    """Extract current identity (optional — returns None if no auth).

    Learn: This is the "soft" auth dependency. A malformed or expired
    token is still an error: presenting bad credentials is not the same
    as presenting none.
    """
    if not authorization:
        return None
    if not authorization.startswith("Bearer "):
        raise Unauthorized("Authorization header must use the Bearer scheme")
    return _authenticate_jwt(authorization[7:])


async def get_current_user(
    authorization: Optional[str] = Header(None),
) -> CurrentIdentity:
    """Extract current identity (required — 401 if no auth)."""
    identity = await get_current_user_optional(authorization)
    if identity is None:
        raise Unauthorized("Authentication required")
    return identity


def _authenticate_jwt(token: str) -> CurrentIdentity:
    """Authenticate via JWT access token."""
    try:
        claims = verify_token(token, expected_type="access")
        return CurrentIdentity(user_id=uuid.UUID(claims.user_id))
    except TokenError as e:
        raise Unauthorized(str(e))
    except ValueError:
        raise Unauthorized("Invalid token: malformed subject")
