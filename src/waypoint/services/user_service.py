"""User service — registration, login and password changes.

Learn: Service layer separates business logic from HTTP routing.
API routes call services, services call the repository. Failures are
raised as domain errors (Conflict, Unauthorized, ...) and turned into
status codes by the handlers in waypoint.errors.
"""

import uuid
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

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
from waypoint.db.models import User
from waypoint.db.repository import Repository
from waypoint.errors import Conflict, Unauthorized, ValidationError
from waypoint.events.store import ActivityLog
from waypoint.events.types import USER_PASSWORD_CHANGED, USER_REGISTERED
from waypoint.realtime.pubsub import Broker

logger = structlog.get_logger()


def user_summary(user: User) -> dict:
    return {"_id": str(user.id), "name": user.name}


class TokenPair:
    def __init__(self, user_id: uuid.UUID):
        self.user_id = user_id
        self.access_token = create_access_token(str(user_id))
        self.refresh_token = create_refresh_token(str(user_id))
        self.token_type = "bearer"


class UserService:
    """Business logic for accounts and credentials."""

    def __init__(self, db: AsyncSession, broker: Optional[Broker] = None):
        self.db = db
        self.users = Repository(db, User)
        self.activity = ActivityLog(db, broker)

    async def register(self, name: str, password: str) -> User:
        """Create a user. Conflict if the name is taken."""
        name = name.strip()
        if not name:
            raise ValidationError("Name must not be blank")
        check_password_strength(password)

        if await self.users.find_one(name=name):
            raise Conflict("Name already registered")

        # The unique constraint still catches a concurrent registration
        user = await self.users.add(
            User(name=name, password_hash=hash_password(password)),
            conflict_detail="Name already registered",
        )
        event = await self.activity.append(USER_REGISTERED, user_summary(user), actor_id=user.id)
        await self.db.commit()

        logger.info("waypoint.user.registered", user_id=str(user.id))
        await self.activity.publish(event)
        return user

    async def authenticate(self, name: str, password: str) -> TokenPair:
        """Name + password → token pair. Same error for unknown name and bad password."""
        user = await self.users.find_one(name=name.strip())
        if user is None or not verify_password(password, user.password_hash):
            logger.info("waypoint.auth.login_failed")
            raise Unauthorized("Invalid credentials")
        logger.info("waypoint.auth.login", user_id=str(user.id))
        return TokenPair(user.id)

    async def refresh(self, refresh_token: str) -> TokenPair:
        """Exchange a refresh token for a new pair."""
        try:
            claims = verify_token(refresh_token, expected_type="refresh")
            user_id = uuid.UUID(claims.user_id)
        except TokenError as e:
            raise Unauthorized(str(e))
        except ValueError:
            raise Unauthorized("Invalid token: malformed subject")

        # The account must still exist
        await self._get_for_token(user_id)
        return TokenPair(user_id)

    async def get(self, user_id: uuid.UUID) -> User:
        return await self.users.get_or_404(user_id)

    async def change_password(
        self, user_id: uuid.UUID, current_password: str, new_password: str
    ) -> None:
        user = await self._get_for_token(user_id)
        if not verify_password(current_password, user.password_hash):
            raise Unauthorized("Current password is incorrect")
        check_password_strength(new_password)

        await self.users.update(user, {"password_hash": hash_password(new_password)})
        event = await self.activity.append(
            USER_PASSWORD_CHANGED, {"_id": str(user.id)}, actor_id=user.id
        )
        await self.db.commit()

        logger.info("waypoint.user.password_changed", user_id=str(user.id))
        await self.activity.publish(event)

    async def _get_for_token(self, user_id: uuid.UUID) -> User:
        user = await self.users.get(user_id)
        if user is None:
            raise Unauthorized("User no longer exists")
        return user
