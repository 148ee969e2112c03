"""User and session API routes.

Learn: Routes for accounts and authentication:
- POST /users → register (201, {_id, name}; never a password)
- GET /users/me → the caller's account
- GET /users/:id → a public profile
- PATCH /users/me/password → change password (needs the current one)
- POST /sessions → name/password → JWT tokens
- POST /sessions/refresh → refresh token → new tokens
"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from waypoint.auth.dependencies import CurrentIdentity, get_current_user
from waypoint.db.engine import get_db
from waypoint.realtime.pubsub import Broker, get_broker_optional
from waypoint.schemas.user import (
    PasswordChange,
    RefreshRequest,
    SessionCreate,
    TokenResponse,
    UserCreate,
    UserDetail,
    UserRead,
)
from waypoint.services.user_service import TokenPair, UserService

router = APIRouter()


def _svc(
    db: AsyncSession = Depends(get_db),
    broker: Optional[Broker] = Depends(get_broker_optional),
) -> UserService:
    return UserService(db, broker)


def _tokens(pair: TokenPair) -> TokenResponse:
    return TokenResponse(
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        token_type=pair.token_type,
        user_id=pair.user_id,
    )


# ─── Users ──────────────────────────────────────────────

@router.post("/users", response_model=UserRead, status_code=201)
async def register(body: UserCreate, svc: UserService = Depends(_svc)):
    """Create a new user account."""
    return await svc.register(name=body.name, password=body.password)


@router.get("/users/me", response_model=UserDetail)
async def get_me(
    identity: CurrentIdentity = Depends(get_current_user),
    svc: UserService = Depends(_svc),
):
    return await svc.get(identity.user_id)


@router.patch("/users/me/password", status_code=204)
async def change_password(
    body: PasswordChange,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: UserService = Depends(_svc),
):
    await svc.change_password(
        identity.user_id,
        current_password=body.current_password,
        new_password=body.new_password,
    )
    return Response(status_code=204)


@router.get("/users/{user_id}", response_model=UserDetail)
async def get_user(user_id: uuid.UUID, svc: UserService = Depends(_svc)):
    return await svc.get(user_id)


# ─── Sessions ───────────────────────────────────────────

@router.post("/sessions", response_model=TokenResponse, status_code=201)
async def login(body: SessionCreate, svc: UserService = Depends(_svc)):
    """Login with name and password → JWT tokens."""
    return _tokens(await svc.authenticate(body.name, body.password))


@router.post("/sessions/refresh", response_model=TokenResponse, status_code=201)
async def refresh(body: RefreshRequest, svc: UserService = Depends(_svc)):
    """Exchange a refresh token for a new access token."""
    return _tokens(await svc.refresh(body.refresh_token))
