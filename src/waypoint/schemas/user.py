"""Pydantic schemas for users and sessions.

Learn: Separate "Create" schemas (input) from "Read" schemas (output).
UserRead has no password field at all, so a hash can never leak into
a response. Identifiers are exposed as `_id`.
"""

import uuid
from datetime import datetime

from pydantic import BaseModel, Field


class UserCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    password: str = Field(..., max_length=256)


class UserRead(BaseModel):
    id: uuid.UUID = Field(serialization_alias="_id")
    name: str

    model_config = {"from_attributes": True}


class UserDetail(UserRead):
    created_at: datetime


class PasswordChange(BaseModel):
    current_password: str
    new_password: str = Field(..., max_length=256)


class SessionCreate(BaseModel):
    name: str
    password: str


class RefreshRequest(BaseModel):
    refresh_token: str


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    user_id: uuid.UUID
