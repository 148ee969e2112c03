"""Pydantic schemas for places and comments.

Learn: Pydantic v2 models validate request/response data.
- PlaceCreate / CommentCreate: what you POST
- PlaceUpdate / CommentUpdate: what you PATCH (only sent fields apply)
- PlaceRead / CommentRead: what the API returns, ids as `_id`
"""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, model_validator


# ─── Places ─────────────────────────────────────────────

class PlaceCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: str = Field(default="", max_length=5000)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    photo_url: Optional[str] = Field(None, max_length=2048)

    @model_validator(mode="after")
    def location_is_complete(self):
        if (self.latitude is None) != (self.longitude is None):
            raise ValueError("latitude and longitude must be given together")
        return self


class PlaceUpdate(BaseModel):
    """Partial update — only fields present in the body are applied."""
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=5000)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    photo_url: Optional[str] = Field(None, max_length=2048)


class PlaceRead(BaseModel):
    id: uuid.UUID = Field(serialization_alias="_id")
    owner_id: uuid.UUID
    name: str
    description: str
    latitude: Optional[float]
    longitude: Optional[float]
    photo_url: Optional[str]
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class OwnerCount(BaseModel):
    owner_id: uuid.UUID
    owner_name: str
    count: int


# ─── Comments ───────────────────────────────────────────

class CommentCreate(BaseModel):
    body: str = Field(..., min_length=1, max_length=2000)


class CommentUpdate(BaseModel):
    body: str = Field(..., min_length=1, max_length=2000)


class CommentRead(BaseModel):
    id: uuid.UUID = Field(serialization_alias="_id")
    place_id: uuid.UUID
    author_id: uuid.UUID
    body: str
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class AuthorCount(BaseModel):
    author_id: uuid.UUID
    author_name: str
    count: int
