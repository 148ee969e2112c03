"""Pydantic schema for the activity log."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class ActivityRead(BaseModel):
    # The integer id doubles as the after_id replay cursor
    id: int = Field(serialization_alias="_id")
    type: str
    entity: dict
    actor_id: Optional[uuid.UUID]
    created_at: datetime

    model_config = {"from_attributes": True}
