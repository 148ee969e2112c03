"""Activity log API — replay of published events.

Learn: Real-time delivery is best effort. A client that reconnects
asks for everything after the last event id it saw.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from waypoint.db.engine import get_db
from waypoint.events.store import ActivityLog
from waypoint.schemas.activity import ActivityRead

router = APIRouter()


@router.get("/activity", response_model=list[ActivityRead])
async def list_activity(
    after_id: int = Query(0, ge=0, description="Only events with a larger id"),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    """Read the activity log, oldest first."""
    return await ActivityLog(db).read(after_id=after_id, limit=limit)
