"""Health check endpoint.

Learn: Simple GET endpoint that verifies the server is running
and its dependencies (database, Redis) are reachable.
"""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from waypoint import __version__
from waypoint.db.engine import get_db
from waypoint.realtime.pubsub import get_broker_optional, get_redis

router = APIRouter()


@router.get("/health")
async def health_check(db: AsyncSession = Depends(get_db)):
    """Check server health and dependency connectivity."""
    checks = {"server": "ok", "version": __version__}

    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        checks["database"] = f"error: {e}"

    broker = get_broker_optional()
    if broker is None:
        checks["realtime"] = "error: broker not started"
    else:
        checks["realtime"] = "ok"
        if broker.uses_redis:
            try:
                await get_redis().ping()
                checks["redis"] = "ok" if broker.relay_live else "error: relay reconnecting"
            except Exception as e:
                checks["redis"] = f"error: {e}"
        else:
            checks["redis"] = "disabled"

    status = "healthy" if all(
        v in ("ok", "disabled") for k, v in checks.items() if k != "version"
    ) else "degraded"

    return {"status": status, **checks}
