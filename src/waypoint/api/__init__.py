"""API route aggregation.

All routers registered here get mounted in main.py.

Learn: Auth is applied per route with Depends(get_current_user) rather
than per router, because each resource mixes public reads with
authenticated writes.
"""

from fastapi import APIRouter

from waypoint.api.activity import router as activity_router
from waypoint.api.health import router as health_router
from waypoint.api.places import router as places_router
from waypoint.api.users import router as users_router

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(health_router, tags=["health"])
api_router.include_router(users_router, tags=["users", "sessions"])
api_router.include_router(places_router, tags=["places", "comments"])
api_router.include_router(activity_router, tags=["activity"])
