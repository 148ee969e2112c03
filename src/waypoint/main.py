"""FastAPI application factory.

Learn: create_app() wires the pieces together and nothing else:
logging, error handlers, the middleware stack, the REST routers under
/api/v1 and the WebSocket route. The lifespan owns the two long-lived
resources, the pub/sub broker and the database engine.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from waypoint import __version__
from waypoint.api import api_router
from waypoint.config import settings
from waypoint.db.engine import engine
from waypoint.errors import install_error_handlers
from waypoint.log import configure_logging
from waypoint.middleware.rate_limit import RateLimitMiddleware
from waypoint.middleware.request_id import RequestIdMiddleware
from waypoint.middleware.security import SecurityHeadersMiddleware
from waypoint.realtime.pubsub import close_broker, init_broker
from waypoint.realtime.websocket import router as ws_router

logger = structlog.get_logger()

# Sent by list endpoints; browsers only let scripts read them if exposed
PAGING_HEADERS = ["X-Total-Count", "X-Page", "X-Limit", "X-Request-ID"]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the broker before serving; close it and the engine after.

    Learn: Closing the broker closes every open subscription, which in
    turn ends the WebSocket handlers waiting on them.
    """
    broker = await init_broker()
    logger.info(
        "waypoint.started",
        version=__version__,
        environment=settings.environment,
        redis=broker.uses_redis,
    )

    yield

    await close_broker()
    await engine.dispose()
    logger.info("waypoint.stopped")


def _install_middleware(app: FastAPI) -> None:
    # Starlette runs middleware in reverse order of registration, so a
    # request passes CORS → RateLimit → SecurityHeaders → RequestId → route.
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        RateLimitMiddleware,
        default_rpm=settings.rate_limit_rpm,
        auth_rpm=settings.rate_limit_auth_rpm,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=PAGING_HEADERS,
    )


def create_app() -> FastAPI:
    configure_logging()

    app = FastAPI(
        title="Waypoint",
        description="Share places, comment on them, follow activity in real time",
        version=__version__,
        lifespan=lifespan,
    )
    install_error_handlers(app)
    _install_middleware(app)

    app.include_router(api_router)
    app.include_router(ws_router)
    return app


# uvicorn waypoint.main:app
app = create_app()
