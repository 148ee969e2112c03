"""Domain error taxonomy and its HTTP mapping.

Services raise these; they never build HTTPException themselves.
install_error_handlers() registers one handler per family on the app,
so every failure leaves the API as {"detail": ...} with the right status.

    ValidationError  → 400   malformed or missing input
    Unauthorized     → 401   missing, invalid or expired credential
    Forbidden        → 403   valid credential, not the owner
    NotFound         → 404   missing entity or reference
    Conflict         → 409   uniqueness violation
    Internal         → 500   anything unexpected (logged, never detailed)
"""

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = structlog.get_logger()


class WaypointError(Exception):
    """Base class for errors that map to an HTTP status."""

    status_code = 500
    default_detail = "Internal server error"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class ValidationError(WaypointError):
    status_code = 400
    default_detail = "Invalid request"


class Unauthorized(WaypointError):
    status_code = 401
    default_detail = "Authentication required"


class Forbidden(WaypointError):
    status_code = 403
    default_detail = "Not allowed"


class NotFound(WaypointError):
    status_code = 404
    default_detail = "Not found"


class Conflict(WaypointError):
    status_code = 409
    default_detail = "Already exists"


class Internal(WaypointError):
    status_code = 500


async def _waypoint_error_handler(request: Request, exc: WaypointError) -> JSONResponse:
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, Unauthorized) else None
    if isinstance(exc, Internal):
        logger.error("waypoint.request.internal_error", path=request.url.path, error=exc.detail)
        return JSONResponse(status_code=500, content={"detail": Internal.default_detail})
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers=headers,
    )


async def _request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Body/query validation failures are a plain 400, not FastAPI's 422."""
    details = []
    for error in exc.errors():
        # Skip the leading "body"/"query"/"path" location
        field = ".".join(str(loc) for loc in error["loc"][1:])
        details.append({"field": field, "message": error["msg"]})
    return JSONResponse(
        status_code=400,
        content={"detail": "Validation failed", "errors": details},
    )


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "waypoint.request.unhandled_error",
        path=request.url.path,
        method=request.method,
    )
    return JSONResponse(status_code=500, content={"detail": Internal.default_detail})


def install_error_handlers(app: FastAPI) -> None:
    """Register the error handlers on a FastAPI app."""
    app.add_exception_handler(WaypointError, _waypoint_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)
