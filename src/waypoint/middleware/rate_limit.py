"""Rate limiting middleware — fixed one-minute windows counted in Redis.

Learn: Every request increments a counter keyed by client IP, bucket
and minute: "waypoint:rl:{ip}:{bucket}:{minute}". The "auth" bucket
(registration, login, token refresh) has its own, lower limit so
password guessing can't borrow from the general allowance.

Without Redis (the broker runs in-process, e.g. in tests) requests
pass through unlimited.
"""

import time

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from waypoint.realtime.pubsub import get_redis

logger = structlog.get_logger()

AUTH_ENDPOINTS = frozenset({
    "/api/v1/users",
    "/api/v1/sessions",
    "/api/v1/sessions/refresh",
})
WINDOW_SECONDS = 60


def is_auth_request(request: Request) -> bool:
    return request.method == "POST" and request.url.path.rstrip("/") in AUTH_ENDPOINTS


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, default_rpm: int = 100, auth_rpm: int = 10):
        super().__init__(app)
        self.default_rpm = default_rpm
        self.auth_rpm = auth_rpm

    async def _hit(self, redis, key: str) -> int:
        """Count this request in its window. The key outlives the window once."""
        async with redis.pipeline(transaction=True) as pipe:
            pipe.incr(key)
            pipe.expire(key, WINDOW_SECONDS * 2)
            count, _ = await pipe.execute()
        return count

    async def dispatch(self, request: Request, call_next) -> Response:
        try:
            redis = get_redis()
        except RuntimeError:
            return await call_next(request)

        bucket, limit = (
            ("auth", self.auth_rpm) if is_auth_request(request) else ("api", self.default_rpm)
        )
        ip = request.client.host if request.client else "unknown"
        window = int(time.time() // WINDOW_SECONDS)

        try:
            count = await self._hit(redis, f"waypoint:rl:{ip}:{bucket}:{window}")
        except Exception as e:
            # Counting failed; serve the request rather than refuse it
            logger.warning("waypoint.rate_limit.redis_error", error=str(e))
            return await call_next(request)

        if count > limit:
            logger.info("waypoint.rate_limit.exceeded", ip=ip, bucket=bucket)
            retry_after = WINDOW_SECONDS - int(time.time()) % WINDOW_SECONDS
            return JSONResponse(
                status_code=429,
                content={"detail": "Rate limit exceeded. Try again later."},
                headers={"Retry-After": str(retry_after)},
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(limit)
        response.headers["X-RateLimit-Remaining"] = str(max(0, limit - count))
        return response
