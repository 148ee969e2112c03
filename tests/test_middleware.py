"""Tests for security middleware — headers, request IDs, rate-limit buckets.

Learn: Rate limiting is skipped in tests (the broker runs without Redis),
so the limiter itself is only checked for which bucket a request lands in.
"""

import pytest
from starlette.requests import Request

from waypoint.middleware.rate_limit import is_auth_request


def make_request(method: str, path: str) -> Request:
    return Request({
        "type": "http",
        "method": method,
        "path": path,
        "query_string": b"",
        "headers": [],
    })


@pytest.mark.asyncio
async def test_security_headers_on_health(client):
    """Health endpoint returns security headers."""
    r = await client.get("/api/v1/health")
    assert r.status_code == 200
    assert r.headers["X-Content-Type-Options"] == "nosniff"
    assert r.headers["X-Frame-Options"] == "DENY"
    assert r.headers["Referrer-Policy"] == "strict-origin-when-cross-origin"


@pytest.mark.asyncio
async def test_security_headers_on_errors(client):
    r = await client.get("/api/v1/places/00000000-0000-0000-0000-000000000001")
    assert r.status_code == 404
    assert r.headers["X-Content-Type-Options"] == "nosniff"


@pytest.mark.asyncio
async def test_request_id_generated(client):
    """Each request gets a unique X-Request-ID header."""
    r1 = await client.get("/api/v1/health")
    r2 = await client.get("/api/v1/health")
    assert "X-Request-ID" in r1.headers
    assert "X-Request-ID" in r2.headers
    assert r1.headers["X-Request-ID"] != r2.headers["X-Request-ID"]


@pytest.mark.asyncio
async def test_request_id_propagated(client):
    """Incoming X-Request-ID is propagated through the response."""
    custom_id = "test-trace-12345"
    r = await client.get(
        "/api/v1/health",
        headers={"X-Request-ID": custom_id},
    )
    assert r.headers["X-Request-ID"] == custom_id


@pytest.mark.asyncio
async def test_no_hsts_on_http(client):
    """HSTS header is NOT set on HTTP connections (only HTTPS)."""
    r = await client.get("/api/v1/health")
    assert "Strict-Transport-Security" not in r.headers


@pytest.mark.asyncio
async def test_cors_exposes_paging_headers(client):
    r = await client.get("/api/v1/places", headers={"Origin": "http://localhost:3000"})
    assert r.status_code == 200
    exposed = r.headers["Access-Control-Expose-Headers"]
    assert "X-Total-Count" in exposed


@pytest.mark.parametrize(
    "method,path,expected",
    [
        ("POST", "/api/v1/users", True),
        ("POST", "/api/v1/sessions", True),
        ("POST", "/api/v1/sessions/refresh", True),
        ("POST", "/api/v1/sessions/", True),
        ("GET", "/api/v1/users/me", False),
        ("POST", "/api/v1/places", False),
        ("PATCH", "/api/v1/users/me/password", False),
    ],
)
def test_auth_bucket(method, path, expected):
    """Registration and login share the stricter limit."""
    assert is_auth_request(make_request(method, path)) is expected


@pytest.mark.asyncio
async def test_hsts_behind_tls_proxy(client):
    r = await client.get("/api/v1/health", headers={"X-Forwarded-Proto": "https"})
    assert r.headers["Strict-Transport-Security"].startswith("max-age=")


class CountingRedis:
    """Just enough of redis.asyncio for the limiter: a counting pipeline."""

    def __init__(self):
        self.counts: dict[str, int] = {}

    def pipeline(self, transaction: bool = True):
        return _Pipeline(self)


class _Pipeline:
    def __init__(self, redis: CountingRedis):
        self.redis = redis
        self.key = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def incr(self, key):
        # Ignore the minute so a test straddling a window boundary still counts up
        self.key = key.rsplit(":", 1)[0]

    def expire(self, key, seconds):
        pass

    async def execute(self):
        self.redis.counts[self.key] = self.redis.counts.get(self.key, 0) + 1
        return [self.redis.counts[self.key], True]


@pytest.mark.asyncio
async def test_auth_bucket_is_limited(client, monkeypatch):
    from waypoint.middleware import rate_limit

    fake = CountingRedis()
    monkeypatch.setattr(rate_limit, "get_redis", lambda: fake)

    body = {"name": "nobody", "password": "wrong"}
    statuses = [(await client.post("/api/v1/sessions", json=body)).status_code for _ in range(11)]
    assert statuses[:10] == [401] * 10
    assert statuses[10] == 429

    # The general bucket is counted separately
    r = await client.get("/api/v1/health")
    assert r.status_code == 200
    assert r.headers["X-RateLimit-Limit"] == "100"


@pytest.mark.asyncio
async def test_unsafe_request_id_replaced(client):
    r = await client.get("/api/v1/health", headers={"X-Request-ID": "bad id\twith spaces"})
    assert r.headers["X-Request-ID"] != "bad id\twith spaces"
    assert len(r.headers["X-Request-ID"]) == 36
