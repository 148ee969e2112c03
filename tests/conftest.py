"""Test fixtures — a fresh in-memory database and broker for every test.

Learn: Testing pattern for async SQLAlchemy + FastAPI:

1. Each test gets its own in-memory SQLite engine (StaticPool keeps the one
   connection alive so every session sees the same database).
2. get_db is overridden to hand out sessions from that engine, so the
   services commit for real and each test starts from an empty schema.
3. A fresh in-process broker (no Redis) is started and closed around the test.

The environment is set before waypoint is imported so settings pick it up.
"""

import os

os.environ.setdefault("WAYPOINT_ENVIRONMENT", "test")
os.environ.setdefault("WAYPOINT_DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("WAYPOINT_REDIS_URL", "")
os.environ.setdefault("WAYPOINT_BCRYPT_ROUNDS", "4")
os.environ.setdefault("WAYPOINT_JWT_SECRET", "test-secret-not-for-production-use-0123456789")

import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool  # noqa: E402

from waypoint.db.engine import create_schema, get_db  # noqa: E402
from waypoint.main import app  # noqa: E402
from waypoint.realtime.pubsub import close_broker, init_broker  # noqa: E402


@pytest_asyncio.fixture()
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture()
async def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture()
async def db_session(session_factory):
    """A session for tests that drive services directly or inspect rows."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture()
async def broker():
    """In-process broker, the same instance the app publishes to."""
    b = await init_broker(redis_url="")
    yield b
    await close_broker()


@pytest_asyncio.fixture()
async def client(session_factory, broker):
    """HTTP client with the app's get_db pointed at the test database.

    Learn: Auth is NOT overridden. Tests register and log in through the
    API and send real bearer tokens, so ownership rules are exercised
    end to end.
    """
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ─── Helpers ─────────────────────────────────────────────


async def register(client, name: str, password: str = "secret-pw") -> dict:
    r = await client.post("/api/v1/users", json={"name": name, "password": password})
    assert r.status_code == 201, r.text
    return r.json()


async def login(client, name: str, password: str = "secret-pw") -> dict:
    r = await client.post("/api/v1/sessions", json={"name": name, "password": password})
    assert r.status_code == 201, r.text
    return r.json()


async def auth_headers(client, name: str, password: str = "secret-pw") -> dict:
    """Register + login, return Authorization headers."""
    await register(client, name, password)
    tokens = await login(client, name, password)
    return {"Authorization": f"Bearer {tokens['access_token']}"}


@pytest_asyncio.fixture()
async def alice(client):
    return await auth_headers(client, "alice")


@pytest_asyncio.fixture()
async def bob(client):
    return await auth_headers(client, "bob")
