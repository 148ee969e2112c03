"""User + session API tests.

Learn: Tests cover:
1. Registration, its response shape and duplicate prevention
2. Login → JWT tokens, and the failures that must look identical
3. Token refresh
4. Protected /users/me and password change
"""

import pytest
from sqlalchemy import func, select

from conftest import auth_headers, login, register
from waypoint.db.models import User


# ═══════════════════════════════════════════════════════════
# Registration
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_register_user(client):
    """POST /users returns 201 with {_id, name} and nothing else."""
    r = await client.post("/api/v1/users", json={"name": "John Doe", "password": "1234"})
    assert r.status_code == 201
    body = r.json()
    assert set(body) == {"_id", "name"}
    assert isinstance(body["_id"], str)
    assert body["name"] == "John Doe"
    assert "password" not in body
    assert "password_hash" not in body


@pytest.mark.asyncio
async def test_register_duplicate_name(client, session_factory):
    """Same name twice → 409, and only one row exists."""
    await register(client, "dup")

    r = await client.post("/api/v1/users", json={"name": "dup", "password": "other-pw"})
    assert r.status_code == 409
    assert r.json()["detail"] == "Name already registered"

    async with session_factory() as s:
        count = (await s.execute(select(func.count()).select_from(User).where(User.name == "dup"))).scalar_one()
    assert count == 1


@pytest.mark.asyncio
async def test_register_weak_password(client):
    """Passwords under the minimum length are a 400."""
    r = await client.post("/api/v1/users", json={"name": "weak", "password": "abc"})
    assert r.status_code == 400


@pytest.mark.asyncio
async def test_register_blank_name(client):
    r = await client.post("/api/v1/users", json={"name": "   ", "password": "1234"})
    assert r.status_code == 400


@pytest.mark.asyncio
async def test_register_missing_field(client):
    """Missing body fields are reported as 400 with field details."""
    r = await client.post("/api/v1/users", json={"name": "nopass"})
    assert r.status_code == 400
    fields = [e["field"] for e in r.json()["errors"]]
    assert "password" in fields


@pytest.mark.asyncio
async def test_password_is_hashed(client, session_factory):
    await register(client, "hashed", "plaintext-pw")
    async with session_factory() as s:
        user = (await s.execute(select(User).where(User.name == "hashed"))).scalar_one()
    assert user.password_hash != "plaintext-pw"
    assert user.password_hash.startswith("$2")


# ═══════════════════════════════════════════════════════════
# Sessions
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_login_success(client):
    user = await register(client, "login-user", "my_password")
    tokens = await login(client, "login-user", "my_password")
    assert tokens["token_type"] == "bearer"
    assert tokens["access_token"]
    assert tokens["refresh_token"]
    assert tokens["user_id"] == user["_id"]


@pytest.mark.asyncio
async def test_login_with_the_name_as_registered(client):
    """Surrounding whitespace is dropped on both register and login."""
    body = {"name": "John Doe ", "password": "1234"}
    r = await client.post("/api/v1/users", json=body)
    assert r.status_code == 201
    assert r.json()["name"] == "John Doe"

    r = await client.post("/api/v1/sessions", json=body)
    assert r.status_code == 201
    assert r.json()["user_id"] == (await login(client, "John Doe", "1234"))["user_id"]


@pytest.mark.asyncio
async def test_login_wrong_password(client):
    await register(client, "wrong-pw", "correct_password")
    r = await client.post(
        "/api/v1/sessions", json={"name": "wrong-pw", "password": "incorrect"}
    )
    assert r.status_code == 401
    assert r.headers["WWW-Authenticate"] == "Bearer"


@pytest.mark.asyncio
async def test_login_unknown_user_same_error(client):
    """Unknown name and wrong password are indistinguishable."""
    await register(client, "known", "correct_password")
    r1 = await client.post("/api/v1/sessions", json={"name": "nobody", "password": "x"})
    r2 = await client.post("/api/v1/sessions", json={"name": "known", "password": "x"})
    assert r1.status_code == r2.status_code == 401
    assert r1.json() == r2.json()


@pytest.mark.asyncio
async def test_refresh_token(client):
    await register(client, "refresher")
    tokens = await login(client, "refresher")

    r = await client.post(
        "/api/v1/sessions/refresh", json={"refresh_token": tokens["refresh_token"]}
    )
    assert r.status_code == 201
    assert r.json()["access_token"]
    assert r.json()["user_id"] == tokens["user_id"]


@pytest.mark.asyncio
async def test_refresh_with_access_token_fails(client):
    await register(client, "badref")
    tokens = await login(client, "badref")

    r = await client.post(
        "/api/v1/sessions/refresh", json={"refresh_token": tokens["access_token"]}
    )
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_refresh_token_cannot_call_api(client):
    """A refresh token is not accepted as a bearer credential."""
    await register(client, "refresh-as-access")
    tokens = await login(client, "refresh-as-access")
    r = await client.get(
        "/api/v1/users/me",
        headers={"Authorization": f"Bearer {tokens['refresh_token']}"},
    )
    assert r.status_code == 401


# ═══════════════════════════════════════════════════════════
# Protected endpoints
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_me_with_token(client):
    headers = await auth_headers(client, "me-user")
    r = await client.get("/api/v1/users/me", headers=headers)
    assert r.status_code == 200
    assert r.json()["name"] == "me-user"
    assert "created_at" in r.json()


@pytest.mark.asyncio
async def test_me_without_token(client):
    r = await client.get("/api/v1/users/me")
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_me_with_invalid_token(client):
    r = await client.get(
        "/api/v1/users/me", headers={"Authorization": "Bearer invalid_token_here"}
    )
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_me_with_wrong_scheme(client):
    r = await client.get("/api/v1/users/me", headers={"Authorization": "Basic abc"})
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_get_user_by_id(client):
    user = await register(client, "public-profile")
    r = await client.get(f"/api/v1/users/{user['_id']}")
    assert r.status_code == 200
    assert r.json()["name"] == "public-profile"


@pytest.mark.asyncio
async def test_get_unknown_user(client):
    r = await client.get("/api/v1/users/00000000-0000-0000-0000-000000000099")
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_change_password(client):
    headers = await auth_headers(client, "changer", "old-password")

    r = await client.patch(
        "/api/v1/users/me/password",
        json={"current_password": "old-password", "new_password": "new-password"},
        headers=headers,
    )
    assert r.status_code == 204

    r = await client.post(
        "/api/v1/sessions", json={"name": "changer", "password": "old-password"}
    )
    assert r.status_code == 401
    await login(client, "changer", "new-password")


@pytest.mark.asyncio
async def test_change_password_requires_current(client):
    headers = await auth_headers(client, "careful", "old-password")
    r = await client.patch(
        "/api/v1/users/me/password",
        json={"current_password": "guess", "new_password": "new-password"},
        headers=headers,
    )
    assert r.status_code == 401
