import time
from urllib.parse import parse_qs, urlparse

import httpx
import jwt
import pytest
import pytest_asyncio
from fastapi import FastAPI

from wakti.utils.config.whoop import WhoopConfig

from .conftest import make_credential
from .oauth import WhoopOAuthService
from .orchestrator import WhoopSyncService
from .router import router
from .token_manager import TokenRefreshManager

JWT_KEY = "router-test-key"

#-----------------------------------------------------------------------------

def session_token(user_id: str) -> str:
    return jwt.encode({"sub": user_id, "exp": int(time.time()) + 600}, JWT_KEY, algorithm="HS256")


def auth_header(user_id: str) -> dict:
    return {"Authorization": f"Bearer {session_token(user_id)}"}


async def no_redis():
    return None


def build_app(config: WhoopConfig, credential_store, resource_store) -> FastAPI:
    token_manager = TokenRefreshManager(config, credential_store)

    app = FastAPI()
    app.include_router(router)
    app.state.jwt_key = JWT_KEY
    app.state.whoop_sync_service = WhoopSyncService(config, credential_store, resource_store, token_manager)
    app.state.whoop_oauth_service = WhoopOAuthService(config, credential_store, token_manager, redis_factory=no_redis)
    return app


def client_for(app: FastAPI) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver")


@pytest_asyncio.fixture
async def client(whoop, credential_store, resource_store):
    app = build_app(whoop.config(service_key="bulk-secret"), credential_store, resource_store)
    async with client_for(app) as c:
        yield c

#-----------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_missing_client_credentials(credential_store, resource_store):
    app = build_app(WhoopConfig(), credential_store, resource_store)

    async with client_for(app) as c:
        resp = await c.post("/api/v1/whoop/sync", json={}, headers=auth_header("u1"))

    assert resp.status_code == 500
    assert resp.json() == {"error": "missing_whoop_credentials"}


@pytest.mark.asyncio
async def test_user_mode_requires_session(client):
    resp = await client.post("/api/v1/whoop/sync", json={"mode": "user"})

    assert resp.status_code == 401
    assert resp.json() == {"error": "unauthorized"}


@pytest.mark.asyncio
async def test_user_mode_with_bad_token(client):
    resp = await client.post("/api/v1/whoop/sync", json={"mode": "user"}, headers={"Authorization": "Bearer nope"})

    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_user_mode_without_stored_tokens(client):
    resp = await client.post("/api/v1/whoop/sync", json={}, headers=auth_header("u1"))

    assert resp.status_code == 404
    assert resp.json() == {"error": "no_tokens"}


@pytest.mark.asyncio
async def test_user_mode_sync(client, whoop, credential_store):
    credential_store.put(make_credential("u1"))
    whoop.set_pages("sleeps", [{"id": "s1"}, {"id": "s2"}])

    resp = await client.post("/api/v1/whoop/sync", json={}, headers=auth_header("u1"))

    assert resp.status_code == 200
    assert resp.json() == {
        "success": True,
        "users": 1,
        "counts": {"cycles": 0, "sleeps": 2, "workouts": 0, "recoveries": 0},
        "reconnectNeeded": False,
        "reconnectUsers": [],
    }


@pytest.mark.asyncio
async def test_user_mode_provider_outage_still_answers_200(client, whoop, credential_store):
    whoop.token_status = 503
    credential_store.put(make_credential("u1", expires_in=10))

    resp = await client.post("/api/v1/whoop/sync", json={}, headers=auth_header("u1"))

    assert resp.status_code == 200
    assert resp.json() == {
        "success": True,
        "users": 1,
        "counts": {"cycles": 0, "sleeps": 0, "workouts": 0, "recoveries": 0},
        "reconnectNeeded": False,
        "reconnectUsers": [],
    }
    assert whoop.requests == []
    assert credential_store.rows["u1"].last_synced_at is None


@pytest.mark.asyncio
async def test_user_token_in_body(client, credential_store):
    credential_store.put(make_credential("u2"))

    resp = await client.post("/api/v1/whoop/sync", json={"user_token": session_token("u2")})

    assert resp.status_code == 200
    assert resp.json()["users"] == 1


@pytest.mark.asyncio
async def test_invalid_window(client, credential_store):
    credential_store.put(make_credential("u1"))

    bad_format = await client.post("/api/v1/whoop/sync", json={"start": "soon"}, headers=auth_header("u1"))
    inverted = await client.post(
        "/api/v1/whoop/sync",
        json={"start": "2024-02-01T00:00:00Z", "end": "2024-01-01T00:00:00Z"},
        headers=auth_header("u1"),
    )

    assert bad_format.status_code == 400
    assert bad_format.json() == {"error": "invalid_window"}
    assert inverted.status_code == 400
    assert inverted.json() == {"error": "invalid_window"}


@pytest.mark.asyncio
async def test_bulk_mode_requires_service_key(client, credential_store):
    credential_store.put(make_credential("a"))
    credential_store.put(make_credential("b"))

    denied = await client.post("/api/v1/whoop/sync", json={"mode": "bulk"})
    allowed = await client.post("/api/v1/whoop/sync", json={}, headers={"X-Service-Key": "bulk-secret"})

    assert denied.status_code == 401
    assert allowed.status_code == 200
    assert allowed.json()["users"] == 2

#-----------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_authorization_url(client):
    resp = await client.get("/api/v1/whoop/auth/url", headers=auth_header("u1"))

    assert resp.status_code == 200
    body = resp.json()
    query = parse_qs(urlparse(body["url"]).query)
    assert query["client_id"] == ["client-id"]
    assert query["response_type"] == ["code"]
    assert query["state"] == [body["state"]]
    assert "read:sleep" in query["scope"][0]


@pytest.mark.asyncio
async def test_link_status_and_disconnect(client, whoop, credential_store):
    linked = await client.post(
        "/api/v1/whoop/callback",
        json={"code": "abc", "user_token": session_token("u1")},
    )
    assert linked.status_code == 200
    assert credential_store.rows["u1"].access_token == "access-1"
    assert whoop.token_requests[0]["redirect_uri"] == "https://app.example.com/whoop/callback"

    status = await client.get("/api/v1/whoop/status", headers=auth_header("u1"))
    assert status.json() == {"connected": True, "lastSyncedAt": None, "reconnect": False}

    removed = await client.delete("/api/v1/whoop/connection", headers=auth_header("u1"))
    assert removed.json() == {"success": True, "deleted": True}
    assert "u1" not in credential_store.rows

    status = await client.get("/api/v1/whoop/status", headers=auth_header("u1"))
    assert status.json()["connected"] is False


@pytest.mark.asyncio
async def test_callback_with_incomplete_token_payload(client, whoop, credential_store):
    whoop.token_payload_override = {"access_token": "only-access"}

    resp = await client.post("/api/v1/whoop/callback", json={"code": "abc"}, headers=auth_header("u1"))

    assert resp.status_code == 502
    assert resp.json() == {"error": "invalid_token_response"}
    assert credential_store.rows == {}


@pytest.mark.asyncio
async def test_callback_without_user(client):
    resp = await client.post("/api/v1/whoop/callback", json={"code": "abc"})

    assert resp.status_code == 401
