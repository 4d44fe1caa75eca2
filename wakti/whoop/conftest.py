"""
Test doubles for the WHOOP sync: in-memory stores and a fake WHOOP API server
"""

import copy
import itertools
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from wakti.utils.config.whoop import WhoopConfig

from .credential_store import CredentialStore
from .models import WhoopCredential
from .resource_store import ResourceStore, ResourceTable

#-----------------------------------------------------------------------------

class InMemoryCredentialStore(CredentialStore):
    def __init__(self):
        self.rows: Dict[str, WhoopCredential] = {}
        self.saves: List[str] = []

    def put(self, credential: WhoopCredential) -> WhoopCredential:
        self.rows[credential.user_id] = credential
        return credential

    async def get(self, user_id: str) -> Optional[WhoopCredential]:
        credential = self.rows.get(user_id)
        return copy.copy(credential) if credential else None

    async def list_all(self) -> List[WhoopCredential]:
        return [copy.copy(c) for c in self.rows.values() if not c.reconnect]

    async def save_tokens(self, user_id, access_token, refresh_token, expires_at, scope=None) -> None:
        existing = self.rows.get(user_id)
        self.rows[user_id] = WhoopCredential(
            user_id=user_id,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=expires_at,
            last_synced_at=existing.last_synced_at if existing else None,
            reconnect=False,
        )
        self.saves.append(user_id)

    async def update_last_synced(self, user_id: str, at: datetime) -> None:
        self.rows[user_id].last_synced_at = at

    async def mark_reconnect(self, user_id: str) -> None:
        self.rows[user_id].reconnect = True

    async def delete(self, user_id: str) -> bool:
        return self.rows.pop(user_id, None) is not None


class InMemoryResourceStore(ResourceStore):
    """Tables keyed by conflict key, so repeated upserts overwrite in place"""

    def __init__(self):
        self.tables: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.batches: List[tuple] = []
        self.fail_tables: set = set()

    async def upsert_rows(self, table: ResourceTable, rows: List[Dict[str, Any]]) -> int:
        self.batches.append((table.name, len(rows)))
        if table.name in self.fail_tables:
            raise RuntimeError(f"write to {table.name} failed")

        target = self.tables.setdefault(table.name, {})
        for row in rows:
            target[str(row[table.conflict_key])] = dict(row)
        return len(rows)

    def rows(self, table_name: str) -> Dict[str, Dict[str, Any]]:
        return self.tables.get(table_name, {})

#-----------------------------------------------------------------------------

API_PREFIX = "/developer/v1"
TOKEN_PATH = "/oauth/oauth2/token"

COLLECTION_PATHS = {
    "cycles": f"{API_PREFIX}/cycle",
    "sleeps": f"{API_PREFIX}/activity/sleep",
    "workouts": f"{API_PREFIX}/activity/workout",
    "recoveries": f"{API_PREFIX}/recovery",
}
PROFILE_PATH = f"{API_PREFIX}/user/profile/basic"
BODY_PATH = f"{API_PREFIX}/user/measurement/body"


class FakeWhoop:
    """
    Scriptable stand-in for the WHOOP API.

    Collection pages are keyed by the cursor that requests them (None for the
    first page). Only tokens in `valid_tokens` are accepted; a successful
    refresh issues `access-1`, `access-2`, ... and makes it valid.
    """

    def __init__(self):
        self.valid_tokens = {"good-token"}
        self.pages: Dict[str, Dict[Optional[str], Dict[str, Any]]] = {}
        self.singles: Dict[str, Dict[str, Any]] = {}
        self.status_overrides: Dict[str, int] = {}
        self.rate_limited: Dict[str, int] = {}
        self.always_unauthorized: set = set()

        self.token_status = 200
        self.token_payload_override: Optional[Dict[str, Any]] = None
        self.omit_refresh_token = False
        self.token_requests: List[Dict[str, str]] = []

        self.requests: List[Dict[str, Any]] = []
        self._counter = itertools.count(1)

        self.server: Optional[TestServer] = None

    # -----------------------------------------------------

    @property
    def base_url(self) -> str:
        return str(self.server.make_url("")).rstrip("/")

    def config(self, **overrides) -> WhoopConfig:
        options = dict(
            client_id="client-id",
            client_secret="client-secret",
            redirect_url="https://app.example.com/whoop/callback",
            auth_url=f"{self.base_url}/oauth/oauth2/auth",
            token_url=f"{self.base_url}{TOKEN_PATH}",
            api_base_url=f"{self.base_url}{API_PREFIX}",
            request_timeout=5,
        )
        options.update(overrides)
        return WhoopConfig(**options)

    def set_pages(self, resource: str, *pages: List[Dict[str, Any]]) -> None:
        """Serve `pages` in order, chained by generated cursors"""
        path = COLLECTION_PATHS[resource]
        chain: Dict[Optional[str], Dict[str, Any]] = {}
        cursor = None
        for index, records in enumerate(pages):
            next_cursor = f"{resource}-cursor-{index + 1}" if index + 1 < len(pages) else None
            body: Dict[str, Any] = {"records": records}
            if next_cursor:
                body["next_token"] = next_cursor
            chain[cursor] = body
            cursor = next_cursor
        self.pages[path] = chain

    def requests_to(self, path: str) -> List[Dict[str, Any]]:
        return [r for r in self.requests if r["path"] == path]

    # -----------------------------------------------------

    async def handle_token(self, request: web.Request) -> web.Response:
        form = dict(await request.post())
        self.token_requests.append(form)

        if self.token_status != 200:
            return web.json_response({"error": "invalid_grant"}, status=self.token_status)

        if self.token_payload_override is not None:
            return web.json_response(self.token_payload_override)

        access_token = f"access-{next(self._counter)}"
        self.valid_tokens.add(access_token)

        payload = {"access_token": access_token, "expires_in": 3600, "scope": "offline read:sleep"}
        if not self.omit_refresh_token:
            payload["refresh_token"] = f"refresh-{access_token}"
        return web.json_response(payload)

    async def handle_api(self, request: web.Request) -> web.Response:
        token = request.headers.get("Authorization", "").removeprefix("Bearer ")
        self.requests.append({"path": request.path, "token": token, "query": dict(request.query)})

        if request.path in self.always_unauthorized or token not in self.valid_tokens:
            return web.json_response({"error": "unauthorized"}, status=401)

        if self.rate_limited.get(request.path, 0) > 0:
            self.rate_limited[request.path] -= 1
            return web.json_response({"error": "rate limited"}, status=429, headers={"Retry-After": "7"})

        status = self.status_overrides.get(request.path)
        if status:
            return web.json_response({"error": "failure"}, status=status)

        if request.path in (PROFILE_PATH, BODY_PATH):
            if request.path not in self.singles:
                return web.json_response({"error": "not found"}, status=404)
            return web.json_response(self.singles[request.path])

        chain = self.pages.get(request.path)
        if chain is None:
            return web.json_response({"records": []})

        cursor = request.query.get("next_token") or request.query.get("nextToken")
        body = chain.get(cursor)
        if body is None:
            return web.json_response({"error": "unknown cursor"}, status=400)
        return web.json_response(body)

    def make_app(self) -> web.Application:
        app = web.Application()
        app.router.add_post(TOKEN_PATH, self.handle_token)
        app.router.add_get(API_PREFIX + "/{tail:.*}", self.handle_api)
        return app

#-----------------------------------------------------------------------------

@pytest_asyncio.fixture
async def whoop():
    fake = FakeWhoop()
    fake.server = TestServer(fake.make_app())
    await fake.server.start_server()
    try:
        yield fake
    finally:
        await fake.server.close()


@pytest.fixture
def credential_store():
    return InMemoryCredentialStore()


@pytest.fixture
def resource_store():
    return InMemoryResourceStore()


def make_credential(user_id: str = "user-1", access_token: str = "good-token", expires_in: Optional[float] = 3600, **kwargs) -> WhoopCredential:
    expires_at = None
    if expires_in is not None:
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=expires_in)
    return WhoopCredential(
        user_id=user_id,
        access_token=access_token,
        refresh_token=kwargs.pop("refresh_token", f"refresh-of-{user_id}"),
        expires_at=expires_at,
        **kwargs,
    )
