from datetime import datetime, timezone

import pytest
from cryptography.fernet import Fernet

from wakti.utils.config import FernetEncrypter

from . import credential_store as credential_store_module
from . import resource_store as resource_store_module
from .credential_store import PgCredentialStore
from .models import ResourceType
from .resource_store import BODY_TABLE, RESOURCE_TABLES, PgResourceStore

#-----------------------------------------------------------------------------

class QueryRecorder:
    def __init__(self, result=None):
        self.calls = []
        self.result = result

    async def __call__(self, query, params=None, fieldList=None, **kwargs):
        self.calls.append({"query": " ".join(query.split()), "params": params, "fieldList": fieldList})
        return self.result


@pytest.fixture
def encrypter():
    return FernetEncrypter(Fernet.generate_key().decode())

#-----------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_tokens_are_encrypted_at_rest(monkeypatch, encrypter):
    recorder = QueryRecorder()
    monkeypatch.setattr(credential_store_module, "execute_query", recorder)
    store = PgCredentialStore(encrypter)
    expires_at = datetime(2024, 1, 1, tzinfo=timezone.utc)

    await store.save_tokens("u1", "access-plain", "refresh-plain", expires_at)

    [call] = recorder.calls
    assert "ON CONFLICT (user_id) DO UPDATE" in call["query"]
    assert "reconnect = FALSE" in call["query"]
    params = call["params"]
    assert params["access_token"].startswith("gAAAA")
    assert encrypter.decrypt(params["access_token"]) == "access-plain"
    assert encrypter.decrypt(params["refresh_token"]) == "refresh-plain"
    assert params["expires_at"] == expires_at


@pytest.mark.asyncio
async def test_get_decrypts_and_reads_plaintext_rows(monkeypatch, encrypter):
    recorder = QueryRecorder([
        {
            "user_id": 7,
            "access_token": encrypter.encrypt("access-plain"),
            "refresh_token": "legacy-plaintext",
            "expires_at": datetime(2024, 1, 1),
            "last_synced_at": None,
            "reconnect": False,
        }
    ])
    monkeypatch.setattr(credential_store_module, "execute_query", recorder)

    credential = await PgCredentialStore(encrypter).get("7")

    assert credential.user_id == "7"
    assert credential.access_token == "access-plain"
    assert credential.refresh_token == "legacy-plaintext"
    assert credential.expires_at.tzinfo is not None
    assert recorder.calls[0]["params"] == {"user_id": "7"}


@pytest.mark.asyncio
async def test_get_missing_user(monkeypatch, encrypter):
    monkeypatch.setattr(credential_store_module, "execute_query", QueryRecorder([]))

    assert await PgCredentialStore(encrypter).get("nobody") is None


@pytest.mark.asyncio
async def test_list_all_excludes_reconnect_rows(monkeypatch, encrypter):
    recorder = QueryRecorder([])
    monkeypatch.setattr(credential_store_module, "execute_query", recorder)

    await PgCredentialStore(encrypter).list_all()

    assert "WHERE reconnect = FALSE" in recorder.calls[0]["query"]


@pytest.mark.asyncio
async def test_delete_reports_record_count(monkeypatch, encrypter):
    monkeypatch.setattr(credential_store_module, "execute_query", QueryRecorder({"record_count": 1}))

    assert await PgCredentialStore(encrypter).delete("u1") is True

#-----------------------------------------------------------------------------

def test_upsert_sql_for_recovery():
    sql = PgResourceStore.build_upsert_sql(RESOURCE_TABLES[ResourceType.RECOVERIES])

    assert sql.startswith("INSERT INTO whoop_recovery (")
    assert 'ON CONFLICT ("sleep_id") DO UPDATE SET' in sql
    assert '"sleep_id" = EXCLUDED' not in sql
    assert '"score" = EXCLUDED."score"' in sql
    assert "CAST(:data AS jsonb)" in sql


def test_upsert_sql_quotes_reserved_columns():
    sql = PgResourceStore.build_upsert_sql(RESOURCE_TABLES[ResourceType.CYCLES])

    assert '"end" = EXCLUDED."end"' in sql
    assert ":end" in sql


@pytest.mark.asyncio
async def test_upsert_rows_sends_one_batch(monkeypatch):
    recorder = QueryRecorder()
    monkeypatch.setattr(resource_store_module, "execute_query", recorder)
    rows = [
        {"user_id": "u1", "height_meter": 1.8, "weight_kilogram": None, "max_heart_rate": 190, "data": {"a": 1}, "extra": "ignored"},
    ]

    written = await PgResourceStore().upsert_rows(BODY_TABLE, rows)

    assert written == 1
    [call] = recorder.calls
    assert call["fieldList"] == [
        {"user_id": "u1", "height_meter": 1.8, "weight_kilogram": None, "max_heart_rate": 190, "data": '{"a": 1}'},
    ]


@pytest.mark.asyncio
async def test_upsert_rows_skips_empty_batches(monkeypatch):
    recorder = QueryRecorder()
    monkeypatch.setattr(resource_store_module, "execute_query", recorder)

    assert await PgResourceStore().upsert_rows(BODY_TABLE, []) == 0
    assert recorder.calls == []
