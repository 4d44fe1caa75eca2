"""
WHOOP sync orchestration

Drives one user (or every connected user) through token check, concurrent
fetches, normalization and batched upserts.
"""

import asyncio
import logging
import time
from dataclasses import asdict
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import aiohttp

from wakti.utils.config.whoop import WhoopConfig

from .credential_store import CredentialStore
from .errors import InvalidWindow, NoCredentials, RefreshFailed
from .fetcher import DEFAULT_KEY_FIELDS, fetch_collection, fetch_single
from .models import ResourceType, SyncSummary, UserSyncResult, WhoopCredential
from .normalize import (
    normalize_body,
    normalize_cycles,
    normalize_profile,
    normalize_recoveries,
    normalize_sleeps,
    normalize_workouts,
)
from .resource_store import RESOURCE_TABLES, ResourceStore
from .retry import call_with_refresh
from .token_manager import TokenCell, TokenRefreshManager

NORMALIZERS = {
    ResourceType.CYCLES: normalize_cycles,
    ResourceType.SLEEPS: normalize_sleeps,
    ResourceType.WORKOUTS: normalize_workouts,
    ResourceType.RECOVERIES: normalize_recoveries,
}

# Recovery rows are stored per sleep, so dedup must agree with that key.
KEY_FIELDS = {
    ResourceType.RECOVERIES: ("sleep_id", "id"),
}

#-----------------------------------------------------------------------------

def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    return _as_utc(value).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def resolve_window(
    start: Optional[datetime],
    end: Optional[datetime],
    window_days: int,
    now: Optional[datetime] = None,
) -> Tuple[datetime, datetime]:
    """Caller's window, or the last `window_days` days through now"""
    now = now or datetime.now(timezone.utc)

    end = _as_utc(end) if end is not None else now
    start = _as_utc(start) if start is not None else end - timedelta(days=window_days)

    if start > end:
        raise InvalidWindow(f"start {start.isoformat()} is after end {end.isoformat()}")
    return start, end


def chunked(rows: List[Any], size: int) -> List[List[Any]]:
    return [rows[i:i + size] for i in range(0, len(rows), size)]

#-----------------------------------------------------------------------------

class WhoopSyncService:
    """Pulls WHOOP data into the resource tables, one user or all users"""

    def __init__(
        self,
        config: WhoopConfig,
        credential_store: CredentialStore,
        resource_store: ResourceStore,
        token_manager: Optional[TokenRefreshManager] = None,
        session_factory: Callable[[], aiohttp.ClientSession] = aiohttp.ClientSession,
    ):
        self.config = config
        self.credential_store = credential_store
        self.resource_store = resource_store
        self.token_manager = token_manager or TokenRefreshManager(config, credential_store)
        self.session_factory = session_factory

        self.collection_urls = {
            ResourceType.CYCLES: config.cycle_url,
            ResourceType.SLEEPS: config.sleep_url,
            ResourceType.WORKOUTS: config.workout_url,
            ResourceType.RECOVERIES: config.recovery_url,
        }

    # -----------------------------------------------------

    async def sync_user(
        self,
        user_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> SyncSummary:
        """Sync a single user. Raises NoCredentials when nothing is stored for them; any later failure lands in failed_users."""
        window = resolve_window(start, end, self.config.window_days)

        credential = await self.credential_store.get(user_id)
        if credential is None:
            raise NoCredentials(user_id)

        summary = SyncSummary(users=1)
        await self._sync_contained(credential, window, summary)
        return summary

    async def sync_all(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> SyncSummary:
        """Sync every connected user, one after another. A failing user never stops the pass."""
        window = resolve_window(start, end, self.config.window_days)

        credentials = await self.credential_store.list_all()
        summary = SyncSummary(users=len(credentials))

        start_ts = time.time()
        for credential in credentials:
            if not credential.access_token and not credential.refresh_token:
                logging.warning(f"[WHOOP] Skipping user {credential.user_id}: no usable tokens")
                summary.skipped_users.append(credential.user_id)
                continue

            await self._sync_contained(credential, window, summary)

        logging.info(
            f"[WHOOP] Bulk sync finished in {time.time() - start_ts:.2f}s: users={summary.users}, "
            f"failed={len(summary.failed_users)}, reconnect={len(summary.reconnect_users)}, counts={asdict(summary.counts)}"
        )
        return summary

    # -----------------------------------------------------

    async def _sync_contained(self, credential: WhoopCredential, window: Tuple[datetime, datetime], summary: SyncSummary):
        """A user's failure is logged and recorded in the summary, never raised"""
        try:
            result = await self._sync_credential(credential, window)
            summary.add_user(result)
        except Exception as e:
            logging.error(f"[WHOOP] Sync failed for user {credential.user_id}: {str(e)}", exc_info=True)
            summary.failed_users.append(credential.user_id)

    async def _sync_credential(self, credential: WhoopCredential, window: Tuple[datetime, datetime]) -> UserSyncResult:
        user_id = credential.user_id
        result = UserSyncResult(user_id=user_id)
        cell = TokenCell(credential, self.token_manager)

        if self.token_manager.should_refresh(credential):
            logging.info(f"[WHOOP] Access token for user {user_id} expires soon, refreshing before fetch")
            try:
                await cell.refresh()
            except RefreshFailed:
                if not cell.reconnect_needed:
                    raise
                await self._flag_reconnect(user_id)
                result.reconnect_needed = True
                return result

        params = {
            "start": format_timestamp(window[0]),
            "end": format_timestamp(window[1]),
        }

        async with self.session_factory() as session:
            fetched = await self._fetch_all(session, cell, params)

        collections: Dict[ResourceType, List[Dict[str, Any]]] = fetched["collections"]
        for resource, records in collections.items():
            result.counts.add(resource, len(records))
            rows = NORMALIZERS[resource](user_id, records)
            await self._upsert_batches(user_id, resource, rows)

        profile = normalize_profile(user_id, fetched["profile"])
        if profile is not None:
            result.profile_synced = await self._upsert_single(user_id, "profile", self.resource_store.upsert_profile(profile))

        body = normalize_body(user_id, fetched["body"])
        if body is not None:
            result.body_synced = await self._upsert_single(user_id, "body", self.resource_store.upsert_body(body))

        result.refreshed = cell.refreshed
        result.reconnect_needed = cell.reconnect_needed

        if cell.reconnect_needed:
            await self._flag_reconnect(user_id)
        else:
            await self.credential_store.update_last_synced(user_id, datetime.now(timezone.utc))

        logging.info(
            f"[WHOOP] Synced user {user_id}: counts={asdict(result.counts)}, "
            f"refreshed={result.refreshed}, reconnect_needed={result.reconnect_needed}"
        )
        return result

    async def _fetch_all(self, session: aiohttp.ClientSession, cell: TokenCell, params: Dict[str, str]) -> Dict[str, Any]:
        timeout = self.config.request_timeout

        def collection(resource: ResourceType) -> Callable[[str], Awaitable[List[Dict[str, Any]]]]:
            url = self.collection_urls[resource]
            key_fields = KEY_FIELDS.get(resource, DEFAULT_KEY_FIELDS)
            return lambda token: fetch_collection(session, url, token, params, key_fields=key_fields, request_timeout=timeout)

        def single(url: str) -> Callable[[str], Awaitable[Optional[Dict[str, Any]]]]:
            return lambda token: fetch_single(session, url, token, request_timeout=timeout)

        resources = list(self.collection_urls)
        results = await asyncio.gather(
            *[self._guarded(cell, resource.value, collection(resource), []) for resource in resources],
            self._guarded(cell, "profile", single(self.config.profile_url), None),
            self._guarded(cell, "body", single(self.config.body_url), None),
        )

        return {
            "collections": dict(zip(resources, results[:len(resources)])),
            "profile": results[len(resources)],
            "body": results[len(resources) + 1],
        }

    async def _guarded(self, cell: TokenCell, name: str, operation: Callable[[str], Awaitable[Any]], default: Any) -> Any:
        try:
            return await call_with_refresh(cell, operation)
        except Exception as e:
            logging.warning(f"[WHOOP] Fetching {name} failed for user {cell.user_id}: {type(e).__name__} {str(e)}")
            return default

    async def _upsert_batches(self, user_id: str, resource: ResourceType, rows: List[Any]) -> int:
        table = RESOURCE_TABLES[resource]
        written = 0
        for index, batch in enumerate(chunked(rows, self.config.batch_size)):
            try:
                written += await self.resource_store.upsert_rows(table, [asdict(row) for row in batch])
            except Exception as e:
                logging.error(
                    f"[WHOOP] Upsert of {resource.value} batch {index} ({len(batch)} rows) failed for user {user_id}: {str(e)}",
                    exc_info=True,
                )
        return written

    async def _upsert_single(self, user_id: str, name: str, operation: Awaitable[None]) -> bool:
        try:
            await operation
            return True
        except Exception as e:
            logging.error(f"[WHOOP] Upsert of {name} failed for user {user_id}: {str(e)}", exc_info=True)
            return False

    async def _flag_reconnect(self, user_id: str) -> None:
        try:
            await self.credential_store.mark_reconnect(user_id)
        except Exception as e:
            logging.error(f"[WHOOP] Failed to flag user {user_id} for reconnect: {str(e)}")
