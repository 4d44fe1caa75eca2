"""
Credential store for WHOOP OAuth2 tokens

One row per user in `user_whoop_tokens`. Tokens are encrypted at rest when a
TOKEN_ENCRYPTION_KEY is configured.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from wakti.utils import execute_query
from wakti.utils.config import FernetEncrypter, global_config

from .models import WhoopCredential


class CredentialStore(ABC):
    """Per-user OAuth2 credential records"""

    @abstractmethod
    async def get(self, user_id: str) -> Optional[WhoopCredential]:
        pass

    @abstractmethod
    async def list_all(self) -> List[WhoopCredential]:
        """All credentials eligible for bulk sync (rows flagged for reconnect are excluded)"""
        pass

    @abstractmethod
    async def save_tokens(
        self,
        user_id: str,
        access_token: str,
        refresh_token: str,
        expires_at: Optional[datetime],
        scope: Optional[List[str]] = None,
    ) -> None:
        """Replace access token, refresh token and expiry together; clears the reconnect flag"""
        pass

    @abstractmethod
    async def update_last_synced(self, user_id: str, at: datetime) -> None:
        pass

    @abstractmethod
    async def mark_reconnect(self, user_id: str) -> None:
        pass

    @abstractmethod
    async def delete(self, user_id: str) -> bool:
        pass


class PgCredentialStore(CredentialStore):
    """PostgreSQL-backed credential store"""

    TABLE = "user_whoop_tokens"

    def __init__(self, encrypter: Optional[FernetEncrypter] = None):
        if encrypter is None:
            config = global_config()
            encrypter = FernetEncrypter(config.get_fernet_key("TOKEN_ENCRYPTION_KEY") if config else "")
        self._encrypter = encrypter

        if not self._encrypter.enabled:
            logging.warning("TOKEN_ENCRYPTION_KEY not configured, WHOOP tokens are stored in plaintext")

    def _row_to_credential(self, row: Dict[str, Any]) -> WhoopCredential:
        return WhoopCredential(
            user_id=str(row["user_id"]),
            access_token=self._encrypter.decrypt(row.get("access_token") or ""),
            refresh_token=self._encrypter.decrypt(row.get("refresh_token") or ""),
            expires_at=_as_utc(row.get("expires_at")),
            last_synced_at=_as_utc(row.get("last_synced_at")),
            reconnect=bool(row.get("reconnect")),
        )

    async def get(self, user_id: str) -> Optional[WhoopCredential]:
        query = f"""
        SELECT user_id, access_token, refresh_token, expires_at, last_synced_at, reconnect
        FROM {self.TABLE}
        WHERE user_id = :user_id
        """
        rows = await execute_query(query=query, params={"user_id": user_id})
        if not rows:
            return None
        return self._row_to_credential(rows[0])

    async def list_all(self) -> List[WhoopCredential]:
        query = f"""
        SELECT user_id, access_token, refresh_token, expires_at, last_synced_at, reconnect
        FROM {self.TABLE}
        WHERE reconnect = FALSE
        ORDER BY created_at
        """
        rows = await execute_query(query=query)

        credentials = []
        for row in rows or []:
            try:
                credentials.append(self._row_to_credential(row))
            except Exception as e:
                logging.error(f"Failed to load WHOOP credentials for user {row.get('user_id')}: {str(e)}")

        logging.info(f"Found {len(credentials)} users with WHOOP credentials")
        return credentials

    async def save_tokens(
        self,
        user_id: str,
        access_token: str,
        refresh_token: str,
        expires_at: Optional[datetime],
        scope: Optional[List[str]] = None,
    ) -> None:
        query = f"""
        INSERT INTO {self.TABLE}
            (user_id, access_token, refresh_token, expires_at, scope, reconnect, created_at, updated_at)
        VALUES
            (:user_id, :access_token, :refresh_token, :expires_at, :scope, FALSE, CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)
        ON CONFLICT (user_id) DO UPDATE SET
            access_token = EXCLUDED.access_token,
            refresh_token = EXCLUDED.refresh_token,
            expires_at = EXCLUDED.expires_at,
            scope = COALESCE(EXCLUDED.scope, {self.TABLE}.scope),
            reconnect = FALSE,
            updated_at = CURRENT_TIMESTAMP
        """
        await execute_query(
            query=query,
            params={
                "user_id": user_id,
                "access_token": self._encrypter.encrypt(access_token),
                "refresh_token": self._encrypter.encrypt(refresh_token),
                "expires_at": expires_at,
                "scope": scope,
            },
        )

    async def update_last_synced(self, user_id: str, at: datetime) -> None:
        query = f"""
        UPDATE {self.TABLE}
        SET last_synced_at = :at, updated_at = CURRENT_TIMESTAMP
        WHERE user_id = :user_id
        """
        await execute_query(query=query, params={"user_id": user_id, "at": at})

    async def mark_reconnect(self, user_id: str) -> None:
        query = f"""
        UPDATE {self.TABLE}
        SET reconnect = TRUE, updated_at = CURRENT_TIMESTAMP
        WHERE user_id = :user_id
        """
        await execute_query(query=query, params={"user_id": user_id})

    async def delete(self, user_id: str) -> bool:
        query = f"DELETE FROM {self.TABLE} WHERE user_id = :user_id"
        result = await execute_query(query=query, params={"user_id": user_id})
        return bool(result and result.get("record_count"))


def _as_utc(value: Any) -> Optional[datetime]:
    if not isinstance(value, datetime):
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
