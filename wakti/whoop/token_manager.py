"""
WHOOP OAuth2 token lifecycle: refresh, code exchange and the per-user token cell
"""

import asyncio
import json
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import aiohttp

from wakti.utils.config.whoop import WhoopConfig

from .credential_store import CredentialStore
from .errors import RefreshFailed, TokenExchangeFailed
from .models import WhoopCredential

DEFAULT_EXPIRES_IN = 3600

#-----------------------------------------------------------------------------

def _expires_at_from(token_json: Dict[str, Any], now: Optional[datetime] = None) -> datetime:
    now = now or datetime.now(timezone.utc)
    try:
        expires_in = int(token_json.get("expires_in") or DEFAULT_EXPIRES_IN)
    except (TypeError, ValueError):
        logging.warning(f"[WHOOP][OAUTH2] Unparsable expires_in {token_json.get('expires_in')!r}, using {DEFAULT_EXPIRES_IN}s")
        expires_in = DEFAULT_EXPIRES_IN
    return now + timedelta(seconds=expires_in)


class TokenRefreshManager:
    """Talks to the WHOOP token endpoint and persists what it gets back"""

    def __init__(self, config: WhoopConfig, store: CredentialStore):
        self.config = config
        self.store = store

    def should_refresh(self, credential: WhoopCredential, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return credential.expires_within(now, self.config.refresh_margin)

    async def _post_token(self, data: Dict[str, str], tag: str) -> tuple[int, str]:
        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
            "Accept": "application/json",
        }
        safe_client_id = (self.config.client_id[:6] + "*") if self.config.client_id else ""
        logging.info(f"[WHOOP][OAUTH2][{tag}] token request prepared; grant={data['grant_type']}, client={safe_client_id}")

        start_ts = time.time()
        async with aiohttp.ClientSession() as session:
            async with session.post(
                self.config.token_url,
                data=data,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self.config.request_timeout),
            ) as resp:
                raw_text = await resp.text()
                elapsed_ms = int((time.time() - start_ts) * 1000)
                logging.info(f"[WHOOP][OAUTH2][{tag}] token response; status={resp.status}, elapsed_ms={elapsed_ms}")
                return resp.status, raw_text

    async def refresh(self, user_id: str, refresh_token: str) -> WhoopCredential:
        """
        Exchange a refresh token for a new access token.

        The new credential is saved before it is returned. Raises RefreshFailed
        on any non-2xx answer; never retries by itself.
        """
        if not refresh_token:
            logging.error(f"[WHOOP][OAUTH2][REFRESH] No refresh token available for user {user_id}")
            raise RefreshFailed(401, "missing refresh token")

        data = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
        }

        try:
            status, raw_text = await self._post_token(data, "REFRESH")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logging.error(f"[WHOOP][OAUTH2][REFRESH] Network error during token refresh: {str(e)}")
            raise RefreshFailed(0, str(e)) from e

        if status < 200 or status >= 300:
            if status == 400:
                logging.error(f"[WHOOP][OAUTH2][REFRESH] Bad request (400) - likely refresh token expired or invalid, user {user_id}")
            elif status == 401:
                logging.error(f"[WHOOP][OAUTH2][REFRESH] Unauthorized (401) - refresh token expired or client credentials invalid, user {user_id}")
            else:
                logging.error(f"[WHOOP][OAUTH2][REFRESH] HTTP {status} error for user {user_id}")
            raise RefreshFailed(status, raw_text[:200])

        try:
            token_json = json.loads(raw_text)
        except json.JSONDecodeError as e:
            logging.error(f"[WHOOP][OAUTH2][REFRESH] Failed to parse token response as JSON: {str(e)}")
            raise RefreshFailed(502, "non-JSON token response") from e

        access_token = token_json.get("access_token") if isinstance(token_json, dict) else None
        if not access_token:
            logging.error("[WHOOP][OAUTH2][REFRESH] Token response missing access_token")
            raise RefreshFailed(502, "missing access_token")

        credential = WhoopCredential(
            user_id=user_id,
            access_token=access_token,
            # WHOOP may omit the refresh token on rotation; keep the one we have.
            refresh_token=token_json.get("refresh_token") or refresh_token,
            expires_at=_expires_at_from(token_json),
        )

        await self.store.save_tokens(
            credential.user_id,
            credential.access_token,
            credential.refresh_token,
            credential.expires_at,
        )

        logging.info(f"[WHOOP][OAUTH2][REFRESH] Successfully refreshed token for user {user_id}, expires at {credential.expires_at.isoformat()}")
        return credential

    async def exchange_code(self, code: str, redirect_uri: str) -> Dict[str, Any]:
        """Exchange an authorization code; returns the token payload with a computed expires_at"""
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
        }

        try:
            status, raw_text = await self._post_token(data, "STAGE2")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logging.error(f"[WHOOP][OAUTH2][STAGE2] Network error during code exchange: {str(e)}")
            raise TokenExchangeFailed(502, str(e)) from e

        if status < 200 or status >= 300:
            raise TokenExchangeFailed(status, raw_text[:200])

        try:
            token_json = json.loads(raw_text)
        except json.JSONDecodeError as e:
            raise TokenExchangeFailed(502, "Token endpoint returned non-JSON body") from e

        if not isinstance(token_json, dict) or not token_json.get("access_token") or not token_json.get("refresh_token"):
            raise TokenExchangeFailed(502, "invalid_token_response")

        token_json["expires_at"] = _expires_at_from(token_json)
        return token_json

#-----------------------------------------------------------------------------

class TokenCell:
    """
    The current credential of one user during one sync pass.

    All concurrent fetches of the pass read their token from here. Refreshes
    are serialized: a caller whose token has already been replaced gets the
    replacement instead of refreshing a second time, and a failed refresh is
    remembered and re-raised to the siblings.
    """

    def __init__(self, credential: WhoopCredential, manager: TokenRefreshManager):
        self.credential = credential
        self.manager = manager

        self.reconnect_needed = False
        self.refreshed = False

        self._lock = asyncio.Lock()
        self._refresh_error: Optional[RefreshFailed] = None

    @property
    def user_id(self) -> str:
        return self.credential.user_id

    @property
    def access_token(self) -> str:
        return self.credential.access_token

    async def refresh(self, stale_token: Optional[str] = None) -> str:
        async with self._lock:
            if self._refresh_error is not None:
                raise self._refresh_error

            if stale_token is not None and stale_token != self.credential.access_token:
                return self.credential.access_token

            try:
                self.credential = await self.manager.refresh(self.user_id, self.credential.refresh_token)
            except RefreshFailed as e:
                self._refresh_error = e
                if e.credentials_invalid:
                    self.reconnect_needed = True
                raise

            self.refreshed = True
            return self.credential.access_token
