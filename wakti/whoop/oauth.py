"""
WHOOP account linking: authorize URL, code callback, status and disconnect
"""

import logging
import secrets
from typing import Any, Awaitable, Callable, Dict, Optional
from urllib.parse import urlencode

import redis.asyncio

from wakti.utils.config import global_config
from wakti.utils.config.whoop import WhoopConfig

from .credential_store import CredentialStore
from .errors import ConfigurationError, Unauthenticated
from .token_manager import TokenRefreshManager

STATE_KEY_PREFIX = "whoop:oauth2:state:"
REDIRECT_KEY_PREFIX = "whoop:oauth2:redir:"

RedisFactory = Callable[[], Awaitable[Optional[redis.asyncio.Redis]]]

#-----------------------------------------------------------------------------

async def default_redis_factory() -> Optional[redis.asyncio.Redis]:
    config = global_config()
    if config is None:
        return None
    return await config.get_redis().get_async_client()


class WhoopOAuthService:
    def __init__(
        self,
        config: WhoopConfig,
        credential_store: CredentialStore,
        token_manager: TokenRefreshManager,
        redis_factory: RedisFactory = default_redis_factory,
    ):
        self.config = config
        self.credential_store = credential_store
        self.token_manager = token_manager
        self.redis_factory = redis_factory

    async def authorization_url(self, user_id: str, redirect_uri: Optional[str] = None) -> Dict[str, str]:
        """Stage 1: build the WHOOP authorize URL and remember which user the state belongs to"""
        if not self.config.configured:
            raise ConfigurationError("Missing WHOOP_CLIENT_ID or WHOOP_CLIENT_SECRET configuration")

        redirect_uri = redirect_uri or self.config.redirect_url
        if not redirect_uri:
            raise ConfigurationError("Missing WHOOP_REDIRECT_URL configuration")

        state = secrets.token_urlsafe(24)

        client = await self.redis_factory()
        if client is None:
            logging.warning("[WHOOP][OAUTH2][STAGE1] Redis unavailable, callback will rely on the caller's session")
        else:
            try:
                await client.setex(f"{STATE_KEY_PREFIX}{state}", self.config.oauth_temp_ttl, user_id)
                await client.setex(f"{REDIRECT_KEY_PREFIX}{state}", self.config.oauth_temp_ttl, redirect_uri)
            finally:
                await client.aclose()

        params = {
            "client_id": self.config.client_id,
            "response_type": "code",
            "redirect_uri": redirect_uri,
            "scope": self.config.scopes,
            "state": state,
        }
        url = f"{self.config.auth_url}?{urlencode(params)}"

        logging.info(f"[WHOOP][OAUTH2][STAGE1] auth_url prepared; scopes={len(self.config.scopes.split())}, user={user_id}")
        return {"url": url, "state": state}

    async def _pop_state(self, state: str) -> tuple[Optional[str], Optional[str]]:
        client = await self.redis_factory()
        if client is None:
            return None, None

        try:
            user_id = await client.get(f"{STATE_KEY_PREFIX}{state}")
            redirect_uri = await client.get(f"{REDIRECT_KEY_PREFIX}{state}")
            await client.delete(f"{STATE_KEY_PREFIX}{state}", f"{REDIRECT_KEY_PREFIX}{state}")
        finally:
            await client.aclose()

        return user_id, redirect_uri

    async def handle_callback(
        self,
        code: str,
        state: Optional[str] = None,
        user_id: Optional[str] = None,
        redirect_uri: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Stage 2: exchange the authorization code and store the credential.

        The user comes from the state mapping when there is one, else from the
        caller's session. Raises TokenExchangeFailed when WHOOP does not hand
        back a complete token payload.
        """
        if not self.config.configured:
            raise ConfigurationError("Missing WHOOP_CLIENT_ID or WHOOP_CLIENT_SECRET configuration")

        logging.info("[WHOOP][OAUTH2][STAGE2] callback received")

        cached_user_id, cached_redirect_uri = (None, None)
        if state:
            cached_user_id, cached_redirect_uri = await self._pop_state(state)

        user_id = cached_user_id or user_id
        if not user_id:
            raise Unauthenticated("Missing user_id for OAuth2 callback")

        redirect_uri = redirect_uri or cached_redirect_uri or self.config.redirect_url
        if not redirect_uri:
            raise ConfigurationError("Missing redirect_uri for OAuth2 token exchange")

        token_json = await self.token_manager.exchange_code(code, redirect_uri)

        scope = token_json.get("scope")
        await self.credential_store.save_tokens(
            user_id,
            token_json["access_token"],
            token_json["refresh_token"],
            token_json["expires_at"],
            scope=scope.split() if isinstance(scope, str) else None,
        )

        logging.info(f"Successfully linked WHOOP for user {user_id}")
        return {"success": True, "userId": user_id}

    async def status(self, user_id: str) -> Dict[str, Any]:
        credential = await self.credential_store.get(user_id)
        if credential is None:
            return {"connected": False, "lastSyncedAt": None, "reconnect": False}

        return {
            "connected": True,
            "lastSyncedAt": credential.last_synced_at.isoformat() if credential.last_synced_at else None,
            "reconnect": credential.reconnect,
        }

    async def disconnect(self, user_id: str) -> bool:
        deleted = await self.credential_store.delete(user_id)
        logging.info(f"Unlinked WHOOP for user {user_id}: deleted={deleted}")
        return deleted

