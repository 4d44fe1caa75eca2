"""
WHOOP HTTP API

Sync trigger plus the account linking endpoints. Services are read from
`app.state`, set up by the server at startup.
"""

import logging
import secrets
from typing import Any, Dict, Optional

from fastapi import APIRouter, Request
from pydantic import ValidationError
from starlette.responses import Response

from ..utils import get_bearer_token, json_response, verify_token_string
from .errors import ConfigurationError, InvalidWindow, NoCredentials, TokenExchangeFailed, Unauthenticated
from .models import CallbackRequest, SyncMode, SyncRequest
from .oauth import WhoopOAuthService
from .orchestrator import WhoopSyncService

router = APIRouter(prefix="/api/v1/whoop", tags=["whoop"])

SERVICE_KEY_HEADER = "X-Service-Key"

#-----------------------------------------------------------------------------

def _sync_service(request: Request) -> WhoopSyncService:
    return request.app.state.whoop_sync_service


def _oauth_service(request: Request) -> WhoopOAuthService:
    return request.app.state.whoop_oauth_service


def _resolve_user(request: Request, user_token: Optional[str] = None) -> Optional[str]:
    """User ID from an explicit session token, else from the Authorization header"""
    jwt_key = getattr(request.app.state, "jwt_key", "")
    token = user_token or get_bearer_token(request)
    return verify_token_string(token, jwt_key=jwt_key)


def _error(error: str, status_code: int, request: Request) -> Response:
    return json_response({"error": error}, status_code=status_code, request=request)


async def _read_json(request: Request) -> Dict[str, Any]:
    body = await request.body()
    if not body:
        return {}
    try:
        data = await request.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}

#-----------------------------------------------------------------------------

@router.post("/sync")
async def sync(request: Request):
    """Run a WHOOP sync for the calling user, or for every connected user in bulk mode"""
    service = _sync_service(request)
    if not service.config.configured:
        logging.error("WHOOP OAuth credentials not configured. Please set WHOOP_CLIENT_ID and WHOOP_CLIENT_SECRET")
        return _error("missing_whoop_credentials", 500, request)

    payload = await _read_json(request)
    try:
        body = SyncRequest.model_validate(payload)
    except ValidationError as e:
        fields = {str(err["loc"][0]) for err in e.errors() if err.get("loc")}
        if fields & {"start", "end"}:
            return _error("invalid_window", 400, request)
        return _error("invalid_mode", 400, request)

    user_id = _resolve_user(request, body.user_token)
    mode = body.mode or (SyncMode.USER if user_id else SyncMode.BULK)

    try:
        if mode == SyncMode.USER:
            if not user_id:
                raise Unauthenticated("user mode requires a session")
            summary = await service.sync_user(user_id, body.start, body.end)

        else:
            service_key = service.config.service_key
            if service_key:
                presented = request.headers.get(SERVICE_KEY_HEADER) or ""
                if not secrets.compare_digest(presented, service_key):
                    return _error("unauthorized", 401, request)
            summary = await service.sync_all(body.start, body.end)

    except Unauthenticated:
        return _error("unauthorized", 401, request)
    except InvalidWindow as e:
        logging.warning(f"Rejected sync window: {str(e)}")
        return _error("invalid_window", 400, request)
    except NoCredentials:
        return _error("no_tokens", 404, request)
    except Exception as e:
        logging.error(f"whoop-sync error: {str(e)}", exc_info=True)
        return _error("internal_error", 500, request)

    return json_response(summary.to_response(), request=request)


@router.get("/auth/url")
async def authorization_url(request: Request, redirect_uri: Optional[str] = None):
    user_id = _resolve_user(request)
    if not user_id:
        return _error("unauthorized", 401, request)

    try:
        result = await _oauth_service(request).authorization_url(user_id, redirect_uri)
    except ConfigurationError as e:
        logging.error(str(e))
        return _error("missing_whoop_credentials", 500, request)

    return json_response(result, request=request)


@router.post("/callback")
async def callback(request: Request, body: CallbackRequest):
    user_id = _resolve_user(request, body.user_token)

    try:
        result = await _oauth_service(request).handle_callback(
            body.code,
            state=body.state,
            user_id=user_id,
            redirect_uri=body.redirect_uri,
        )
    except ConfigurationError as e:
        logging.error(str(e))
        return _error("missing_whoop_credentials", 500, request)
    except Unauthenticated:
        return _error("unauthorized", 401, request)
    except TokenExchangeFailed as e:
        logging.error(f"[WHOOP][OAUTH2][STAGE2] {str(e)}")
        if e.status >= 500 or e.detail == "invalid_token_response":
            return _error("invalid_token_response", 502, request)
        return _error("token_exchange_failed", 400, request)

    return json_response(result, request=request)


@router.get("/status")
async def status(request: Request):
    user_id = _resolve_user(request)
    if not user_id:
        return _error("unauthorized", 401, request)

    return json_response(await _oauth_service(request).status(user_id), request=request)


@router.delete("/connection")
async def disconnect(request: Request):
    user_id = _resolve_user(request)
    if not user_id:
        return _error("unauthorized", 401, request)

    deleted = await _oauth_service(request).disconnect(user_id)
    return json_response({"success": True, "deleted": deleted}, request=request)
