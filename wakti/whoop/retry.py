import logging
from typing import Awaitable, Callable, TypeVar

from .errors import Unauthorized
from .token_manager import TokenCell

T = TypeVar("T")

#-----------------------------------------------------------------------------

async def call_with_refresh(cell: TokenCell, operation: Callable[[str], Awaitable[T]]) -> T:
    """
    Run `operation(access_token)`, refreshing the token once on a 401.

    A second 401 after the refresh marks the cell as needing a reconnect and
    re-raises. RefreshFailed and every other error propagate untouched.
    """
    token = cell.access_token
    try:
        return await operation(token)
    except Unauthorized:
        logging.info(f"[WHOOP] 401 for user {cell.user_id}, refreshing access token")

    token = await cell.refresh(token)

    try:
        return await operation(token)
    except Unauthorized:
        logging.error(f"[WHOOP] 401 again after refresh for user {cell.user_id}, reconnect needed")
        cell.reconnect_needed = True
        raise
