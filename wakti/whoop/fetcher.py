"""
Paginated and single-object reads from the WHOOP developer API
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence

import aiohttp

from .errors import Unauthorized

DEFAULT_KEY_FIELDS = ("id", "sleep_id")

CURSOR_PARAM = "next_token"

MAX_RATE_LIMIT_RETRIES = 3

#-----------------------------------------------------------------------------

def record_key(record: Dict[str, Any], key_fields: Sequence[str] = DEFAULT_KEY_FIELDS) -> Optional[str]:
    """Natural key of a record: the first present key field, as a string"""
    if not isinstance(record, dict):
        return None
    for name in key_fields:
        value = record.get(name)
        if value is not None and value != "":
            return str(value)
    return None


def dedup_records(records: List[Dict[str, Any]], key_fields: Sequence[str] = DEFAULT_KEY_FIELDS) -> List[Dict[str, Any]]:
    """First occurrence wins; records without a key are passed through"""
    seen = set()
    result = []
    for record in records:
        key = record_key(record, key_fields)
        if key is None:
            result.append(record)
            continue
        if key in seen:
            continue
        seen.add(key)
        result.append(record)
    return result


def _bearer(access_token: str) -> Dict[str, str]:
    return {
        "Authorization": f"Bearer {access_token}",
        "Accept": "application/json",
    }


def _retry_after(value: Optional[str]) -> int:
    """Seconds to wait after a 429, capped at a minute"""
    try:
        seconds = int(value) if value is not None else 60
    except ValueError:
        seconds = 60
    return min(max(seconds, 0), 60)


async def _get_json(
    session: aiohttp.ClientSession,
    url: str,
    access_token: str,
    params: Optional[Dict[str, Any]],
    timeout: aiohttp.ClientTimeout,
) -> Optional[Any]:
    """
    One GET with bounded rate-limit retries.

    Returns the decoded body, or None when the request failed for any reason
    other than an expired token. A 401 raises Unauthorized.
    """
    retry_count = 0
    while True:
        async with session.get(url, headers=_bearer(access_token), params=params, timeout=timeout) as resp:
            if resp.status == 401:
                logging.warning(f"[WHOOP] Authentication failed for {url}: 401")
                raise Unauthorized(url)

            if resp.status != 429 or retry_count >= MAX_RATE_LIMIT_RETRIES:
                if resp.status < 200 or resp.status >= 300:
                    text = await resp.text()
                    logging.error(f"[WHOOP] Failed to fetch {url}: {resp.status} - {text[:200]}")
                    return None

                return await resp.json(content_type=None)

            retry_after = _retry_after(resp.headers.get("Retry-After"))

        # The connection is released before waiting.
        retry_count += 1
        logging.warning(f"[WHOOP] Rate limited on {url}, retrying after {retry_after} seconds")
        await asyncio.sleep(retry_after)


async def fetch_collection(
    session: aiohttp.ClientSession,
    url: str,
    access_token: str,
    params: Optional[Dict[str, Any]] = None,
    key_fields: Sequence[str] = DEFAULT_KEY_FIELDS,
    request_timeout: float = 30,
) -> List[Dict[str, Any]]:
    """
    Follow the cursor of a WHOOP collection endpoint and return its records.

    Records are deduplicated by natural key across pages. A failed page ends
    pagination and the records gathered so far are returned; only a 401
    escapes, as Unauthorized.
    """
    timeout = aiohttp.ClientTimeout(total=request_timeout)
    base_params = {k: v for k, v in (params or {}).items() if v is not None}

    records: List[Dict[str, Any]] = []
    seen_cursors = set()
    next_token = None
    pages = 0

    while True:
        page_params = dict(base_params)
        if next_token:
            page_params[CURSOR_PARAM] = next_token

        try:
            data = await _get_json(session, url, access_token, page_params, timeout)
        except Unauthorized:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logging.error(f"[WHOOP] Error fetching {url} page {pages + 1}: {type(e).__name__} {str(e)}")
            break

        if not isinstance(data, dict):
            break

        pages += 1
        page_records = data.get("records")
        if isinstance(page_records, list):
            records.extend(page_records)

        next_token = data.get("next_token") or data.get("nextToken")
        if not next_token:
            break
        if next_token in seen_cursors:
            logging.warning(f"[WHOOP] Cursor repeated on {url}, stopping pagination")
            break
        seen_cursors.add(next_token)

    records = dedup_records(records, key_fields)
    logging.info(f"[WHOOP] Fetched {len(records)} records from {url} in {pages} page(s)")
    return records


async def fetch_single(
    session: aiohttp.ClientSession,
    url: str,
    access_token: str,
    request_timeout: float = 30,
) -> Optional[Dict[str, Any]]:
    """Read a single-object endpoint (profile, body measurement)"""
    timeout = aiohttp.ClientTimeout(total=request_timeout)
    try:
        data = await _get_json(session, url, access_token, None, timeout)
    except Unauthorized:
        raise
    except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
        logging.error(f"[WHOOP] Error fetching {url}: {type(e).__name__} {str(e)}")
        return None

    return data if isinstance(data, dict) else None
