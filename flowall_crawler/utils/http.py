from __future__ import annotations

import asyncio
import logging
from typing import Dict, Optional

import aiohttp
from aiohttp import ClientSession, ClientTimeout

from ..errors import FetchTimeoutError, HttpStatusError, TransientFetchError

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
}


async def fetch_text(
    session: ClientSession,
    url: str,
    *,
    timeout: float = 30.0,
    user_agent: Optional[str] = None,
) -> str:
    """
    Fetch a URL once and return the body text.

    Failures are classified, not retried: a timeout raises FetchTimeoutError,
    a connection problem TransientFetchError, a non-2xx status HttpStatusError.
    Retrying is the caller's decision.
    """
    headers: Dict[str, str] = dict(DEFAULT_HEADERS)
    if user_agent:
        headers["User-Agent"] = user_agent

    try:
        async with session.get(url, headers=headers, timeout=ClientTimeout(total=timeout)) as resp:
            if resp.status >= 400:
                raise HttpStatusError(url, resp.status, resp.reason or "")
            return await resp.text()
    except asyncio.TimeoutError as exc:
        raise FetchTimeoutError(url, timeout) from exc
    except aiohttp.ClientError as exc:
        logger.debug("fetch_text connection error for %s: %r", url, exc)
        raise TransientFetchError(f"{type(exc).__name__}: {url}") from exc


def create_session() -> ClientSession:
    """
    Create a shared aiohttp ClientSession.
    """
    # Note: caller is responsible for closing the session (await session.close()).
    connector = aiohttp.TCPConnector(limit=0)  # unlimited; concurrency managed by the limiters
    return aiohttp.ClientSession(connector=connector)
