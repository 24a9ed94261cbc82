"""
Shared aiohttp session.

aiohttp sessions are bound to the loop that created them, so the session is
rebuilt whenever it is requested from a different (or closed) loop. The
geocoder and the remote trip store client both borrow it.
"""

from __future__ import annotations

import asyncio
import logging

import aiohttp

from config import NOMINATIM_USER_AGENT
from core.constants import (
    HTTP_CONNECTION_LIMIT,
    HTTP_TIMEOUT_CONNECT,
    HTTP_TIMEOUT_SOCK_READ,
    HTTP_TIMEOUT_TOTAL,
)

logger = logging.getLogger(__name__)

_session: aiohttp.ClientSession | None = None
_session_loop: asyncio.AbstractEventLoop | None = None


def _build_session() -> aiohttp.ClientSession:
    return aiohttp.ClientSession(
        timeout=aiohttp.ClientTimeout(
            total=HTTP_TIMEOUT_TOTAL,
            connect=HTTP_TIMEOUT_CONNECT,
            sock_read=HTTP_TIMEOUT_SOCK_READ,
        ),
        headers={"User-Agent": NOMINATIM_USER_AGENT, "Accept": "application/json"},
        connector=aiohttp.TCPConnector(limit=HTTP_CONNECTION_LIMIT),
    )


async def _close_quietly(session: aiohttp.ClientSession) -> None:
    try:
        await session.close()
    except (aiohttp.ClientError, RuntimeError, OSError) as e:
        logger.warning("Error closing HTTP session: %s", e)


async def get_session() -> aiohttp.ClientSession:
    """Return the shared session for the running loop, creating it if needed."""
    global _session, _session_loop
    loop = asyncio.get_running_loop()

    if _session is not None and _session_loop is not loop:
        stale_loop_alive = _session_loop is not None and not _session_loop.is_closed()
        if not _session.closed and stale_loop_alive:
            await _close_quietly(_session)
        logger.info("Event loop changed, replacing HTTP session")
        _session = None

    if _session is None or _session.closed:
        _session = _build_session()
        _session_loop = loop
        logger.debug("Created HTTP session")
    return _session


async def cleanup_session() -> None:
    """Close the shared session (called on shutdown)."""
    global _session, _session_loop
    if _session is not None and not _session.closed:
        await _close_quietly(_session)
        logger.info("Closed HTTP session")
    _session = None
    _session_loop = None
