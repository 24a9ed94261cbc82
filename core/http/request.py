"""
Shared HTTP request helpers for service backends.

Keeps JSON request/response handling and error mapping consistent across
the Nominatim and remote trip store clients.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from core.exceptions import RateLimitError, RemoteStoreError

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)


async def request_json(
    method: str,
    url: str,
    *,
    session: Any,
    params: dict[str, Any] | None = None,
    json: Any | None = None,
    headers: dict[str, str] | None = None,
    expected_status: int | Iterable[int] = 200,
    none_on: Iterable[int] | None = None,
    service_name: str = "Service",
) -> Any | None:
    """
    Issue a request and decode its JSON body.

    Statuses in ``none_on`` yield ``None``; 429 raises :class:`RateLimitError`;
    any other unexpected status raises :class:`RemoteStoreError` carrying the
    status code so callers can categorize the failure.
    """
    if isinstance(expected_status, int):
        expected = {expected_status}
    else:
        expected = set(expected_status)
    none_on_set = set(none_on or [])

    async with session.request(
        method.upper(),
        url,
        params=params,
        json=json,
        headers=headers,
    ) as response:
        if response.status in none_on_set:
            logger.debug("%s returned %s for %s", service_name, response.status, url)
            return None
        if response.status == 429:
            retry_after = int(response.headers.get("Retry-After", 5))
            msg = f"{service_name} error: 429"
            raise RateLimitError(
                msg,
                {"status": 429, "retry_after": retry_after, "url": url},
            )
        if response.status not in expected:
            body = await response.text()
            msg = f"{service_name} error: {response.status}"
            raise RemoteStoreError(
                msg,
                {"status": response.status, "body": body, "url": url},
                status=response.status,
            )
        if response.status == 204:
            return None
        return await response.json()
