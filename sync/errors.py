"""Classification of remote-sync failures."""

from __future__ import annotations

import asyncio
from enum import StrEnum

from aiohttp import ClientError, ClientPayloadError
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from core.exceptions import (
    AuthenticationError,
    RateLimitError,
    RemoteStoreError,
    ValidationError,
)
from core.http.circuit_breaker import CircuitOpen


class SyncErrorCategory(StrEnum):
    NETWORK = "network"
    SERVER = "server"
    VALIDATION = "validation"
    AUTH = "auth"
    UNKNOWN = "unknown"


_RETRYABLE = {
    SyncErrorCategory.NETWORK,
    SyncErrorCategory.SERVER,
    SyncErrorCategory.UNKNOWN,
}


class SyncError(BaseModel):
    category: SyncErrorCategory
    message: str
    retryable: bool


def _from_status(status: int) -> SyncErrorCategory:
    if status in (408, 429):
        return SyncErrorCategory.NETWORK
    if status in (401, 403):
        return SyncErrorCategory.AUTH
    if status >= 500:
        return SyncErrorCategory.SERVER
    if status >= 400:
        return SyncErrorCategory.VALIDATION
    return SyncErrorCategory.UNKNOWN


def categorize_error(exc: BaseException) -> SyncError:
    """
    Map a failure onto a sync error category.

    Network, server and unknown failures are retryable; auth and validation
    failures are not and need the user's attention. Anything unrecognised is
    treated as retryable so no trip is dropped silently.
    """
    if isinstance(exc, CircuitOpen | RateLimitError):
        category = SyncErrorCategory.NETWORK
    elif isinstance(exc, RemoteStoreError) and exc.status is not None:
        category = _from_status(int(exc.status))
    elif isinstance(exc, AuthenticationError):
        category = SyncErrorCategory.AUTH
    elif isinstance(exc, ValidationError | PydanticValidationError | ClientPayloadError):
        category = SyncErrorCategory.VALIDATION
    elif isinstance(exc, ClientError | asyncio.TimeoutError | OSError):
        # connection refused, DNS failures and timeouts
        category = SyncErrorCategory.NETWORK
    else:
        category = SyncErrorCategory.UNKNOWN

    message = getattr(exc, "message", None) or str(exc) or type(exc).__name__
    return SyncError(
        category=category,
        message=message,
        retryable=category in _RETRYABLE,
    )


__all__ = ["SyncError", "SyncErrorCategory", "categorize_error"]
