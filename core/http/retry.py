"""Retry utilities for async operations.

This module provides retry decorators using tenacity for resilient HTTP calls
and local store writes.
"""

from __future__ import annotations

import asyncio
import logging

from aiohttp import ClientConnectionError, ServerDisconnectedError
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_fixed,
)

logger = logging.getLogger(__name__)


def retry_async(
    max_retries: int = 3,
    retry_delay: float = 1.0,
    backoff_factor: float = 2.0,
    retry_exceptions: tuple = (
        ClientConnectionError,
        ServerDisconnectedError,
        asyncio.TimeoutError,
    ),
):
    """Factory that returns a tenacity retry decorator with exponential backoff.

    Args:
        max_retries: Maximum number of retry attempts (in addition to the first attempt).
        retry_delay: Initial delay between retries in seconds (used as multiplier).
        backoff_factor: Exponential backoff base for increasing delay between retries.
        retry_exceptions: Tuple of exception types that should trigger a retry.

    Example:
        @retry_async(max_retries=5, retry_delay=2.0)
        async def fetch_data():
            async with session.get(url) as response:
                return await response.json()
    """
    return retry(
        stop=stop_after_attempt(max_retries + 1),
        wait=wait_exponential(multiplier=retry_delay, exp_base=backoff_factor),
        retry=retry_if_exception_type(retry_exceptions),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )


def retry_fixed(
    attempts: int = 3,
    delay: float = 1.0,
    retry_exceptions: tuple = (Exception,),
):
    """Tenacity decorator making ``attempts`` tries with a fixed ``delay`` between them.

    The last exception is re-raised once the attempts are exhausted.
    """
    return retry(
        stop=stop_after_attempt(attempts),
        wait=wait_fixed(delay),
        retry=retry_if_exception_type(retry_exceptions),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
