"""
Shared async Redis client.

Redis only mirrors the active trip for fast crash recovery; the durable copy
lives in MongoDB, so callers treat Redis failures as a degraded cache.
"""

from __future__ import annotations

import logging

import redis.asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError

from config import REDIS_URL

logger = logging.getLogger(__name__)

_client: aioredis.Redis | None = None


async def get_shared_redis() -> aioredis.Redis:
    """Return the process-wide client, reconnecting if the last one went away."""
    global _client
    if _client is not None:
        try:
            await _client.ping()
            return _client
        except (RedisConnectionError, OSError):
            logger.warning("Redis connection lost, reconnecting")
            _client = None

    client = aioredis.from_url(REDIS_URL, decode_responses=True, socket_connect_timeout=2)
    await client.ping()
    _client = client
    logger.info("Connected to Redis")
    return _client


async def close_shared_redis() -> None:
    global _client
    if _client is None:
        return
    await _client.aclose()
    _client = None
    logger.info("Redis client closed")
