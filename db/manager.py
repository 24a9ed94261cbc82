"""
MongoDB connection for the local trip store.

Holds the Motor client behind ``db_manager`` and initializes Beanie with the
trip, queue and settings documents.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC

from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from config import (
    MONGODB_DATABASE,
    MONGODB_MAX_POOL_SIZE,
    MONGODB_SERVER_SELECTION_TIMEOUT_MS,
    MONGODB_URI,
)

logger = logging.getLogger(__name__)


class DatabaseManager:
    """
    Lazily connected Motor client.

    Motor clients belong to the event loop they were created on; a client
    requested from a different loop is closed and rebuilt.
    """

    def __init__(
        self,
        uri: str = MONGODB_URI,
        database: str = MONGODB_DATABASE,
    ) -> None:
        self.uri = uri
        self.database_name = database
        self._client: AsyncIOMotorClient | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._beanie_ready = False

    @staticmethod
    def _running_loop() -> asyncio.AbstractEventLoop | None:
        try:
            return asyncio.get_running_loop()
        except RuntimeError:
            return None

    def _connect(self) -> AsyncIOMotorClient:
        client = AsyncIOMotorClient(
            self.uri,
            tz_aware=True,
            tzinfo=UTC,
            maxPoolSize=MONGODB_MAX_POOL_SIZE,
            serverSelectionTimeoutMS=MONGODB_SERVER_SELECTION_TIMEOUT_MS,
            retryWrites=True,
            appname="MileageTracker",
        )
        logger.info("MongoDB client created for database %s", self.database_name)
        return client

    @property
    def client(self) -> AsyncIOMotorClient:
        loop = self._running_loop()
        if self._client is not None and loop is not None and loop is not self._loop:
            logger.info("Event loop changed, reconnecting MongoDB client")
            self._client.close()
            self._client = None
            self._beanie_ready = False
        if self._client is None:
            self._client = self._connect()
            self._loop = loop
        return self._client

    @property
    def db(self) -> AsyncIOMotorDatabase:
        return self.client[self.database_name]

    async def init_beanie(self) -> None:
        """Register the document models; a no-op when already done on this loop."""
        from db.models import ALL_DOCUMENT_MODELS

        database = self.db
        if self._beanie_ready:
            return
        await init_beanie(database=database, document_models=ALL_DOCUMENT_MODELS)
        self._beanie_ready = True
        logger.info("Beanie initialized with %d document models", len(ALL_DOCUMENT_MODELS))

    async def ping(self) -> bool:
        try:
            await self.db.command("ping")
        except PyMongoError as e:
            logger.warning("MongoDB ping failed: %s", e)
            return False
        return True

    async def cleanup_connections(self) -> None:
        if self._client is not None:
            logger.info("Closing MongoDB client")
            self._client.close()
        self._client = None
        self._loop = None
        self._beanie_ready = False


db_manager = DatabaseManager()
