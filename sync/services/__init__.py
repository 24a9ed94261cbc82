"""Sync services module."""

from sync.services.offline_queue import MAX_RETRY_ATTEMPTS, OfflineQueue
from sync.services.remote_store import PostgrestRemoteTripStore, RemoteTripStore
from sync.services.scheduler import SyncScheduler
from sync.services.sync_engine import SyncEngine

__all__ = [
    "MAX_RETRY_ATTEMPTS",
    "OfflineQueue",
    "PostgrestRemoteTripStore",
    "RemoteTripStore",
    "SyncEngine",
    "SyncScheduler",
]
