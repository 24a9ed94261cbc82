"""Pydantic models for sync results and queue status."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from sync.errors import SyncError


class QueueStatus(BaseModel):
    total: int = 0
    pending: int = 0
    failed: int = 0


class PermanentFailure(BaseModel):
    """A trip operation dropped because its error cannot be retried."""

    trip_id: str | None = None
    operation_type: str
    operation_id: str | None = None
    error: SyncError


class SyncResult(BaseModel):
    """Summary of one sync cycle (or of a queue drain on its own)."""

    uploaded: int = 0
    skipped: int = 0
    downloaded: int = 0
    queued: int = 0
    drained: int = 0
    permanent_failures: list[PermanentFailure] = Field(default_factory=list)
    needs_attention: list[str] = Field(default_factory=list)
    error: SyncError | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def requires_user_action(self) -> bool:
        return bool(self.permanent_failures or self.needs_attention)


__all__ = ["PermanentFailure", "QueueStatus", "SyncResult"]
