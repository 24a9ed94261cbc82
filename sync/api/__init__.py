"""Sync API routes."""

from fastapi import APIRouter

from sync.api import sync

router = APIRouter()
router.include_router(sync.router, tags=["sync"])

__all__ = ["router"]
