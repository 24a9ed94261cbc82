"""Tracking API routes."""

from fastapi import APIRouter

from tracking.api import live

router = APIRouter()
router.include_router(live.router, tags=["tracking"])

__all__ = ["router"]
