"""Trip API routes."""

from fastapi import APIRouter

from trips.api import trips

router = APIRouter()
router.include_router(trips.router, tags=["trips"])

__all__ = ["router"]
