"""API utilities for FastAPI route handling."""

import functools
import logging
from collections.abc import Callable

from fastapi import HTTPException, status

from core.exceptions import (
    AuthenticationError,
    ExternalServiceError,
    MileageTrackerError,
    PersistenceError,
    RateLimitError,
    ResourceNotFoundError,
    ValidationError,
)

# First match wins, so subclasses come before their bases.
_ERROR_STATUS: list[tuple[type[MileageTrackerError], int, int]] = [
    (ValidationError, status.HTTP_400_BAD_REQUEST, logging.WARNING),
    (ResourceNotFoundError, status.HTTP_404_NOT_FOUND, logging.INFO),
    (AuthenticationError, status.HTTP_401_UNAUTHORIZED, logging.WARNING),
    (RateLimitError, status.HTTP_429_TOO_MANY_REQUESTS, logging.WARNING),
    (ExternalServiceError, status.HTTP_502_BAD_GATEWAY, logging.ERROR),
    (PersistenceError, status.HTTP_503_SERVICE_UNAVAILABLE, logging.ERROR),
    (MileageTrackerError, status.HTTP_500_INTERNAL_SERVER_ERROR, logging.ERROR),
]


def _to_http_exception(
    logger: logging.Logger,
    endpoint: str,
    exc: MileageTrackerError,
) -> HTTPException:
    for exc_type, status_code, level in _ERROR_STATUS:
        if isinstance(exc, exc_type):
            break
    logger.log(
        level,
        "%s in %s: %s",
        type(exc).__name__,
        endpoint,
        exc.message,
        exc_info=level >= logging.ERROR,
    )
    detail = exc.message
    if status_code == status.HTTP_502_BAD_GATEWAY:
        detail = f"External service error: {exc.message}"
    return HTTPException(status_code=status_code, detail=detail)


def api_route(logger: logging.Logger):
    """
    Decorator for FastAPI endpoints that provides standardized error handling.

    HTTPException passes through untouched, domain errors are mapped to a
    status code (validation 400, missing trip 404, remote failures 502, local
    store outage 503) and anything else becomes a logged 500.

    Usage:
        @router.get("/api/trips")
        @api_route(logger)
        async def list_trips():
            return result
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except HTTPException:
                raise
            except MileageTrackerError as e:
                raise _to_http_exception(logger, func.__name__, e) from e
            except Exception as e:
                logger.exception("Unexpected error in %s", func.__name__)
                raise HTTPException(
                    status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                    detail=str(e),
                ) from e

        return wrapper

    return decorator
