"""
Domain exception hierarchy.

Services raise these; ``core.api.api_route`` turns them into HTTP responses
and ``sync.errors.categorize_error`` turns them into sync failure categories.
"""


class MileageTrackerError(Exception):
    """Base exception for all application-specific errors."""

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(MileageTrackerError):
    """Input (a sample, a coordinate, a trip edit) was rejected."""


class ResourceNotFoundError(MileageTrackerError):
    """A trip or queued operation does not exist."""


class PersistenceError(MileageTrackerError):
    """The local trip store could not be written."""


class ExternalServiceError(MileageTrackerError):
    """A call to the remote trip store or the geocoder failed."""


class RateLimitError(ExternalServiceError):
    """The remote service answered 429."""


class AuthenticationError(ExternalServiceError):
    """The remote service rejected our credentials (401/403)."""


class RemoteStoreError(ExternalServiceError):
    """The remote trip store rejected a request with an HTTP status."""

    def __init__(
        self,
        message: str,
        details: dict | None = None,
        *,
        status: int | None = None,
    ) -> None:
        super().__init__(message, details)
        self.status = status if status is not None else self.details.get("status")
