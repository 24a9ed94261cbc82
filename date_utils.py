"""
Centralized date and time utilities for the application.

Trip start/end times travel as millisecond epochs (the remote store keys trips
by them), while bookkeeping timestamps such as ``updated_at`` are
timezone-aware datetimes. This module converts between the two and parses the
ISO strings the remote store returns.
"""

import logging
from datetime import UTC, datetime

from dateutil import parser

logger = logging.getLogger(__name__)


def get_current_utc_time() -> datetime:
    """Return the current time as a timezone-aware datetime object in UTC."""
    return datetime.now(UTC)


def now_ms() -> int:
    """Current wall-clock time as a millisecond epoch."""
    return datetime_to_ms(get_current_utc_time())


def datetime_to_ms(dt: datetime) -> int:
    return int(ensure_utc(dt).timestamp() * 1000)


def ms_to_datetime(ms: int | float) -> datetime:
    return datetime.fromtimestamp(ms / 1000, tz=UTC)


def parse_timestamp(ts: str | int | float | datetime | None) -> datetime | None:
    """
    Parse an ISO 8601 string, millisecond epoch or datetime into an aware
    UTC datetime.

    Naive values are assumed to be UTC. Returns None when parsing fails.
    """
    if ts is None or ts == "":
        return None

    if isinstance(ts, datetime):
        return ensure_utc(ts)

    if isinstance(ts, bool):
        return None

    if isinstance(ts, int | float):
        return ms_to_datetime(ts)

    try:
        return ensure_utc(parser.isoparse(ts))
    except (ValueError, TypeError) as e:
        logger.warning("Failed to parse timestamp '%s': %s", ts, e)
        return None


def ensure_utc(dt: datetime | None) -> datetime | None:
    """Return the datetime as an explicit UTC-aware value.

    Mongo round-trips (and mongomock in tests) can drop tzinfo; naive values
    are treated as UTC.
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)

    return dt.astimezone(UTC)
