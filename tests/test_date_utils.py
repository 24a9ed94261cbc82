from datetime import UTC, datetime

from date_utils import (
    datetime_to_ms,
    ensure_utc,
    get_current_utc_time,
    ms_to_datetime,
    now_ms,
    parse_timestamp,
)


def test_parse_timestamp_handles_empty_and_invalid() -> None:
    assert parse_timestamp("") is None
    assert parse_timestamp(None) is None
    assert parse_timestamp("not-a-date") is None
    assert parse_timestamp(True) is None


def test_parse_timestamp_normalizes_to_utc() -> None:
    parsed = parse_timestamp("2024-01-01T00:00:00-05:00")
    assert parsed is not None
    assert parsed.tzinfo == UTC
    assert parsed.hour == 5


def test_parse_timestamp_accepts_millisecond_epochs() -> None:
    parsed = parse_timestamp(1_700_000_000_000)
    assert parsed == datetime(2023, 11, 14, 22, 13, 20, tzinfo=UTC)


def test_ensure_utc_handles_naive_datetime() -> None:
    value = datetime(2024, 1, 1, 12, 0, 0)
    normalized = ensure_utc(value)
    assert normalized is not None
    assert normalized.tzinfo == UTC
    assert normalized.hour == 12
    assert ensure_utc(None) is None


def test_millisecond_conversions_round_trip() -> None:
    value = datetime(2024, 5, 1, 12, 30, 15, 250_000, tzinfo=UTC)
    assert ms_to_datetime(datetime_to_ms(value)) == value
    assert datetime_to_ms(datetime(2024, 5, 1, 12, 30, 15, 250_000)) == datetime_to_ms(value)


def test_get_current_utc_time_returns_utc() -> None:
    """get_current_utc_time should return a timezone-aware datetime in UTC."""
    result = get_current_utc_time()
    assert result.tzinfo == UTC
    assert abs(now_ms() - datetime_to_ms(result)) < 5_000
