"""Tests for naive exchange-local timestamp handling."""

from datetime import UTC, datetime, timedelta, timezone

import pytest

from src.domain.exceptions import UnknownProviderValueError
from src.services.time_normalizer import (
    day_start,
    exchange_now,
    floor_to_minute,
    naive_isoformat,
    parse_provider_timestamp,
    to_exchange_naive,
)


def test_parse_keeps_wall_clock_in_winter() -> None:
    # EST (UTC-5)
    parsed = parse_provider_timestamp("2025-01-15T16:45:00-05:00")

    assert parsed == datetime(2025, 1, 15, 16, 45)
    assert parsed.tzinfo is None


def test_parse_keeps_wall_clock_in_summer() -> None:
    # EDT (UTC-4)
    parsed = parse_provider_timestamp("2025-07-15T16:45:00-04:00")

    assert parsed == datetime(2025, 7, 15, 16, 45)


def test_parse_resolves_foreign_offset_into_new_york() -> None:
    # 21:45 UTC on a winter day is 16:45 in New York
    assert parse_provider_timestamp("2025-11-16T21:45:00+00:00") == datetime(
        2025, 11, 16, 16, 45
    )
    # 20:45 UTC on a summer day is also 16:45 in New York
    assert parse_provider_timestamp("2025-06-16T20:45:00Z") == datetime(
        2025, 6, 16, 16, 45
    )


def test_parse_across_dst_switch() -> None:
    # US DST started 2025-03-09 at 02:00 local
    before = parse_provider_timestamp("2025-03-08T08:30:00-05:00")
    after = parse_provider_timestamp("2025-03-10T08:30:00-04:00")

    assert before.time() == after.time()
    assert after - before == timedelta(days=2)


@pytest.mark.parametrize(
    "raw", ["", "not a date", "2025-03-10T08:30:00", "2025-13-40T00:00:00-05:00"]
)
def test_parse_rejects_malformed_or_offsetless(raw: str) -> None:
    with pytest.raises(UnknownProviderValueError):
        parse_provider_timestamp(raw)


def test_to_exchange_naive_requires_aware_input() -> None:
    with pytest.raises(ValueError):
        to_exchange_naive(datetime(2025, 1, 1, 12, 0))


def test_to_exchange_naive_with_other_timezone() -> None:
    tokyo = timezone(timedelta(hours=9))
    moment = datetime(2025, 1, 16, 6, 45, tzinfo=tokyo)

    assert to_exchange_naive(moment) == datetime(2025, 1, 15, 16, 45)


def test_exchange_now_floors_to_minute() -> None:
    clock = lambda: datetime(2025, 3, 10, 17, 25, 42, 123456, tzinfo=UTC)  # noqa: E731

    assert exchange_now(clock) == datetime(2025, 3, 10, 13, 25)


def test_small_helpers() -> None:
    value = datetime(2025, 3, 10, 13, 25, 42, 5)

    assert floor_to_minute(value) == datetime(2025, 3, 10, 13, 25)
    assert day_start(value) == datetime(2025, 3, 10)
    assert naive_isoformat(value) == "2025-03-10T13:25:42"


@pytest.mark.parametrize(
    "raw", ["0001-01-01T00:00:00+14:00", "9999-12-31T23:59:00-12:00", None]
)
def test_parse_rejects_unconvertible_dates(raw: str | None) -> None:
    with pytest.raises(UnknownProviderValueError):
        parse_provider_timestamp(raw)
