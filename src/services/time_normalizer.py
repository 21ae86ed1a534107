"""Naive exchange-local timestamp handling.

Events are stored as naive wall-clock values in the exchange timezone
(``America/New_York`` by default): "16:45 New York" is stored and compared as
the literal 16:45, whatever the UTC offset was on that day. Every value that
is compared against stored timestamps must be produced by the helpers below.
"""

from collections.abc import Callable
from datetime import UTC, datetime
from typing import Final

import pytz
from dateutil import parser as dateutil_parser

from src.domain.exceptions import UnknownProviderValueError

DEFAULT_EXCHANGE_TZ: Final[str] = "America/New_York"
NAIVE_FORMAT: Final[str] = "%Y-%m-%d %H:%M:%S"

Clock = Callable[[], datetime]
"""Callable returning the current time as an aware datetime."""


def utc_now() -> datetime:
    """Default clock."""
    return datetime.now(tz=UTC)


def to_exchange_naive(moment: datetime, tz_name: str = DEFAULT_EXCHANGE_TZ) -> datetime:
    """Convert an aware instant to the naive exchange-local wall clock.

    The instant is first resolved in the exchange timezone, then its wall
    clock components are kept without any offset. Skipping the resolution
    step shifts values by the UTC offset, which differs across DST.

    Args:
        moment: Timezone-aware datetime
        tz_name: IANA name of the exchange timezone

    Returns:
        Naive datetime holding the local wall-clock digits

    Raises:
        ValueError: If ``moment`` is naive

    Example:
        >>> to_exchange_naive(datetime(2025, 11, 16, 21, 45, tzinfo=UTC))
        datetime.datetime(2025, 11, 16, 16, 45)
    """
    if moment.tzinfo is None:
        raise ValueError("moment must be timezone-aware")

    local = moment.astimezone(pytz.timezone(tz_name))
    wall_clock = local.strftime(NAIVE_FORMAT)
    return datetime.strptime(wall_clock, NAIVE_FORMAT)


def parse_provider_timestamp(
    raw: str | None, tz_name: str = DEFAULT_EXCHANGE_TZ
) -> datetime:
    """Parse an offset-aware provider timestamp into the stored representation.

    Args:
        raw: ISO-8601 string with an explicit offset, e.g.
            ``"2025-11-16T16:45:00-05:00"``
        tz_name: Exchange timezone

    Returns:
        Naive exchange-local datetime (``2025-11-16 16:45:00``)

    Raises:
        UnknownProviderValueError: On missing, malformed, offset-less or
            out-of-range input
    """
    if not isinstance(raw, str):
        raise UnknownProviderValueError("date", raw)
    try:
        parsed = dateutil_parser.isoparse(raw)
    except (TypeError, ValueError, OverflowError) as exc:
        raise UnknownProviderValueError("date", raw) from exc

    if parsed.tzinfo is None:
        raise UnknownProviderValueError("date", raw)

    # Offsets near datetime.min/max overflow once shifted into the exchange zone.
    try:
        return to_exchange_naive(parsed, tz_name)
    except (OverflowError, ValueError) as exc:
        raise UnknownProviderValueError("date", raw) from exc


def floor_to_minute(value: datetime) -> datetime:
    """Drop seconds and microseconds."""
    return value.replace(second=0, microsecond=0)


def exchange_now(clock: Clock = utc_now, tz_name: str = DEFAULT_EXCHANGE_TZ) -> datetime:
    """Current naive exchange-local time floored to the minute."""
    return floor_to_minute(to_exchange_naive(clock(), tz_name))


def day_start(value: datetime) -> datetime:
    """Midnight of the naive day containing ``value``."""
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def format_naive(value: datetime) -> str:
    """Serialize a naive timestamp for payloads and logs."""
    return value.strftime(NAIVE_FORMAT)


def naive_isoformat(value: datetime) -> str:
    """ISO string without offset (``2025-11-16T16:45:00``)."""
    return value.replace(microsecond=0).isoformat()
