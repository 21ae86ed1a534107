"""Structured logging for the calendar alert processes.

Every entry carries the service name and the exchange-local wall clock
alongside the UTC timestamp, so log lines can be lined up directly with the
naive event times stored in the calendar tables.
"""

import logging
import sys
from datetime import UTC, datetime
from typing import Any, Final

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from src.services.time_normalizer import (
    DEFAULT_EXCHANGE_TZ,
    format_naive,
    to_exchange_naive,
)

SERVICE_NAME: Final[str] = "econ_calendar_alerts"
NOISY_LOGGERS: Final[tuple[str, ...]] = ("urllib3", "requests", "slack_sdk", "alembic")


def add_service_name(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


class ExchangeClockStamper:
    """Add ``exchange_time`` (naive wall clock of the exchange) to each entry."""

    def __init__(self, tz_name: str = DEFAULT_EXCHANGE_TZ) -> None:
        self._tz_name = tz_name

    def __call__(
        self, logger: WrappedLogger, method_name: str, event_dict: EventDict
    ) -> EventDict:
        now = to_exchange_naive(datetime.now(tz=UTC), self._tz_name)
        event_dict["exchange_time"] = format_naive(now)
        return event_dict


def setup_logging(
    log_level: str = "INFO",
    json_logs: bool = False,
    exchange_tz: str = DEFAULT_EXCHANGE_TZ,
) -> None:
    """Configure structlog on top of stdlib logging.

    Args:
        log_level: Logging level name; unknown names fall back to INFO
        json_logs: Render JSON lines instead of the colored console format
        exchange_tz: Timezone used for the ``exchange_time`` field
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=numeric_level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    processors: list[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        ExchangeClockStamper(exchange_tz),
        add_service_name,
    ]
    if json_logs:
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger (``name`` is usually ``__name__``).

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.info("calendar_market_ingested", market="FOREX", created=42)
    """
    return structlog.get_logger(name)  # type: ignore[no-any-return]


def bind_context(**kwargs: Any) -> None:
    """Bind values to every entry logged from the current context."""
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)
