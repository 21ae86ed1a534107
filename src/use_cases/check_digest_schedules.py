"""Scheduled digest use case.

Checks which digest schedules are due at the current exchange-local minute
and publishes one digest message per schedule with at least one event.
"""

from collections.abc import Mapping
from datetime import datetime, timedelta
from typing import Final, Protocol

from src.config.logging_config import get_logger
from src.domain.exceptions import QueuePublishError, RepositoryError
from src.domain.message_queue import (
    DEFAULT_MAX_ATTEMPTS,
    DIGESTS_QUEUE_NAME,
    QueueMessageCreate,
)
from src.domain.models import (
    CalendarEvent,
    DigestEventItem,
    DigestMessage,
    DigestSchedule,
    DigestScheduleResult,
    NewsScope,
)
from src.domain.protocols import DigestScheduleRegistryProtocol, EventStoreProtocol
from src.ports.alert_queue import AlertQueuePort
from src.services.alert_matcher import select_for_digest
from src.services.time_normalizer import (
    DEFAULT_EXCHANGE_TZ,
    Clock,
    day_start,
    exchange_now,
    naive_isoformat,
    utc_now,
)

logger = get_logger(__name__)

# (days from today's midnight to range start, range length in days)
SCOPE_RANGES: Final[Mapping[NewsScope, tuple[int, int]]] = {
    NewsScope.DAILY: (0, 1),
    NewsScope.TOMORROW: (1, 1),
    NewsScope.WEEKLY: (0, 7),
}


class DigestRepository(EventStoreProtocol, DigestScheduleRegistryProtocol, Protocol):
    """Store surface the digest check needs."""


def scope_range(scope: NewsScope, now: datetime) -> tuple[datetime, datetime] | None:
    """Half-open naive range covered by ``scope``, or None if unsupported."""
    bounds = SCOPE_RANGES.get(scope)
    if bounds is None:
        return None
    offset_days, length_days = bounds
    start = day_start(now) + timedelta(days=offset_days)
    return start, start + timedelta(days=length_days)


def build_digest_message(
    schedule: DigestSchedule, events: list[CalendarEvent]
) -> DigestMessage:
    return DigestMessage(
        news_scope=schedule.news_scope,
        channel_id=schedule.channel_id,
        server_id=schedule.server_id,
        events=[
            DigestEventItem(
                title=event.title,
                currency=event.currency,
                impact=event.impact,
                timestamp=naive_isoformat(event.timestamp),
                forecast=event.forecast,
                previous=event.previous,
                actual=event.actual,
            )
            for event in events
        ],
    )


def check_digest_schedules_use_case(
    repository: DigestRepository,
    alert_queue: AlertQueuePort,
    *,
    queue_name: str = DIGESTS_QUEUE_NAME,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    exchange_tz: str = DEFAULT_EXCHANGE_TZ,
    clock: Clock = utc_now,
) -> DigestScheduleResult:
    """Publish digests for schedules due this minute.

    A failure on one schedule is logged and counted; the others still run.

    Raises:
        RepositoryError: If the due schedules cannot be loaded
    """
    now = exchange_now(clock, exchange_tz)
    schedules = repository.get_digest_schedules_for_time(now.hour, now.minute)
    result = DigestScheduleResult(schedules_due=len(schedules))

    for schedule in schedules:
        window = scope_range(schedule.news_scope, now)
        if window is None:
            logger.warning(
                "digest_scope_unsupported",
                schedule_id=schedule.schedule_id,
                news_scope=schedule.news_scope.value,
            )
            continue

        try:
            events = select_for_digest(repository.find_between(*window), schedule)
            if not events:
                result.digests_empty += 1
                logger.info(
                    "digest_schedule_empty",
                    schedule_id=schedule.schedule_id,
                    news_scope=schedule.news_scope.value,
                )
                continue

            alert_queue.publish(
                QueueMessageCreate(
                    queue_name=queue_name,
                    payload=build_digest_message(schedule, events).to_payload(),
                    max_attempts=max_attempts,
                )
            )
        except (QueuePublishError, RepositoryError) as exc:
            result.publish_failures += 1
            logger.error(
                "digest_schedule_failed",
                schedule_id=schedule.schedule_id,
                channel_id=schedule.channel_id,
                error=str(exc),
            )
            continue

        result.digests_published += 1
        logger.info(
            "digest_published",
            schedule_id=schedule.schedule_id,
            news_scope=schedule.news_scope.value,
            channel_id=schedule.channel_id,
            events=len(events),
        )

    logger.info(
        "digest_schedule_check_completed",
        hour=now.hour,
        minute=now.minute,
        schedules_due=result.schedules_due,
        digests_published=result.digests_published,
        digests_empty=result.digests_empty,
        publish_failures=result.publish_failures,
    )
    return result
