"""Temporal scan use case.

Every run computes the exchange-local minute, looks up events sitting
exactly on each alert window and publishes one queue message per matching
subscription. The only state carried between runs is the dispatch gate.
"""

from collections.abc import Mapping
from datetime import datetime, timedelta
from typing import Final, Protocol

from src.config.logging_config import get_logger
from src.domain.exceptions import QueuePublishError, RepositoryError
from src.domain.message_queue import (
    ALERTS_QUEUE_NAME,
    DEFAULT_MAX_ATTEMPTS,
    QueueMessageCreate,
)
from src.domain.models import (
    AlertClass,
    AlertMessage,
    CalendarEvent,
    ScanResult,
    Subscription,
)
from src.domain.protocols import EventStoreProtocol, SubscriptionRegistryProtocol
from src.ports.alert_queue import AlertQueuePort
from src.services.alert_matcher import match
from src.services.dispatch_gate import DispatchGate
from src.services.fingerprint import event_fingerprint
from src.services.time_normalizer import (
    DEFAULT_EXCHANGE_TZ,
    Clock,
    exchange_now,
    naive_isoformat,
    utc_now,
)

logger = get_logger(__name__)

ALERT_WINDOWS: Final[Mapping[AlertClass, timedelta]] = {
    AlertClass.FIVE_MINUTES_BEFORE: timedelta(minutes=5),
    AlertClass.ON_NEWS_DROP: timedelta(0),
}
"""Offset from the current minute at which each alert class fires."""


class ScanRepository(EventStoreProtocol, SubscriptionRegistryProtocol, Protocol):
    """Store surface the scanner needs."""


def build_alert_message(
    event: CalendarEvent, alert_class: AlertClass, subscription: Subscription
) -> AlertMessage:
    """Queue payload for one (event, subscription) pair."""
    return AlertMessage(
        title=event.title,
        currency=event.currency,
        impact=event.impact,
        timestamp=naive_isoformat(event.timestamp),
        forecast=event.forecast,
        previous=event.previous,
        alert_class=alert_class,
        channel_id=subscription.channel_id,
        server_id=subscription.server_id,
    )


class TemporalScanner:
    """Classifies the current minute against stored events and dispatches alerts.

    Not safe for concurrent ``scan`` calls; the scheduler runs it single-flight.
    """

    def __init__(
        self,
        repository: ScanRepository,
        alert_queue: AlertQueuePort,
        *,
        gate: DispatchGate | None = None,
        queue_name: str = ALERTS_QUEUE_NAME,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        exchange_tz: str = DEFAULT_EXCHANGE_TZ,
        clock: Clock = utc_now,
        windows: Mapping[AlertClass, timedelta] = ALERT_WINDOWS,
    ) -> None:
        self._repository = repository
        self._alert_queue = alert_queue
        self._gate = gate or DispatchGate()
        self._queue_name = queue_name
        self._max_attempts = max_attempts
        self._exchange_tz = exchange_tz
        self._clock = clock
        self._windows = dict(windows)

    @property
    def gate(self) -> DispatchGate:
        return self._gate

    def scan(self) -> ScanResult:
        """Run one scan cycle.

        Raises:
            RepositoryError: If events or subscriptions cannot be loaded
        """
        now = exchange_now(self._clock, self._exchange_tz)
        result = ScanResult(scanned_at=now)

        for alert_class in AlertClass:
            offset = self._windows.get(alert_class)
            if offset is None:
                logger.warning(
                    "alert_class_without_window", alert_class=alert_class.value
                )
                continue
            self._scan_window(alert_class, now + offset, result)

        logger.info(
            "alert_scan_completed",
            scanned_at=naive_isoformat(now),
            events_matched=result.events_matched,
            alerts_published=result.alerts_published,
            publish_failures=result.publish_failures,
            suppressed=result.suppressed,
        )
        return result

    def _scan_window(
        self, alert_class: AlertClass, target: datetime, result: ScanResult
    ) -> None:
        events = self._repository.find_by_timestamp(target)
        if not events:
            return

        result.events_matched += len(events)
        subscriptions: list[Subscription] | None = None

        for event in events:
            event_key = event.fingerprint or event_fingerprint(event)
            if not self._gate.should_dispatch(event_key, alert_class.value):
                result.suppressed += 1
                continue

            if subscriptions is None:
                subscriptions = self._repository.get_subscriptions_for_alert_class(
                    alert_class
                )

            for subscription in match(event, alert_class, subscriptions):
                self._publish(event, alert_class, subscription, result)

            self._gate.mark_dispatched(event_key, alert_class.value)

    def _publish(
        self,
        event: CalendarEvent,
        alert_class: AlertClass,
        subscription: Subscription,
        result: ScanResult,
    ) -> None:
        message = build_alert_message(event, alert_class, subscription)
        try:
            self._alert_queue.publish(
                QueueMessageCreate(
                    queue_name=self._queue_name,
                    payload=message.to_payload(),
                    max_attempts=self._max_attempts,
                )
            )
        except (QueuePublishError, RepositoryError) as exc:
            result.publish_failures += 1
            logger.error(
                "alert_publish_failed",
                title=event.title,
                alert_class=alert_class.value,
                channel_id=subscription.channel_id,
                error=str(exc),
            )
            return

        result.alerts_published += 1
        logger.info(
            "alert_published",
            title=event.title,
            currency=event.currency.value,
            alert_class=alert_class.value,
            channel_id=subscription.channel_id,
        )
