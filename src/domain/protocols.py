"""Protocol definitions for dependency inversion.

These abstract interfaces define contracts that adapters must implement.
"""

from datetime import date, datetime
from typing import Any, Protocol

from src.domain.models import (
    AlertClass,
    CalendarEvent,
    DigestSchedule,
    Market,
    RawCalendarItem,
    Subscription,
    UpsertOutcome,
)
from src.ports.alert_queue import AlertQueuePort


class CalendarProviderProtocol(Protocol):
    """Protocol for the external economic calendar feed."""

    def fetch_events(
        self, market: Market, start: date, end: date
    ) -> list[RawCalendarItem]:
        """Fetch raw events for ``market`` dated within [start, end].

        Args:
            market: Provider market feed
            start: First exchange-local day (inclusive)
            end: Last exchange-local day (inclusive)

        Returns:
            Raw provider records

        Raises:
            ProviderAPIError: On transport or non-2xx responses
        """
        ...


class EventStoreProtocol(Protocol):
    """Persisted calendar events keyed by (title, timestamp, impact, currency)."""

    def upsert_event(self, event: CalendarEvent) -> UpsertOutcome:
        """Insert event or refresh forecast/previous of the existing row.

        Never overwrites ``actual`` or ``processed``.

        Raises:
            RepositoryError: On storage errors
        """
        ...

    def find_by_timestamp(self, timestamp: datetime) -> list[CalendarEvent]:
        """Return events whose naive timestamp equals ``timestamp``."""
        ...

    def find_between(self, start: datetime, end: datetime) -> list[CalendarEvent]:
        """Return events with start <= timestamp < end, ordered by time."""
        ...

    def find_unprocessed_older_than(self, cutoff: datetime) -> list[CalendarEvent]:
        """Return unprocessed events with timestamp < cutoff."""
        ...

    def record_actual(self, event_id: int, actual: str) -> None:
        """Store the published value and mark the event processed."""
        ...

    def delete_older_than(self, cutoff: datetime, *, processed_only: bool) -> int:
        """Delete events with timestamp < cutoff and return the row count."""
        ...


class SubscriptionRegistryProtocol(Protocol):
    """Alert subscriptions keyed by (server_id, channel_id)."""

    def save_subscription(self, subscription: Subscription) -> Subscription:
        """Create or replace the subscription for its channel."""
        ...

    def delete_subscription(self, server_id: str, channel_id: str) -> bool:
        """Remove a channel's subscription, returning whether it existed."""
        ...

    def get_subscriptions(self) -> list[Subscription]:
        """Return every subscription."""
        ...

    def get_subscriptions_for_alert_class(
        self, alert_class: AlertClass
    ) -> list[Subscription]:
        """Return subscriptions that request ``alert_class``."""
        ...


class DigestScheduleRegistryProtocol(Protocol):
    """Scheduled digests configured per channel."""

    def save_digest_schedule(self, schedule: DigestSchedule) -> DigestSchedule:
        """Create or replace a digest schedule."""
        ...

    def get_digest_schedules_for_time(
        self, hour: int, minute: int
    ) -> list[DigestSchedule]:
        """Return schedules due at the exchange-local hour/minute."""
        ...


class RepositoryProtocol(
    EventStoreProtocol,
    SubscriptionRegistryProtocol,
    DigestScheduleRegistryProtocol,
    Protocol,
):
    """Everything the storage backend exposes."""

    def alert_queue(self) -> AlertQueuePort:
        """Return the durable queue bound to this storage backend."""
        ...

    def close(self) -> None:
        """Release connections."""
        ...


class MessagePosterProtocol(Protocol):
    """Protocol for the notification surface used by consumers."""

    def post_message(
        self, channel_id: str, blocks: list[dict[str, Any]], text: str = ""
    ) -> str:
        """Post a Block Kit message and return its timestamp.

        Raises:
            SlackAPIError: On API communication errors
            RateLimitError: On rate limit exceeded
        """
        ...
