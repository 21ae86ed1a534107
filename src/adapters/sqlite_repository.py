"""SQLite repository adapter for local storage.

Implements RepositoryProtocol with SQLite backend. Naive exchange-local
timestamps are stored as ``YYYY-MM-DD HH:MM:SS`` text so that equality and
range comparisons work on the literal wall-clock digits.
"""

import json
import sqlite3
from collections.abc import Iterable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any, Final

from src.adapters.sqlite_alert_queue import SQLiteAlertQueue
from src.config.logging_config import get_logger
from src.domain.exceptions import RepositoryError
from src.domain.message_queue import DEFAULT_VISIBILITY_TIMEOUT
from src.domain.models import (
    AlertClass,
    CalendarEvent,
    Currency,
    DigestSchedule,
    Impact,
    NewsScope,
    Subscription,
    UpsertOutcome,
)
from src.ports.alert_queue import AlertQueuePort
from src.services.fingerprint import event_fingerprint
from src.services.time_normalizer import NAIVE_FORMAT

logger = get_logger(__name__)

SQLITE_BUSY_TIMEOUT_SECONDS: Final[float] = 30.0


def _format_ts(value: datetime) -> str:
    return value.strftime(NAIVE_FORMAT)


def _parse_ts(value: str) -> datetime:
    return datetime.strptime(value, NAIVE_FORMAT)


def _dump_set(values: Iterable[Any]) -> str:
    return json.dumps(sorted(item.value for item in values))


class SQLiteRepository:
    """SQLite-based repository for local runs and tests."""

    def __init__(
        self,
        db_path: str,
        *,
        queue_visibility_timeout: timedelta = DEFAULT_VISIBILITY_TIMEOUT,
    ) -> None:
        """Initialize repository and ensure schema.

        Args:
            db_path: Path to SQLite database file
            queue_visibility_timeout: Lease duration for queued alerts
        """
        self.db_path = db_path
        self._queue_visibility_timeout = queue_visibility_timeout
        self._alert_queue: SQLiteAlertQueue | None = None

        # Ensure data directory exists
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self._create_schema()

    def _get_connection(self) -> sqlite3.Connection:
        """Get database connection.

        Returns:
            SQLite connection
        """
        conn = sqlite3.Connection(self.db_path, timeout=SQLITE_BUSY_TIMEOUT_SECONDS)
        conn.row_factory = sqlite3.Row
        return conn

    def _create_schema(self) -> None:
        """Create database schema if not exists."""
        logger.info("sqlite_schema_creation_started", db_path=str(self.db_path))
        conn = self._get_connection()
        try:
            cursor = conn.cursor()

            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS calendar_events (
                    event_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    title TEXT NOT NULL,
                    currency TEXT NOT NULL,
                    timestamp TEXT NOT NULL,
                    impact TEXT NOT NULL,
                    forecast TEXT NOT NULL DEFAULT '',
                    previous TEXT NOT NULL DEFAULT '',
                    actual TEXT,
                    processed INTEGER NOT NULL DEFAULT 0,
                    source TEXT NOT NULL,
                    fingerprint TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    UNIQUE (title, timestamp, impact, currency)
                )
                """
            )
            cursor.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_calendar_events_timestamp
                ON calendar_events(timestamp)
                """
            )

            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS alert_subscriptions (
                    subscription_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    server_id TEXT NOT NULL,
                    channel_id TEXT NOT NULL,
                    currencies TEXT NOT NULL DEFAULT '[]',
                    impacts TEXT NOT NULL DEFAULT '[]',
                    alert_classes TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    UNIQUE (server_id, channel_id)
                )
                """
            )

            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS digest_schedules (
                    schedule_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    server_id TEXT NOT NULL,
                    channel_id TEXT NOT NULL,
                    hour INTEGER NOT NULL,
                    minute INTEGER NOT NULL,
                    news_scope TEXT NOT NULL,
                    currencies TEXT NOT NULL DEFAULT '[]',
                    impacts TEXT NOT NULL DEFAULT '[]',
                    created_at TEXT NOT NULL,
                    UNIQUE (server_id, channel_id, hour, minute, news_scope)
                )
                """
            )

            SQLiteAlertQueue.create_schema(cursor)

            conn.commit()
        except sqlite3.Error as exc:
            raise RepositoryError(f"Failed to create schema: {exc}") from exc
        finally:
            conn.close()

    def close(self) -> None:
        """Connections are opened per call; nothing to release."""

    def alert_queue(self) -> AlertQueuePort:
        """Provide queue adapter backed by this database file."""

        if self._alert_queue is None:
            self._alert_queue = SQLiteAlertQueue(
                self._get_connection,
                visibility_timeout=self._queue_visibility_timeout,
            )
        return self._alert_queue

    # Calendar events -------------------------------------------------

    def upsert_event(self, event: CalendarEvent) -> UpsertOutcome:
        """Insert event or refresh forecast/previous (single statement).

        Args:
            event: Event with naive exchange-local timestamp

        Returns:
            Whether the row was created or updated

        Raises:
            RepositoryError: On storage errors
        """
        now = datetime.now(tz=UTC).isoformat()
        conn = self._get_connection()
        try:
            cursor = conn.execute(
                """
                INSERT INTO calendar_events (
                    title, currency, timestamp, impact, forecast, previous,
                    source, fingerprint, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (title, timestamp, impact, currency) DO UPDATE SET
                    forecast = excluded.forecast,
                    previous = excluded.previous,
                    updated_at = excluded.updated_at
                RETURNING created_at
                """,
                (
                    event.title,
                    event.currency.value,
                    _format_ts(event.timestamp),
                    event.impact.value,
                    event.forecast,
                    event.previous,
                    event.source,
                    event.fingerprint or event_fingerprint(event),
                    now,
                    now,
                ),
            )
            row = cursor.fetchone()
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise RepositoryError(f"Failed to upsert event: {exc}") from exc
        finally:
            conn.close()

        if row is not None and row["created_at"] == now:
            return UpsertOutcome.CREATED
        return UpsertOutcome.UPDATED

    def _select_events(self, where: str, params: tuple[Any, ...]) -> list[CalendarEvent]:
        conn = self._get_connection()
        try:
            rows = conn.execute(
                f"SELECT * FROM calendar_events WHERE {where} ORDER BY timestamp ASC, event_id ASC",
                params,
            ).fetchall()
        except sqlite3.Error as exc:
            raise RepositoryError(f"Failed to query events: {exc}") from exc
        finally:
            conn.close()
        return [self._row_to_event(row) for row in rows]

    def find_by_timestamp(self, timestamp: datetime) -> list[CalendarEvent]:
        """Get events stored at exactly ``timestamp``."""
        return self._select_events("timestamp = ?", (_format_ts(timestamp),))

    def find_between(self, start: datetime, end: datetime) -> list[CalendarEvent]:
        """Get events in the half-open window [start, end)."""
        return self._select_events(
            "timestamp >= ? AND timestamp < ?", (_format_ts(start), _format_ts(end))
        )

    def find_unprocessed_older_than(self, cutoff: datetime) -> list[CalendarEvent]:
        """Get events still waiting for their actual value."""
        return self._select_events(
            "processed = 0 AND timestamp < ?", (_format_ts(cutoff),)
        )

    def get_event(self, event_id: int) -> CalendarEvent | None:
        results = self._select_events("event_id = ?", (event_id,))
        return results[0] if results else None

    def record_actual(self, event_id: int, actual: str) -> None:
        """Store the published value and mark event processed.

        Raises:
            RepositoryError: If the event does not exist or on storage errors
        """
        conn = self._get_connection()
        try:
            cursor = conn.execute(
                """
                UPDATE calendar_events
                SET actual = ?, processed = 1, updated_at = ?
                WHERE event_id = ?
                """,
                (actual, datetime.now(tz=UTC).isoformat(), event_id),
            )
            if cursor.rowcount == 0:
                conn.rollback()
                raise RepositoryError(f"Event not found: {event_id}")
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise RepositoryError(f"Failed to record actual: {exc}") from exc
        finally:
            conn.close()

    def delete_older_than(self, cutoff: datetime, *, processed_only: bool) -> int:
        """Delete events older than cutoff.

        Args:
            cutoff: Naive exchange-local cutoff (exclusive)
            processed_only: Restrict deletion to processed events

        Returns:
            Number of rows deleted
        """
        query = "DELETE FROM calendar_events WHERE timestamp < ?"
        if processed_only:
            query += " AND processed = 1"

        conn = self._get_connection()
        try:
            cursor = conn.execute(query, (_format_ts(cutoff),))
            deleted = cursor.rowcount
            conn.commit()
            return deleted
        except sqlite3.Error as exc:
            conn.rollback()
            raise RepositoryError(f"Failed to delete events: {exc}") from exc
        finally:
            conn.close()

    def _row_to_event(self, row: sqlite3.Row) -> CalendarEvent:
        return CalendarEvent(
            event_id=row["event_id"],
            title=row["title"],
            currency=Currency(row["currency"]),
            timestamp=_parse_ts(row["timestamp"]),
            impact=Impact(row["impact"]),
            forecast=row["forecast"] or "",
            previous=row["previous"] or "",
            actual=row["actual"],
            processed=bool(row["processed"]),
            source=row["source"],
            fingerprint=row["fingerprint"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    # Subscriptions ---------------------------------------------------

    def save_subscription(self, subscription: Subscription) -> Subscription:
        """Create or replace the subscription of a channel."""
        now = datetime.now(tz=UTC).isoformat()
        conn = self._get_connection()
        try:
            cursor = conn.execute(
                """
                INSERT INTO alert_subscriptions (
                    server_id, channel_id, currencies, impacts, alert_classes,
                    created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (server_id, channel_id) DO UPDATE SET
                    currencies = excluded.currencies,
                    impacts = excluded.impacts,
                    alert_classes = excluded.alert_classes,
                    updated_at = excluded.updated_at
                RETURNING subscription_id
                """,
                (
                    subscription.server_id,
                    subscription.channel_id,
                    _dump_set(subscription.currencies),
                    _dump_set(subscription.impacts),
                    _dump_set(subscription.alert_classes),
                    now,
                    now,
                ),
            )
            row = cursor.fetchone()
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise RepositoryError(f"Failed to save subscription: {exc}") from exc
        finally:
            conn.close()

        return subscription.model_copy(update={"subscription_id": row[0]})

    def delete_subscription(self, server_id: str, channel_id: str) -> bool:
        conn = self._get_connection()
        try:
            cursor = conn.execute(
                "DELETE FROM alert_subscriptions WHERE server_id = ? AND channel_id = ?",
                (server_id, channel_id),
            )
            conn.commit()
            return cursor.rowcount > 0
        except sqlite3.Error as exc:
            conn.rollback()
            raise RepositoryError(f"Failed to delete subscription: {exc}") from exc
        finally:
            conn.close()

    def get_subscriptions(self) -> list[Subscription]:
        """Get every stored subscription."""
        conn = self._get_connection()
        try:
            rows = conn.execute(
                "SELECT * FROM alert_subscriptions ORDER BY subscription_id ASC"
            ).fetchall()
        except sqlite3.Error as exc:
            raise RepositoryError(f"Failed to load subscriptions: {exc}") from exc
        finally:
            conn.close()
        return [self._row_to_subscription(row) for row in rows]

    def get_subscriptions_for_alert_class(
        self, alert_class: AlertClass
    ) -> list[Subscription]:
        """Get subscriptions whose alert-class filter contains ``alert_class``."""
        return [
            subscription
            for subscription in self.get_subscriptions()
            if alert_class in subscription.alert_classes
        ]

    def _row_to_subscription(self, row: sqlite3.Row) -> Subscription:
        return Subscription(
            subscription_id=row["subscription_id"],
            server_id=row["server_id"],
            channel_id=row["channel_id"],
            currencies=frozenset(Currency(v) for v in json.loads(row["currencies"])),
            impacts=frozenset(Impact(v) for v in json.loads(row["impacts"])),
            alert_classes=frozenset(
                AlertClass(v) for v in json.loads(row["alert_classes"])
            ),
        )

    # Digest schedules ------------------------------------------------

    def save_digest_schedule(self, schedule: DigestSchedule) -> DigestSchedule:
        """Create or replace a digest schedule."""
        conn = self._get_connection()
        try:
            cursor = conn.execute(
                """
                INSERT INTO digest_schedules (
                    server_id, channel_id, hour, minute, news_scope,
                    currencies, impacts, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (server_id, channel_id, hour, minute, news_scope)
                DO UPDATE SET
                    currencies = excluded.currencies,
                    impacts = excluded.impacts
                RETURNING schedule_id
                """,
                (
                    schedule.server_id,
                    schedule.channel_id,
                    schedule.hour,
                    schedule.minute,
                    schedule.news_scope.value,
                    _dump_set(schedule.currencies),
                    _dump_set(schedule.impacts),
                    datetime.now(tz=UTC).isoformat(),
                ),
            )
            row = cursor.fetchone()
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise RepositoryError(f"Failed to save digest schedule: {exc}") from exc
        finally:
            conn.close()

        return schedule.model_copy(update={"schedule_id": row[0]})

    def get_digest_schedules_for_time(
        self, hour: int, minute: int
    ) -> list[DigestSchedule]:
        """Get schedules due at the given exchange-local time."""
        conn = self._get_connection()
        try:
            rows = conn.execute(
                """
                SELECT * FROM digest_schedules
                WHERE hour = ? AND minute = ?
                ORDER BY schedule_id ASC
                """,
                (hour, minute),
            ).fetchall()
        except sqlite3.Error as exc:
            raise RepositoryError(f"Failed to load digest schedules: {exc}") from exc
        finally:
            conn.close()

        return [
            DigestSchedule(
                schedule_id=row["schedule_id"],
                server_id=row["server_id"],
                channel_id=row["channel_id"],
                hour=row["hour"],
                minute=row["minute"],
                news_scope=NewsScope(row["news_scope"]),
                currencies=frozenset(
                    Currency(v) for v in json.loads(row["currencies"])
                ),
                impacts=frozenset(Impact(v) for v in json.loads(row["impacts"])),
            )
            for row in rows
        ]
