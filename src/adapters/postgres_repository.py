"""PostgreSQL repository backed by a psycopg2 connection pool.

Schema is owned by the Alembic migration under ``alembic/versions``. Event
timestamps live in ``TIMESTAMP WITHOUT TIME ZONE`` columns and are passed
as naive exchange-local datetimes, never converted.
"""

import json
from collections.abc import Iterable, Iterator
from contextlib import AbstractContextManager, contextmanager
from datetime import datetime, timedelta
from threading import Lock
from time import sleep
from typing import TYPE_CHECKING, Any, Final

from psycopg2 import Error as PsycopgError
from psycopg2 import extensions
from psycopg2 import pool as psycopg2_pool
from psycopg2.extras import RealDictCursor, register_uuid

from src.adapters.postgres_alert_queue import PostgresAlertQueue
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

if TYPE_CHECKING:
    from src.config.settings import Settings


DEFAULT_POOL_MIN_CONNECTIONS: Final[int] = 2
DEFAULT_POOL_MAX_CONNECTIONS: Final[int] = 10
DEFAULT_STATEMENT_TIMEOUT_MS: Final[int] = 10_000
DEFAULT_CONNECT_TIMEOUT_SECONDS: Final[int] = 10
DEFAULT_APPLICATION_NAME: Final[str] = "econ_calendar_alerts"
POOL_ACQUIRE_MAX_ATTEMPTS: Final[int] = 5
POOL_ACQUIRE_BASE_DELAY_SECONDS: Final[float] = 0.1
POOL_ACQUIRE_MAX_DELAY_SECONDS: Final[float] = 2.0

logger = get_logger(__name__)

# Queue message ids are UUID columns.
register_uuid()


def _dump_set(values: Iterable[Any]) -> str:
    return json.dumps(sorted(item.value for item in values))


class PostgresRepository:
    """Event store, registries and alert queue on one PostgreSQL pool."""

    def __init__(
        self,
        host: str,
        port: int,
        database: str,
        user: str,
        password: str,
        settings: "Settings | None" = None,
    ):
        self._database = database
        if settings is not None:
            min_connections = settings.postgres_min_connections
            max_connections = settings.postgres_max_connections
            statement_timeout_ms = settings.postgres_statement_timeout_ms
            connect_timeout = settings.postgres_connect_timeout_seconds
            application_name = settings.postgres_application_name
            ssl_mode = settings.postgres_ssl_mode
            self._queue_visibility_timeout = timedelta(
                seconds=settings.queue_visibility_timeout_seconds
            )
        else:
            min_connections = DEFAULT_POOL_MIN_CONNECTIONS
            max_connections = DEFAULT_POOL_MAX_CONNECTIONS
            statement_timeout_ms = DEFAULT_STATEMENT_TIMEOUT_MS
            connect_timeout = DEFAULT_CONNECT_TIMEOUT_SECONDS
            application_name = DEFAULT_APPLICATION_NAME
            ssl_mode = None
            self._queue_visibility_timeout = DEFAULT_VISIBILITY_TIMEOUT

        if min_connections <= 0:
            raise RepositoryError("postgres_min_connections must be positive")
        if max_connections < min_connections:
            raise RepositoryError(
                "postgres_max_connections must be >= postgres_min_connections"
            )

        self._max_connections = max_connections
        self._in_use = 0
        self._in_use_lock = Lock()
        self._alert_queue_adapter: PostgresAlertQueue | None = None

        conn_kwargs: dict[str, Any] = {
            "host": host,
            "port": port,
            "database": database,
            "user": user,
            "password": password,
            "connect_timeout": connect_timeout,
            "options": (
                f"-c statement_timeout={statement_timeout_ms} "
                f"-c application_name={application_name}"
            ),
        }
        if ssl_mode:
            conn_kwargs["sslmode"] = ssl_mode
        self._pool = self._create_pool(min_connections, max_connections, conn_kwargs)
        logger.info(
            "postgres_pool_initialized",
            host=host,
            port=port,
            database=database,
            min_connections=min_connections,
            max_connections=max_connections,
        )

    @staticmethod
    def _create_pool(
        min_connections: int, max_connections: int, conn_kwargs: dict[str, Any]
    ) -> psycopg2_pool.ThreadedConnectionPool:
        """Open the pool and prove it works with ``SELECT 1``."""
        try:
            pool = psycopg2_pool.ThreadedConnectionPool(
                min_connections, max_connections, **conn_kwargs
            )
        except PsycopgError as exc:
            raise RepositoryError(f"Failed to initialize PostgreSQL pool: {exc}") from exc

        try:
            conn = pool.getconn()
            try:
                with conn.cursor() as cur:
                    cur.execute("SELECT 1")
            finally:
                pool.putconn(conn)
        except PsycopgError as exc:
            pool.closeall()
            raise RepositoryError(f"PostgreSQL validation query failed: {exc}") from exc
        return pool

    def _checkout(self) -> extensions.connection:
        """Take a pooled connection, backing off while the pool is exhausted."""
        delay = POOL_ACQUIRE_BASE_DELAY_SECONDS
        attempt = 0
        while True:
            attempt += 1
            try:
                conn = self._pool.getconn()
            except psycopg2_pool.PoolError as exc:
                if attempt >= POOL_ACQUIRE_MAX_ATTEMPTS:
                    logger.error(
                        "postgres_pool_acquire_failed",
                        attempts=attempt,
                        max_connections=self._max_connections,
                        in_use=self._in_use,
                    )
                    raise RepositoryError(
                        "Failed to acquire PostgreSQL connection from pool"
                    ) from exc
                logger.warning(
                    "postgres_pool_exhausted_retry",
                    attempt=attempt,
                    wait_seconds=delay,
                    in_use=self._in_use,
                )
                sleep(delay)
                delay = min(delay * 2, POOL_ACQUIRE_MAX_DELAY_SECONDS)
                continue

            with self._in_use_lock:
                self._in_use += 1
            return conn

    def _checkin(self, conn: extensions.connection, *, broken: bool) -> None:
        try:
            self._pool.putconn(conn, close=broken)
        except PsycopgError:
            logger.warning("postgres_putconn_failed", broken=broken, exc_info=True)
        finally:
            with self._in_use_lock:
                self._in_use = max(self._in_use - 1, 0)

    @contextmanager
    def _get_connection(self) -> Iterator[extensions.connection]:
        """Borrow a connection; open transactions are rolled back on return."""
        conn = self._checkout()
        conn.autocommit = False
        broken = False
        try:
            yield conn
        except PsycopgError as exc:
            try:
                conn.rollback()
            except PsycopgError:
                broken = True
                logger.warning("postgres_rollback_failed", exc_info=True)
            raise RepositoryError(f"PostgreSQL error: {exc}") from exc
        finally:
            if not broken:
                try:
                    if conn.get_transaction_status() in (
                        extensions.TRANSACTION_STATUS_INTRANS,
                        extensions.TRANSACTION_STATUS_INERROR,
                    ):
                        conn.rollback()
                except PsycopgError:
                    broken = True
                    logger.warning("postgres_cleanup_failed", exc_info=True)
            self._checkin(conn, broken=broken)

    def close(self) -> None:
        """Close every pooled connection."""
        self._pool.closeall()
        logger.info("postgres_pool_closed", database=self._database)

    def alert_queue(self) -> AlertQueuePort:
        """Queue adapter sharing this repository's pool."""
        if self._alert_queue_adapter is None:

            def _provider() -> AbstractContextManager[Any]:
                return self._get_connection()

            self._alert_queue_adapter = PostgresAlertQueue(
                _provider, visibility_timeout=self._queue_visibility_timeout
            )
        return self._alert_queue_adapter

    # Calendar events -------------------------------------------------

    def upsert_event(self, event: CalendarEvent) -> UpsertOutcome:
        """Insert event or refresh forecast/previous in one statement.

        ``xmax = 0`` holds only for a freshly inserted tuple, which tells the
        two outcomes apart without a second round trip.
        """
        with self._get_connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    """
                    INSERT INTO calendar_events (
                        title, currency, timestamp, impact, forecast, previous,
                        source, fingerprint
                    ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                    ON CONFLICT (title, timestamp, impact, currency) DO UPDATE SET
                        forecast = EXCLUDED.forecast,
                        previous = EXCLUDED.previous,
                        updated_at = NOW()
                    RETURNING (xmax = 0) AS inserted
                    """,
                    (
                        event.title,
                        event.currency.value,
                        event.timestamp,
                        event.impact.value,
                        event.forecast,
                        event.previous,
                        event.source,
                        event.fingerprint or event_fingerprint(event),
                    ),
                )
                row = cur.fetchone()
                conn.commit()

        if row is not None and row["inserted"]:
            return UpsertOutcome.CREATED
        return UpsertOutcome.UPDATED

    def _select_events(
        self, where: str, params: tuple[Any, ...]
    ) -> list[CalendarEvent]:
        with self._get_connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    f"""
                    SELECT * FROM calendar_events
                    WHERE {where}
                    ORDER BY timestamp ASC, event_id ASC
                    """,
                    params,
                )
                rows = cur.fetchall()

        return [self._row_to_event(dict(row)) for row in rows]

    def find_by_timestamp(self, timestamp: datetime) -> list[CalendarEvent]:
        return self._select_events("timestamp = %s", (timestamp,))

    def find_between(self, start: datetime, end: datetime) -> list[CalendarEvent]:
        return self._select_events(
            "timestamp >= %s AND timestamp < %s", (start, end)
        )

    def find_unprocessed_older_than(self, cutoff: datetime) -> list[CalendarEvent]:
        return self._select_events(
            "processed = FALSE AND timestamp < %s", (cutoff,)
        )

    def record_actual(self, event_id: int, actual: str) -> None:
        with self._get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE calendar_events
                    SET actual = %s, processed = TRUE, updated_at = NOW()
                    WHERE event_id = %s
                    """,
                    (actual, event_id),
                )
                if cur.rowcount == 0:
                    conn.rollback()
                    raise RepositoryError(f"Event not found: {event_id}")
                conn.commit()

    def delete_older_than(self, cutoff: datetime, *, processed_only: bool) -> int:
        query = "DELETE FROM calendar_events WHERE timestamp < %s"
        if processed_only:
            query += " AND processed = TRUE"

        with self._get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query, (cutoff,))
                deleted = int(cur.rowcount)
                conn.commit()
        return deleted

    def _row_to_event(self, row: dict[str, Any]) -> CalendarEvent:
        return CalendarEvent(
            event_id=row["event_id"],
            title=row["title"],
            currency=Currency(row["currency"]),
            timestamp=row["timestamp"],
            impact=Impact(row["impact"]),
            forecast=row.get("forecast") or "",
            previous=row.get("previous") or "",
            actual=row.get("actual"),
            processed=bool(row["processed"]),
            source=row["source"],
            fingerprint=row["fingerprint"],
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    # Subscriptions ---------------------------------------------------

    def save_subscription(self, subscription: Subscription) -> Subscription:
        with self._get_connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    """
                    INSERT INTO alert_subscriptions (
                        server_id, channel_id, currencies, impacts, alert_classes
                    ) VALUES (%s, %s, %s, %s, %s)
                    ON CONFLICT (server_id, channel_id) DO UPDATE SET
                        currencies = EXCLUDED.currencies,
                        impacts = EXCLUDED.impacts,
                        alert_classes = EXCLUDED.alert_classes,
                        updated_at = NOW()
                    RETURNING subscription_id
                    """,
                    (
                        subscription.server_id,
                        subscription.channel_id,
                        _dump_set(subscription.currencies),
                        _dump_set(subscription.impacts),
                        _dump_set(subscription.alert_classes),
                    ),
                )
                row = cur.fetchone()
                conn.commit()

        return subscription.model_copy(
            update={"subscription_id": row["subscription_id"]}
        )

    def delete_subscription(self, server_id: str, channel_id: str) -> bool:
        with self._get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    DELETE FROM alert_subscriptions
                    WHERE server_id = %s AND channel_id = %s
                    """,
                    (server_id, channel_id),
                )
                deleted = cur.rowcount > 0
                conn.commit()
        return deleted

    def get_subscriptions(self) -> list[Subscription]:
        with self._get_connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    "SELECT * FROM alert_subscriptions ORDER BY subscription_id ASC"
                )
                rows = cur.fetchall()
        return [self._row_to_subscription(dict(row)) for row in rows]

    def get_subscriptions_for_alert_class(
        self, alert_class: AlertClass
    ) -> list[Subscription]:
        with self._get_connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    """
                    SELECT * FROM alert_subscriptions
                    WHERE alert_classes ? %s
                    ORDER BY subscription_id ASC
                    """,
                    (alert_class.value,),
                )
                rows = cur.fetchall()
        return [self._row_to_subscription(dict(row)) for row in rows]

    def _row_to_subscription(self, row: dict[str, Any]) -> Subscription:
        return Subscription(
            subscription_id=row["subscription_id"],
            server_id=row["server_id"],
            channel_id=row["channel_id"],
            currencies=frozenset(Currency(v) for v in row.get("currencies") or []),
            impacts=frozenset(Impact(v) for v in row.get("impacts") or []),
            alert_classes=frozenset(
                AlertClass(v) for v in row.get("alert_classes") or []
            ),
        )

    # Digest schedules ------------------------------------------------

    def save_digest_schedule(self, schedule: DigestSchedule) -> DigestSchedule:
        with self._get_connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    """
                    INSERT INTO digest_schedules (
                        server_id, channel_id, hour, minute, news_scope,
                        currencies, impacts
                    ) VALUES (%s, %s, %s, %s, %s, %s, %s)
                    ON CONFLICT (server_id, channel_id, hour, minute, news_scope)
                    DO UPDATE SET
                        currencies = EXCLUDED.currencies,
                        impacts = EXCLUDED.impacts
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
                    ),
                )
                row = cur.fetchone()
                conn.commit()

        return schedule.model_copy(update={"schedule_id": row["schedule_id"]})

    def get_digest_schedules_for_time(
        self, hour: int, minute: int
    ) -> list[DigestSchedule]:
        with self._get_connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    """
                    SELECT * FROM digest_schedules
                    WHERE hour = %s AND minute = %s
                    ORDER BY schedule_id ASC
                    """,
                    (hour, minute),
                )
                rows = cur.fetchall()

        return [
            DigestSchedule(
                schedule_id=row["schedule_id"],
                server_id=row["server_id"],
                channel_id=row["channel_id"],
                hour=row["hour"],
                minute=row["minute"],
                news_scope=NewsScope(row["news_scope"]),
                currencies=frozenset(
                    Currency(v) for v in row.get("currencies") or []
                ),
                impacts=frozenset(Impact(v) for v in row.get("impacts") or []),
            )
            for row in rows
        ]
