"""PostgreSQL implementation of the alert queue port."""

from __future__ import annotations

import json
from collections.abc import Callable
from contextlib import AbstractContextManager
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID, uuid4

from psycopg2.extras import RealDictCursor

from src.config.logging_config import get_logger
from src.domain.exceptions import QueuePublishError, RepositoryError
from src.domain.message_queue import (
    DEFAULT_VISIBILITY_TIMEOUT,
    LEASE_EXPIRED_ERROR,
    MessageStatus,
    QueueMessage,
    QueueMessageCreate,
    ensure_utc,
)
from src.ports.alert_queue import AlertQueuePort

logger = get_logger(__name__)


class PostgresAlertQueue(AlertQueuePort):
    """Alert queue backed by the ``alert_queue`` table."""

    def __init__(
        self,
        connection_provider: Callable[[], AbstractContextManager[Any]],
        *,
        visibility_timeout: timedelta = DEFAULT_VISIBILITY_TIMEOUT,
    ) -> None:
        self._connection_provider = connection_provider
        self._visibility_timeout = visibility_timeout

    def publish(self, message: QueueMessageCreate) -> QueueMessage:
        try:
            with self._connection_provider() as conn:
                with conn.cursor(cursor_factory=RealDictCursor) as cur:
                    cur.execute(
                        """
                        INSERT INTO alert_queue (
                            message_id,
                            queue_name,
                            payload,
                            run_at,
                            status,
                            attempts,
                            max_attempts,
                            last_error,
                            locked_at
                        ) VALUES (%s, %s, %s, %s, %s, 0, %s, NULL, NULL)
                        RETURNING *
                        """,
                        (
                            uuid4(),
                            message.queue_name,
                            json.dumps(message.payload),
                            ensure_utc(message.run_at),
                            MessageStatus.QUEUED.value,
                            message.max_attempts,
                        ),
                    )
                    row = cur.fetchone()
                    conn.commit()
        except RepositoryError as exc:
            raise QueuePublishError(str(exc)) from exc

        return QueueMessage.model_validate(dict(row))

    def receive(self, queue_name: str, limit: int) -> list[QueueMessage]:
        if limit <= 0:
            raise ValueError("limit must be positive")

        now = datetime.now(tz=UTC)
        lease_cutoff = now - self._visibility_timeout
        with self._connection_provider() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    """
                    UPDATE alert_queue
                    SET status = %s,
                        last_error = %s,
                        locked_at = NULL,
                        updated_at = %s
                    WHERE queue_name = %s
                      AND status = %s
                      AND locked_at <= %s
                      AND attempts >= max_attempts
                    """,
                    (
                        MessageStatus.FAILED.value,
                        LEASE_EXPIRED_ERROR,
                        now,
                        queue_name,
                        MessageStatus.IN_PROGRESS.value,
                        lease_cutoff,
                    ),
                )
                cur.execute(
                    """
                    WITH candidates AS (
                        SELECT message_id
                        FROM alert_queue
                        WHERE queue_name = %s
                          AND (
                            (status = %s AND run_at <= %s)
                            OR (status = %s AND locked_at <= %s)
                          )
                        ORDER BY run_at ASC, created_at ASC
                        FOR UPDATE SKIP LOCKED
                        LIMIT %s
                    )
                    UPDATE alert_queue AS q
                    SET status = %s,
                        attempts = attempts + 1,
                        locked_at = %s,
                        updated_at = %s
                    FROM candidates
                    WHERE q.message_id = candidates.message_id
                    RETURNING q.*
                    """,
                    (
                        queue_name,
                        MessageStatus.QUEUED.value,
                        now,
                        MessageStatus.IN_PROGRESS.value,
                        lease_cutoff,
                        limit,
                        MessageStatus.IN_PROGRESS.value,
                        now,
                        now,
                    ),
                )
                rows = cur.fetchall()
                conn.commit()

        return [QueueMessage.model_validate(dict(row)) for row in rows]

    def ack(self, message_id: UUID) -> None:
        now = datetime.now(tz=UTC)
        with self._connection_provider() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE alert_queue
                    SET status = %s,
                        last_error = NULL,
                        locked_at = NULL,
                        updated_at = %s
                    WHERE message_id = %s
                    """,
                    (MessageStatus.DONE.value, now, message_id),
                )
                if cur.rowcount == 0:
                    conn.rollback()
                    raise RepositoryError(f"Message not found: {message_id}")
                conn.commit()

    def nack(
        self, message_id: UUID, *, error: str, retry_at: datetime | None
    ) -> None:
        retry_at_utc = ensure_utc(retry_at) if retry_at is not None else None
        now = datetime.now(tz=UTC)

        with self._connection_provider() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    """
                    SELECT attempts, max_attempts, run_at
                    FROM alert_queue
                    WHERE message_id = %s
                    FOR UPDATE
                    """,
                    (message_id,),
                )
                row = cur.fetchone()
                if row is None:
                    conn.rollback()
                    raise RepositoryError(f"Message not found: {message_id}")

                attempts = int(row["attempts"])
                max_attempts = int(row["max_attempts"])
                should_retry = retry_at_utc is not None and attempts < max_attempts
                next_status = (
                    MessageStatus.QUEUED.value
                    if should_retry
                    else MessageStatus.FAILED.value
                )
                next_run_at = retry_at_utc if should_retry else row["run_at"]

                cur.execute(
                    """
                    UPDATE alert_queue
                    SET status = %s,
                        run_at = %s,
                        last_error = %s,
                        locked_at = NULL,
                        updated_at = %s
                    WHERE message_id = %s
                    """,
                    (next_status, next_run_at, error, now, message_id),
                )
                conn.commit()

        if next_status == MessageStatus.FAILED.value:
            logger.warning(
                "alert_queue_message_failed",
                message_id=str(message_id),
                attempts=attempts,
                error=error,
            )


__all__ = ["PostgresAlertQueue"]
