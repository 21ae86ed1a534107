"""SQLite implementation of the alert queue port for local runs."""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID, uuid4

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

# Fixed-width text so lexical order equals chronological order.
_TS_FORMAT = "%Y-%m-%dT%H:%M:%S.%f+00:00"


def _to_text(value: datetime) -> str:
    return ensure_utc(value).strftime(_TS_FORMAT)


def _row_to_message(row: sqlite3.Row) -> QueueMessage:
    data: dict[str, Any] = dict(row)
    data["payload"] = json.loads(data["payload"])
    return QueueMessage.model_validate(data)


class SQLiteAlertQueue(AlertQueuePort):
    """Alert queue stored in the repository's SQLite file."""

    def __init__(
        self,
        connection_factory: Callable[[], sqlite3.Connection],
        *,
        visibility_timeout: timedelta = DEFAULT_VISIBILITY_TIMEOUT,
    ) -> None:
        self._connection_factory = connection_factory
        self._visibility_timeout = visibility_timeout

    @staticmethod
    def create_schema(cursor: sqlite3.Cursor) -> None:
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS alert_queue (
                message_id TEXT PRIMARY KEY,
                queue_name TEXT NOT NULL,
                payload TEXT NOT NULL,
                run_at TEXT NOT NULL,
                status TEXT NOT NULL,
                attempts INTEGER NOT NULL DEFAULT 0,
                max_attempts INTEGER NOT NULL,
                last_error TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                locked_at TEXT
            )
            """
        )
        cursor.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_alert_queue_status_run_at
            ON alert_queue(queue_name, status, run_at)
            """
        )

    def publish(self, message: QueueMessageCreate) -> QueueMessage:
        now = _to_text(datetime.now(tz=UTC))
        conn = self._connection_factory()
        try:
            row = conn.execute(
                """
                INSERT INTO alert_queue (
                    message_id, queue_name, payload, run_at, status, attempts,
                    max_attempts, last_error, created_at, updated_at, locked_at
                ) VALUES (?, ?, ?, ?, ?, 0, ?, NULL, ?, ?, NULL)
                RETURNING *
                """,
                (
                    str(uuid4()),
                    message.queue_name,
                    json.dumps(message.payload),
                    _to_text(message.run_at),
                    MessageStatus.QUEUED.value,
                    message.max_attempts,
                    now,
                    now,
                ),
            ).fetchone()
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise QueuePublishError(f"Failed to publish message: {exc}") from exc
        finally:
            conn.close()

        return _row_to_message(row)

    def receive(self, queue_name: str, limit: int) -> list[QueueMessage]:
        if limit <= 0:
            raise ValueError("limit must be positive")

        now_dt = datetime.now(tz=UTC)
        now = _to_text(now_dt)
        lease_cutoff = _to_text(now_dt - self._visibility_timeout)
        conn = self._connection_factory()
        try:
            # Write lock up front so two consumers cannot lease the same rows.
            conn.execute("BEGIN IMMEDIATE")
            conn.execute(
                """
                UPDATE alert_queue
                SET status = ?, last_error = ?, locked_at = NULL, updated_at = ?
                WHERE queue_name = ?
                  AND status = ?
                  AND locked_at <= ?
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
            candidates = conn.execute(
                """
                SELECT message_id FROM alert_queue
                WHERE queue_name = ?
                  AND (
                    (status = ? AND run_at <= ?)
                    OR (status = ? AND locked_at <= ?)
                  )
                ORDER BY run_at ASC, created_at ASC
                LIMIT ?
                """,
                (
                    queue_name,
                    MessageStatus.QUEUED.value,
                    now,
                    MessageStatus.IN_PROGRESS.value,
                    lease_cutoff,
                    limit,
                ),
            ).fetchall()
            message_ids = [row["message_id"] for row in candidates]
            leased: list[sqlite3.Row] = []
            for message_id in message_ids:
                row = conn.execute(
                    """
                    UPDATE alert_queue
                    SET status = ?, attempts = attempts + 1,
                        locked_at = ?, updated_at = ?
                    WHERE message_id = ?
                    RETURNING *
                    """,
                    (MessageStatus.IN_PROGRESS.value, now, now, message_id),
                ).fetchone()
                leased.append(row)
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise RepositoryError(f"Failed to lease messages: {exc}") from exc
        finally:
            conn.close()

        return [_row_to_message(row) for row in leased]

    def ack(self, message_id: UUID) -> None:
        conn = self._connection_factory()
        try:
            cursor = conn.execute(
                """
                UPDATE alert_queue
                SET status = ?, last_error = NULL, locked_at = NULL, updated_at = ?
                WHERE message_id = ?
                """,
                (
                    MessageStatus.DONE.value,
                    _to_text(datetime.now(tz=UTC)),
                    str(message_id),
                ),
            )
            if cursor.rowcount == 0:
                conn.rollback()
                raise RepositoryError(f"Message not found: {message_id}")
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise RepositoryError(f"Failed to ack message {message_id}: {exc}") from exc
        finally:
            conn.close()

    def nack(
        self, message_id: UUID, *, error: str, retry_at: datetime | None
    ) -> None:
        conn = self._connection_factory()
        try:
            row = conn.execute(
                "SELECT attempts, max_attempts, run_at FROM alert_queue WHERE message_id = ?",
                (str(message_id),),
            ).fetchone()
            if row is None:
                raise RepositoryError(f"Message not found: {message_id}")

            should_retry = retry_at is not None and row["attempts"] < row["max_attempts"]
            next_status = (
                MessageStatus.QUEUED.value if should_retry else MessageStatus.FAILED.value
            )
            next_run_at = _to_text(retry_at) if should_retry else row["run_at"]

            conn.execute(
                """
                UPDATE alert_queue
                SET status = ?, run_at = ?, last_error = ?,
                    locked_at = NULL, updated_at = ?
                WHERE message_id = ?
                """,
                (
                    next_status,
                    next_run_at,
                    error,
                    _to_text(datetime.now(tz=UTC)),
                    str(message_id),
                ),
            )
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise RepositoryError(f"Failed to nack message {message_id}: {exc}") from exc
        finally:
            conn.close()


__all__ = ["SQLiteAlertQueue"]
