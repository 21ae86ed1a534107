"""Tests for the SQLite-backed alert queue."""

from __future__ import annotations

import sqlite3
from datetime import UTC, datetime, timedelta
from pathlib import Path
from unittest.mock import Mock
from uuid import uuid4

import pytest

from src.adapters.sqlite_alert_queue import SQLiteAlertQueue
from src.adapters.sqlite_repository import SQLiteRepository
from src.domain.exceptions import RepositoryError
from src.domain.message_queue import (
    ALERTS_QUEUE_NAME,
    DIGESTS_QUEUE_NAME,
    MessageStatus,
    QueueMessageCreate,
)
from src.ports.alert_queue import AlertQueuePort


def _queue(tmp_path: Path, visibility: timedelta = timedelta(minutes=5)) -> AlertQueuePort:
    repository = SQLiteRepository(
        str(tmp_path / "queue.db"), queue_visibility_timeout=visibility
    )
    return repository.alert_queue()


def _message(queue_name: str = ALERTS_QUEUE_NAME, **payload: str) -> QueueMessageCreate:
    return QueueMessageCreate(
        queue_name=queue_name,
        payload=payload or {"title": "CPI m/m", "channelId": "C1"},
        max_attempts=3,
    )


def test_publish_returns_queued_message(tmp_path: Path) -> None:
    queue = _queue(tmp_path)

    stored = queue.publish(_message())

    assert isinstance(queue, AlertQueuePort)
    assert stored.status is MessageStatus.QUEUED
    assert stored.attempts == 0
    assert stored.payload == {"title": "CPI m/m", "channelId": "C1"}
    assert stored.run_at.tzinfo is not None


def test_receive_leases_only_requested_queue(tmp_path: Path) -> None:
    queue = _queue(tmp_path)
    alert = queue.publish(_message())
    queue.publish(_message(DIGESTS_QUEUE_NAME))

    leased = queue.receive(ALERTS_QUEUE_NAME, 10)

    assert [message.message_id for message in leased] == [alert.message_id]
    assert leased[0].status is MessageStatus.IN_PROGRESS
    assert leased[0].attempts == 1
    assert leased[0].locked_at is not None


def test_leased_message_is_not_redelivered_before_timeout(tmp_path: Path) -> None:
    queue = _queue(tmp_path)
    queue.publish(_message())

    assert len(queue.receive(ALERTS_QUEUE_NAME, 10)) == 1
    assert queue.receive(ALERTS_QUEUE_NAME, 10) == []


def test_unacknowledged_message_is_redelivered_after_timeout(tmp_path: Path) -> None:
    queue = _queue(tmp_path, visibility=timedelta(0))
    published = queue.publish(_message())

    first = queue.receive(ALERTS_QUEUE_NAME, 10)
    second = queue.receive(ALERTS_QUEUE_NAME, 10)

    assert [m.message_id for m in first] == [published.message_id]
    assert [m.message_id for m in second] == [published.message_id]
    assert second[0].attempts == 2


def test_expired_lease_on_last_attempt_is_failed(tmp_path: Path) -> None:
    queue = _queue(tmp_path, visibility=timedelta(0))
    queue.publish(_message())

    for _ in range(3):
        assert len(queue.receive(ALERTS_QUEUE_NAME, 10)) == 1

    assert queue.receive(ALERTS_QUEUE_NAME, 10) == []


def test_ack_prevents_redelivery(tmp_path: Path) -> None:
    queue = _queue(tmp_path, visibility=timedelta(0))
    queue.publish(_message())
    [leased] = queue.receive(ALERTS_QUEUE_NAME, 10)

    queue.ack(leased.message_id)

    assert queue.receive(ALERTS_QUEUE_NAME, 10) == []


def test_ack_unknown_message_raises(tmp_path: Path) -> None:
    queue = _queue(tmp_path)

    with pytest.raises(RepositoryError):
        queue.ack(uuid4())


def test_nack_with_retry_requeues_at_retry_time(tmp_path: Path) -> None:
    queue = _queue(tmp_path)
    queue.publish(_message())
    [leased] = queue.receive(ALERTS_QUEUE_NAME, 10)

    queue.nack(
        leased.message_id,
        error="boom",
        retry_at=datetime.now(tz=UTC) + timedelta(hours=1),
    )
    assert queue.receive(ALERTS_QUEUE_NAME, 10) == []

    queue.nack(leased.message_id, error="boom", retry_at=datetime.now(tz=UTC))
    [again] = queue.receive(ALERTS_QUEUE_NAME, 10)
    assert again.last_error == "boom"
    assert again.attempts == 2


def test_nack_without_retry_marks_failed(tmp_path: Path) -> None:
    queue = _queue(tmp_path, visibility=timedelta(0))
    queue.publish(_message())
    [leased] = queue.receive(ALERTS_QUEUE_NAME, 10)

    queue.nack(leased.message_id, error="invalid payload", retry_at=None)

    assert queue.receive(ALERTS_QUEUE_NAME, 10) == []


def test_receive_rejects_non_positive_limit(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        _queue(tmp_path).receive(ALERTS_QUEUE_NAME, 0)


def _locked_connection(mocker) -> Mock:
    conn = mocker.Mock()
    conn.execute.side_effect = sqlite3.OperationalError("database is locked")
    return conn


@pytest.mark.parametrize("operation", ["ack", "nack"])
def test_driver_errors_on_settle_are_wrapped(mocker, operation: str) -> None:
    conn = _locked_connection(mocker)
    queue = SQLiteAlertQueue(lambda: conn)

    with pytest.raises(RepositoryError, match="database is locked"):
        if operation == "ack":
            queue.ack(uuid4())
        else:
            queue.nack(uuid4(), error="boom", retry_at=None)

    conn.rollback.assert_called_once()
    conn.close.assert_called_once()
