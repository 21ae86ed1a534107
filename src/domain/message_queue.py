"""Domain models and helpers for the durable alert queue."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import Any, Final
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, field_validator

ALERTS_QUEUE_NAME: Final[str] = "calendar_alerts"
DIGESTS_QUEUE_NAME: Final[str] = "calendar_digests"
DEFAULT_MAX_ATTEMPTS: Final[int] = 5
DEFAULT_VISIBILITY_TIMEOUT: Final[timedelta] = timedelta(minutes=5)
LEASE_EXPIRED_ERROR: Final[str] = "lease expired after final attempt"


class MessageStatus(StrEnum):
    """Delivery lifecycle states for queued messages."""

    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    FAILED = "failed"


class QueueMessageCreate(BaseModel):
    """Schema used when publishing a new message."""

    queue_name: str = Field(..., min_length=1)
    payload: dict[str, Any] = Field(default_factory=dict)
    run_at: datetime = Field(default_factory=lambda: datetime.now(tz=UTC))
    max_attempts: int = DEFAULT_MAX_ATTEMPTS

    @field_validator("run_at")
    @classmethod
    def _ensure_tz(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    @field_validator("max_attempts")
    @classmethod
    def _validate_attempts(cls, value: int) -> int:
        if value <= 0:
            msg = "max_attempts must be positive"
            raise ValueError(msg)
        return value


class QueueMessage(BaseModel):
    """Persisted queue message representation."""

    message_id: UUID = Field(default_factory=uuid4)
    queue_name: str
    payload: dict[str, Any]
    run_at: datetime
    status: MessageStatus
    attempts: int
    max_attempts: int
    last_error: str | None = None
    created_at: datetime
    updated_at: datetime
    locked_at: datetime | None = None

    @field_validator("run_at", "created_at", "updated_at", "locked_at")
    @classmethod
    def _ensure_timezone(cls, value: datetime | None) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


def ensure_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime."""

    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


__all__ = [
    "ALERTS_QUEUE_NAME",
    "DEFAULT_MAX_ATTEMPTS",
    "DEFAULT_VISIBILITY_TIMEOUT",
    "DIGESTS_QUEUE_NAME",
    "LEASE_EXPIRED_ERROR",
    "MessageStatus",
    "QueueMessage",
    "QueueMessageCreate",
    "ensure_utc",
]
