"""Port definition for durable alert queue backends."""

from __future__ import annotations

from datetime import datetime
from typing import Protocol, runtime_checkable
from uuid import UUID

from src.domain.message_queue import QueueMessage, QueueMessageCreate


@runtime_checkable
class AlertQueuePort(Protocol):
    """Abstract interface implemented by queue adapters."""

    def publish(self, message: QueueMessageCreate) -> QueueMessage:
        """Persist a single message and return its stored representation."""

    def receive(self, queue_name: str, limit: int) -> list[QueueMessage]:
        """Lease up to ``limit`` deliverable messages from ``queue_name``."""

    def ack(self, message_id: UUID) -> None:
        """Mark message as delivered."""

    def nack(self, message_id: UUID, *, error: str, retry_at: datetime | None) -> None:
        """Record delivery failure and optionally schedule redelivery."""


__all__ = ["AlertQueuePort"]
