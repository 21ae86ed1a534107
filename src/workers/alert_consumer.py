"""Queue consumers that deliver alerts and digests to Slack."""

from __future__ import annotations

import math
import random
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Final

from pydantic import ValidationError as PydanticValidationError

from src.config.logging_config import get_logger
from src.domain.exceptions import NonRetryableError, RateLimitError
from src.domain.message_queue import (
    ALERTS_QUEUE_NAME,
    DIGESTS_QUEUE_NAME,
    QueueMessage,
)
from src.domain.models import AlertMessage, DigestMessage
from src.domain.protocols import MessagePosterProtocol
from src.observability.tracing import delivery_scope
from src.ports.alert_queue import AlertQueuePort
from src.services.alert_formatter import build_alert_blocks, build_digest_blocks

logger = get_logger(__name__)


_DEFAULT_RETRY_MAX_SECONDS: Final[float] = 300.0
_DEFAULT_BATCH_SIZE: Final[int] = 10


class _BaseConsumer:
    """Common consumer functionality (leasing, ack/nack, backoff, logging)."""

    def __init__(
        self,
        *,
        alert_queue: AlertQueuePort,
        queue_name: str,
        batch_size: int = _DEFAULT_BATCH_SIZE,
        jitter_provider: Callable[[float], float] | None = None,
    ) -> None:
        if batch_size <= 0:
            msg = "batch_size must be positive"
            raise ValueError(msg)

        self._alert_queue = alert_queue
        self._queue_name = queue_name
        self._batch_size = batch_size
        self._jitter_provider = jitter_provider or _default_jitter

    def process_available_tasks(self) -> int:
        """Lease and deliver pending messages, acking only after delivery."""

        messages = self._alert_queue.receive(self._queue_name, self._batch_size)
        for message in messages:
            with delivery_scope(self._queue_name, message.message_id):
                self._process_message(message)
        return len(messages)

    def _process_message(self, message: QueueMessage) -> None:
        try:
            logger.info("consumer_message_started", attempts=message.attempts)
            self._handle_message(message)
        except (NonRetryableError, PydanticValidationError) as exc:
            logger.exception("consumer_message_rejected")
            self._alert_queue.nack(
                message.message_id,
                error=f"{type(exc).__name__}: {exc}",
                retry_at=None,
            )
        except Exception as exc:  # noqa: BLE001
            logger.exception("consumer_message_failed")
            self._alert_queue.nack(
                message.message_id,
                error=f"{type(exc).__name__}: {exc}",
                retry_at=self._compute_retry_at(message, exc),
            )
        else:
            self._alert_queue.ack(message.message_id)
            logger.info("consumer_message_delivered")

    def _compute_retry_at(
        self, message: QueueMessage, exc: Exception
    ) -> datetime | None:
        if message.attempts >= message.max_attempts:
            return None

        if isinstance(exc, RateLimitError) and exc.retry_after:
            return datetime.now(tz=UTC) + timedelta(seconds=exc.retry_after)

        base_delay = min(
            _DEFAULT_RETRY_MAX_SECONDS, math.pow(2.0, max(message.attempts - 1, 0))
        )
        jitter = max(0.0, self._jitter_provider(base_delay))
        delay = max(1.0, base_delay + jitter)
        return datetime.now(tz=UTC) + timedelta(seconds=delay)

    def _handle_message(self, message: QueueMessage) -> None:
        raise NotImplementedError


def _default_jitter(base: float) -> float:
    return random.uniform(0.0, base * 0.25)


class AlertConsumerWorker(_BaseConsumer):
    """Delivers single-event alerts to the subscriber channel."""

    def __init__(
        self,
        *,
        alert_queue: AlertQueuePort,
        poster: MessagePosterProtocol,
        queue_name: str = ALERTS_QUEUE_NAME,
        batch_size: int = _DEFAULT_BATCH_SIZE,
        jitter_provider: Callable[[float], float] | None = None,
    ) -> None:
        super().__init__(
            alert_queue=alert_queue,
            queue_name=queue_name,
            batch_size=batch_size,
            jitter_provider=jitter_provider,
        )
        self._poster = poster

    def _handle_message(self, message: QueueMessage) -> None:
        alert = AlertMessage.model_validate(message.payload)
        blocks, text = build_alert_blocks(alert)
        ts = self._poster.post_message(alert.channel_id, blocks, text)
        logger.info(
            "alert_delivered",
            channel_id=alert.channel_id,
            server_id=alert.server_id,
            alert_class=alert.alert_class.value,
            title=alert.title,
            slack_ts=ts,
        )


class DigestConsumerWorker(_BaseConsumer):
    """Delivers scheduled digests to the subscriber channel."""

    def __init__(
        self,
        *,
        alert_queue: AlertQueuePort,
        poster: MessagePosterProtocol,
        queue_name: str = DIGESTS_QUEUE_NAME,
        batch_size: int = _DEFAULT_BATCH_SIZE,
        jitter_provider: Callable[[float], float] | None = None,
    ) -> None:
        super().__init__(
            alert_queue=alert_queue,
            queue_name=queue_name,
            batch_size=batch_size,
            jitter_provider=jitter_provider,
        )
        self._poster = poster

    def _handle_message(self, message: QueueMessage) -> None:
        digest = DigestMessage.model_validate(message.payload)
        blocks, text = build_digest_blocks(digest)
        ts = self._poster.post_message(digest.channel_id, blocks, text)
        logger.info(
            "digest_delivered",
            channel_id=digest.channel_id,
            news_scope=digest.news_scope.value,
            events=len(digest.events),
            slack_ts=ts,
        )


__all__ = ["AlertConsumerWorker", "DigestConsumerWorker"]
