"""Correlation identifiers for scheduled runs and queue deliveries."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import AbstractContextManager, contextmanager
from uuid import UUID, uuid4

from src.config.logging_config import bind_context, unbind_context

CORRELATION_ID_KEY = "correlation_id"
JOB_KEY = "job"
QUEUE_KEY = "queue_name"
MESSAGE_ID_KEY = "message_id"


@contextmanager
def correlation_scope(existing_id: str | None = None, **extra: str) -> Iterator[str]:
    """Bind a correlation id (and ``extra`` keys) for the lifetime of the context."""

    correlation_id = existing_id or str(uuid4())
    bind_context(**{CORRELATION_ID_KEY: correlation_id}, **extra)
    try:
        yield correlation_id
    finally:
        unbind_context(CORRELATION_ID_KEY, *extra)


def job_scope(job_name: str) -> AbstractContextManager[str]:
    """Fresh correlation id for one run of a scheduled job."""
    return correlation_scope(**{JOB_KEY: job_name})


def delivery_scope(queue_name: str, message_id: UUID) -> AbstractContextManager[str]:
    """Correlate every retry of a message under its message id."""
    return correlation_scope(
        str(message_id), **{QUEUE_KEY: queue_name, MESSAGE_ID_KEY: str(message_id)}
    )


__all__ = ["CORRELATION_ID_KEY", "correlation_scope", "delivery_scope", "job_scope"]
