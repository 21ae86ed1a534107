"""Retention sweep for stored calendar events."""

from datetime import timedelta

from src.config.logging_config import get_logger
from src.config.settings import Settings
from src.domain.models import RetentionResult
from src.domain.protocols import EventStoreProtocol
from src.services.time_normalizer import Clock, exchange_now, utc_now

logger = get_logger(__name__)


def sweep_retention_use_case(
    repository: EventStoreProtocol,
    settings: Settings,
    *,
    clock: Clock = utc_now,
) -> RetentionResult:
    """Delete processed events past the short threshold and every event
    past the long one.

    Thresholds are measured on the naive exchange-local timestamp, the same
    representation the rows are stored in.
    """
    now = exchange_now(clock, settings.exchange_timezone)
    processed_cutoff = now - timedelta(days=settings.retention_processed_days)
    stale_cutoff = now - timedelta(days=settings.retention_unprocessed_days)

    processed_deleted = repository.delete_older_than(
        processed_cutoff, processed_only=True
    )
    stale_deleted = repository.delete_older_than(stale_cutoff, processed_only=False)

    logger.info(
        "retention_sweep_completed",
        processed_deleted=processed_deleted,
        stale_deleted=stale_deleted,
        processed_cutoff=processed_cutoff.isoformat(),
        stale_cutoff=stale_cutoff.isoformat(),
    )
    return RetentionResult(
        processed_deleted=processed_deleted, stale_deleted=stale_deleted
    )
