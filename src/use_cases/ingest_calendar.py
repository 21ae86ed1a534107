"""Calendar ingestion use case.

Fetches provider events for each enabled market, normalizes them and
upserts them into the event store. Bad items are skipped and counted; a
provider failure only fails its own market.
"""

from datetime import timedelta

from src.config.logging_config import get_logger
from src.config.settings import Settings
from src.domain.exceptions import (
    ProviderAPIError,
    RateLimitError,
    RepositoryError,
    ValidationError,
)
from src.domain.models import (
    CalendarEvent,
    IngestResult,
    Market,
    RawCalendarItem,
    UpsertOutcome,
)
from src.domain.protocols import CalendarProviderProtocol, EventStoreProtocol
from src.services.fingerprint import fingerprint
from src.services.provider_mapping import parse_currency, parse_impact
from src.services.time_normalizer import (
    Clock,
    exchange_now,
    parse_provider_timestamp,
    utc_now,
)

logger = get_logger(__name__)


def normalize_item(
    item: RawCalendarItem, *, exchange_tz: str, source: str
) -> CalendarEvent:
    """Map a raw provider record to a storable event.

    Raises:
        ValidationError: If currency, impact or date cannot be mapped
    """
    currency = parse_currency(item.country)
    impact = parse_impact(item.impact)
    timestamp = parse_provider_timestamp(item.date, exchange_tz)
    title = item.title.strip()
    if not title:
        raise ValidationError("Provider returned an event without a title")

    return CalendarEvent(
        title=title,
        currency=currency,
        timestamp=timestamp,
        impact=impact,
        forecast=item.forecast or "",
        previous=item.previous or "",
        source=source,
        fingerprint=fingerprint(title, timestamp, impact, currency),
    )


def ingest_calendar_use_case(
    provider: CalendarProviderProtocol,
    repository: EventStoreProtocol,
    settings: Settings,
    *,
    clock: Clock = utc_now,
) -> IngestResult:
    """Run one ingestion cycle over every configured market.

    Args:
        provider: Calendar feed client
        repository: Event store
        settings: Application settings
        clock: UTC clock used to compute the look-ahead window

    Returns:
        IngestResult with per-outcome counts
    """
    result = IngestResult()
    today = exchange_now(clock, settings.exchange_timezone).date()
    end = today + timedelta(days=settings.ingest_lookahead_days)

    logger.info(
        "calendar_ingest_started",
        markets=[market.value for market in settings.ingest_markets],
        start=today.isoformat(),
        end=end.isoformat(),
    )

    for market in settings.ingest_markets:
        try:
            items = provider.fetch_events(market, today, end)
        except (ProviderAPIError, RateLimitError) as exc:
            logger.error(
                "calendar_market_fetch_failed",
                market=market.value,
                error=str(exc),
            )
            result.markets_failed.append(market)
            result.errors.append(f"{market.value}: {exc}")
            continue

        result.events_fetched += len(items)
        _store_items(items, market, repository, settings, result)
        result.markets_processed.append(market)

    logger.info(
        "calendar_ingest_completed",
        fetched=result.events_fetched,
        created=result.events_created,
        updated=result.events_updated,
        skipped=result.events_skipped,
        markets_failed=[market.value for market in result.markets_failed],
    )
    return result


def _store_items(
    items: list[RawCalendarItem],
    market: Market,
    repository: EventStoreProtocol,
    settings: Settings,
    result: IngestResult,
) -> None:
    for item in items:
        try:
            event = normalize_item(
                item,
                exchange_tz=settings.exchange_timezone,
                source=settings.provider_source_name,
            )
        except ValidationError as exc:
            result.events_skipped += 1
            logger.warning(
                "calendar_item_skipped",
                market=market.value,
                title=item.title,
                reason=str(exc),
            )
            continue

        try:
            outcome = repository.upsert_event(event)
        except RepositoryError as exc:
            result.events_skipped += 1
            result.errors.append(f"{event.title}: {exc}")
            logger.error(
                "calendar_item_store_failed",
                market=market.value,
                title=event.title,
                fingerprint=event.fingerprint,
                error=str(exc),
            )
            continue

        if outcome is UpsertOutcome.CREATED:
            result.events_created += 1
        else:
            result.events_updated += 1
