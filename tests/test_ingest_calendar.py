"""Tests for the calendar ingestion use case."""

from datetime import UTC, date, datetime
from unittest.mock import Mock

import pytest

from src.adapters.calendar_provider import CalendarFeedClient
from src.config.settings import Settings
from src.domain.exceptions import (
    ProviderAPIError,
    RepositoryError,
    UnknownProviderValueError,
)
from src.domain.models import Currency, Impact, Market, UpsertOutcome
from src.domain.protocols import RepositoryProtocol
from src.use_cases.ingest_calendar import ingest_calendar_use_case, normalize_item
from tests.conftest import create_raw_item, fixed_clock

CLOCK = fixed_clock(datetime(2025, 3, 7, 12, 0, tzinfo=UTC))


def test_normalize_item_maps_fields() -> None:
    event = normalize_item(
        create_raw_item(), exchange_tz="America/New_York", source="ForexFactory"
    )

    assert event.title == "Non-Farm Employment Change"
    assert event.currency is Currency.USD
    assert event.impact is Impact.HIGH
    assert event.timestamp == datetime(2025, 3, 7, 8, 30)
    assert event.forecast == "160K"
    assert event.source == "ForexFactory"
    assert len(event.fingerprint) == 64


def test_normalize_item_converts_foreign_offsets_to_exchange_time() -> None:
    event = normalize_item(
        create_raw_item(date="2025-03-07T13:30:00+00:00"),
        exchange_tz="America/New_York",
        source="ForexFactory",
    )

    assert event.timestamp == datetime(2025, 3, 7, 8, 30)


def test_normalize_item_rejects_unknown_currency() -> None:
    with pytest.raises(UnknownProviderValueError):
        normalize_item(
            create_raw_item(country="All"),
            exchange_tz="America/New_York",
            source="ForexFactory",
        )


def test_ingest_counts_created_and_updated(
    settings: Settings, mock_repository: Mock
) -> None:
    provider = Mock()
    provider.fetch_events.return_value = [
        create_raw_item(),
        create_raw_item(title="Unemployment Rate", forecast="4.0%"),
    ]
    mock_repository.upsert_event.side_effect = [
        UpsertOutcome.CREATED,
        UpsertOutcome.UPDATED,
    ]

    result = ingest_calendar_use_case(provider, mock_repository, settings, clock=CLOCK)

    assert result.events_fetched == 2
    assert result.events_created == 1
    assert result.events_updated == 1
    assert result.events_skipped == 0
    assert result.markets_processed == [Market.FOREX]
    provider.fetch_events.assert_called_once_with(
        Market.FOREX, date(2025, 3, 7), date(2025, 3, 14)
    )


def test_ingest_skips_bad_items_without_aborting(
    settings: Settings, mock_repository: Mock
) -> None:
    provider = Mock()
    provider.fetch_events.return_value = [
        create_raw_item(impact="Holiday"),
        create_raw_item(date="not a date"),
        create_raw_item(),
    ]
    mock_repository.upsert_event.return_value = UpsertOutcome.CREATED

    result = ingest_calendar_use_case(provider, mock_repository, settings, clock=CLOCK)

    assert result.events_skipped == 2
    assert result.events_created == 1
    assert mock_repository.upsert_event.call_count == 1


def test_ingest_counts_store_failures_as_skipped(
    settings: Settings, mock_repository: Mock
) -> None:
    provider = Mock()
    provider.fetch_events.return_value = [create_raw_item(), create_raw_item(title="ISM")]
    mock_repository.upsert_event.side_effect = [
        RepositoryError("disk full"),
        UpsertOutcome.CREATED,
    ]

    result = ingest_calendar_use_case(provider, mock_repository, settings, clock=CLOCK)

    assert result.events_skipped == 1
    assert result.events_created == 1
    assert any("disk full" in error for error in result.errors)


def test_provider_failure_only_fails_its_market(
    settings: Settings, mock_repository: Mock
) -> None:
    settings = settings.model_copy(
        update={"ingest_markets": [Market.FOREX, Market.CRYPTO]}
    )
    provider = Mock()
    provider.fetch_events.side_effect = [
        ProviderAPIError("HTTP 503"),
        [create_raw_item(country="usd", impact="medium")],
    ]
    mock_repository.upsert_event.return_value = UpsertOutcome.CREATED

    result = ingest_calendar_use_case(provider, mock_repository, settings, clock=CLOCK)

    assert result.markets_failed == [Market.FOREX]
    assert result.markets_processed == [Market.CRYPTO]
    assert result.events_created == 1


def test_ingest_twice_is_idempotent(settings: Settings, repo: RepositoryProtocol) -> None:
    provider = Mock()
    provider.fetch_events.return_value = [create_raw_item()]

    first = ingest_calendar_use_case(provider, repo, settings, clock=CLOCK)
    provider.fetch_events.return_value = [create_raw_item(forecast="175K")]
    second = ingest_calendar_use_case(provider, repo, settings, clock=CLOCK)

    assert (first.events_created, first.events_updated) == (1, 0)
    assert (second.events_created, second.events_updated) == (0, 1)
    [stored] = repo.find_by_timestamp(datetime(2025, 3, 7, 8, 30))
    assert stored.forecast == "175K"


def test_ingest_through_feed_client_counts_malformed_and_out_of_range_records(
    settings: Settings, mock_repository: Mock
) -> None:
    session = Mock()
    session.headers = {}
    response = Mock(status_code=200, ok=True, headers={})
    good = {
        "title": "CPI m/m",
        "country": "USD",
        "date": "2025-03-10T08:30:00-04:00",
        "impact": "High",
        "forecast": "0.3%",
        "previous": "0.5%",
    }
    response.json.return_value = [
        {**good, "country": None},
        {**good, "date": "0001-01-01T00:00:00+14:00"},
        good,
    ]
    session.get.return_value = response
    client = CalendarFeedClient(
        {Market.FOREX: ["https://feeds.example.test/calendar.json"]}, session=session
    )
    settings = settings.model_copy(update={"ingest_markets": [Market.FOREX]})
    mock_repository.upsert_event.return_value = UpsertOutcome.CREATED

    result = ingest_calendar_use_case(client, mock_repository, settings, clock=CLOCK)

    assert result.events_fetched == 3
    assert result.events_skipped == 2
    assert result.events_created == 1
    assert result.markets_processed == [Market.FOREX]
    mock_repository.upsert_event.assert_called_once()
