"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import os
from collections.abc import Callable, Generator
from datetime import UTC, datetime
from pathlib import Path
from typing import Any
from unittest.mock import Mock

import pytest

from src.adapters.repository_factory import create_repository
from src.config.settings import Settings
from src.domain.models import (
    AlertClass,
    CalendarEvent,
    Currency,
    Impact,
    RawCalendarItem,
    Subscription,
)
from src.domain.protocols import RepositoryProtocol
from src.services.fingerprint import fingerprint


@pytest.fixture
def settings(
    tmp_path_factory: pytest.TempPathFactory, request: pytest.FixtureRequest
) -> Settings:
    """Create settings configured for the requested database backend."""

    base_settings = Settings()

    if request.node.get_closest_marker("postgres"):
        if os.environ.get("TEST_POSTGRES", "0") != "1":
            pytest.skip("PostgreSQL tests disabled (TEST_POSTGRES!=1)")
        if not os.environ.get("POSTGRES_PASSWORD"):
            pytest.skip("POSTGRES_PASSWORD not set for PostgreSQL tests")
        return base_settings.model_copy(update={"database_type": "postgres"})

    temp_dir = tmp_path_factory.mktemp("db")
    db_path = temp_dir / "test.sqlite"
    return base_settings.model_copy(
        update={"database_type": "sqlite", "db_path": str(db_path)}
    )


@pytest.fixture
def repo(settings: Settings) -> Generator[RepositoryProtocol, None, None]:
    """Provide a repository instance for the configured backend."""

    repository = create_repository(settings)

    try:
        yield repository
    finally:
        repository.close()

        if settings.database_type == "sqlite":
            db_path = Path(settings.db_path)
            if db_path.exists():
                try:
                    db_path.unlink()
                except OSError:
                    pass


def create_test_event(
    title: str = "CPI m/m",
    timestamp: datetime | None = None,
    currency: Currency = Currency.USD,
    impact: Impact = Impact.HIGH,
    **kwargs: Any,
) -> CalendarEvent:
    """Helper to create a calendar event with a consistent fingerprint."""

    if timestamp is None:
        timestamp = datetime(2025, 3, 10, 13, 30)

    defaults: dict[str, Any] = {
        "title": title,
        "currency": currency,
        "timestamp": timestamp,
        "impact": impact,
        "forecast": "0.3%",
        "previous": "0.5%",
        "fingerprint": fingerprint(title, timestamp, impact, currency),
    }
    defaults.update(kwargs)
    return CalendarEvent(**defaults)


def create_test_subscription(
    channel_id: str = "C100",
    *,
    server_id: str = "T100",
    currencies: frozenset[Currency] = frozenset(),
    impacts: frozenset[Impact] = frozenset(),
    alert_classes: frozenset[AlertClass] = frozenset(
        {AlertClass.FIVE_MINUTES_BEFORE, AlertClass.ON_NEWS_DROP}
    ),
) -> Subscription:
    return Subscription(
        server_id=server_id,
        channel_id=channel_id,
        currencies=currencies,
        impacts=impacts,
        alert_classes=alert_classes,
    )


def create_raw_item(**overrides: Any) -> RawCalendarItem:
    data: dict[str, Any] = {
        "title": "Non-Farm Employment Change",
        "country": "USD",
        "date": "2025-03-07T08:30:00-05:00",
        "impact": "High",
        "forecast": "160K",
        "previous": "143K",
    }
    data.update(overrides)
    return RawCalendarItem(**data)


@pytest.fixture
def sample_event() -> CalendarEvent:
    """Sample calendar event at 2025-03-10 13:30 New York time."""
    return create_test_event()


def fixed_clock(moment: datetime) -> Callable[[], datetime]:
    """Clock returning a constant aware instant."""

    aware = moment if moment.tzinfo else moment.replace(tzinfo=UTC)
    return lambda: aware


@pytest.fixture
def mock_slack_client() -> Mock:
    """Mock Slack client."""
    mock = Mock()
    mock.post_message.return_value = "1728000000.123456"
    return mock


@pytest.fixture
def mock_repository() -> Mock:
    """Mock repository."""
    mock = Mock(spec=RepositoryProtocol)
    mock.find_by_timestamp.return_value = []
    mock.find_between.return_value = []
    mock.get_subscriptions.return_value = []
    mock.get_subscriptions_for_alert_class.return_value = []
    mock.get_digest_schedules_for_time.return_value = []
    mock.delete_older_than.return_value = 0
    return mock
