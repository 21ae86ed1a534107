"""Tests for subscription matching."""

from src.domain.models import AlertClass, Currency, DigestSchedule, Impact, NewsScope
from src.services.alert_matcher import match, passes_filters, select_for_digest
from tests.conftest import create_test_event, create_test_subscription


def test_empty_filters_match_everything() -> None:
    event = create_test_event(currency=Currency.JPY, impact=Impact.LOW)

    assert passes_filters(event, frozenset(), frozenset())


def test_currency_filter_excludes_other_currencies() -> None:
    event = create_test_event(currency=Currency.EUR)

    assert not passes_filters(event, frozenset({Currency.USD}), frozenset())
    assert passes_filters(event, frozenset({Currency.USD, Currency.EUR}), frozenset())


def test_impact_filter_excludes_other_impacts() -> None:
    event = create_test_event(impact=Impact.MEDIUM)

    assert not passes_filters(event, frozenset(), frozenset({Impact.HIGH}))


def test_match_requires_requested_alert_class() -> None:
    event = create_test_event()
    before_only = create_test_subscription(
        "C1", alert_classes=frozenset({AlertClass.FIVE_MINUTES_BEFORE})
    )
    drop_only = create_test_subscription(
        "C2", alert_classes=frozenset({AlertClass.ON_NEWS_DROP})
    )

    matched = match(event, AlertClass.ON_NEWS_DROP, [before_only, drop_only])

    assert [s.channel_id for s in matched] == ["C2"]


def test_match_applies_currency_and_impact_filters() -> None:
    event = create_test_event(currency=Currency.USD, impact=Impact.HIGH)
    subscriptions = [
        create_test_subscription("usd", currencies=frozenset({Currency.USD})),
        create_test_subscription("eur", currencies=frozenset({Currency.EUR})),
        create_test_subscription("low", impacts=frozenset({Impact.LOW})),
        create_test_subscription("all"),
    ]

    matched = match(event, AlertClass.FIVE_MINUTES_BEFORE, subscriptions)

    assert {s.channel_id for s in matched} == {"usd", "all"}


def test_match_with_no_subscriptions() -> None:
    assert match(create_test_event(), AlertClass.ON_NEWS_DROP, []) == []


def test_select_for_digest_filters_events() -> None:
    schedule = DigestSchedule(
        server_id="T1",
        channel_id="C1",
        hour=8,
        minute=0,
        news_scope=NewsScope.DAILY,
        impacts=frozenset({Impact.HIGH}),
    )
    high = create_test_event("NFP", impact=Impact.HIGH)
    low = create_test_event("Crude Oil Inventories", impact=Impact.LOW)

    assert select_for_digest([high, low], schedule) == [high]
