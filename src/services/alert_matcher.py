"""Subscription matching for fired events.

Rules:
1. The subscription must request the fired alert class
2. Empty currency filter matches every currency
3. Empty impact filter matches every impact
"""

from collections.abc import Iterable

from src.domain.models import (
    AlertClass,
    CalendarEvent,
    Currency,
    DigestSchedule,
    Impact,
    Subscription,
)


def passes_filters(
    event: CalendarEvent,
    currencies: frozenset[Currency],
    impacts: frozenset[Impact],
) -> bool:
    """Check currency and impact filters with empty-means-all semantics."""
    matches_currency = not currencies or event.currency in currencies
    matches_impact = not impacts or event.impact in impacts
    return matches_currency and matches_impact


def match(
    event: CalendarEvent,
    alert_class: AlertClass,
    subscriptions: Iterable[Subscription],
) -> list[Subscription]:
    """Return subscriptions interested in ``event`` for ``alert_class``.

    Args:
        event: Fired calendar event
        alert_class: Temporal condition that fired
        subscriptions: Candidate subscriptions (may include other classes)

    Returns:
        Matching subscriptions, order irrelevant
    """
    return [
        subscription
        for subscription in subscriptions
        if alert_class in subscription.alert_classes
        and passes_filters(event, subscription.currencies, subscription.impacts)
    ]


def select_for_digest(
    events: Iterable[CalendarEvent], schedule: DigestSchedule
) -> list[CalendarEvent]:
    """Events a digest schedule should include."""
    return [
        event
        for event in events
        if passes_filters(event, schedule.currencies, schedule.impacts)
    ]
