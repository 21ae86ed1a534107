"""Tests for event fingerprints."""

from datetime import datetime

from src.domain.models import Currency, Impact
from src.services.fingerprint import event_fingerprint, fingerprint
from tests.conftest import create_test_event


def test_fingerprint_is_deterministic() -> None:
    ts = datetime(2025, 3, 10, 13, 30)
    first = fingerprint("CPI m/m", ts, Impact.HIGH, Currency.USD)
    second = fingerprint("CPI m/m", ts, "HIGH", "USD")

    assert first == second
    assert len(first) == 64


def test_fingerprint_avoids_field_confusion() -> None:
    ts = datetime(2025, 3, 10, 13, 30)

    assert fingerprint("FOMC", ts, "HIGH", "USD") != fingerprint(
        "FOM", ts, "CHIGH", "USD"
    )


def test_fingerprint_changes_with_each_identity_field() -> None:
    ts = datetime(2025, 3, 10, 13, 30)
    base = fingerprint("CPI m/m", ts, Impact.HIGH, Currency.USD)

    assert base != fingerprint("CPI y/y", ts, Impact.HIGH, Currency.USD)
    assert base != fingerprint(
        "CPI m/m", datetime(2025, 3, 10, 13, 31), Impact.HIGH, Currency.USD
    )
    assert base != fingerprint("CPI m/m", ts, Impact.LOW, Currency.USD)
    assert base != fingerprint("CPI m/m", ts, Impact.HIGH, Currency.EUR)


def test_event_fingerprint_ignores_mutable_values() -> None:
    event = create_test_event(forecast="0.1%")
    refreshed = create_test_event(forecast="0.4%", previous="0.2%")

    assert event_fingerprint(event) == event_fingerprint(refreshed)
