"""Tests for the in-memory dispatch gate."""

import pytest

from src.services.dispatch_gate import DispatchGate


def test_unmarked_pair_is_dispatchable() -> None:
    gate = DispatchGate()

    assert gate.should_dispatch("fp1", "ON_NEWS_DROP")


def test_marked_pair_is_suppressed_per_alert_class() -> None:
    gate = DispatchGate()
    gate.mark_dispatched("fp1", "FIVE_MINUTES_BEFORE")

    assert not gate.should_dispatch("fp1", "FIVE_MINUTES_BEFORE")
    assert gate.should_dispatch("fp1", "ON_NEWS_DROP")
    assert gate.should_dispatch("fp2", "FIVE_MINUTES_BEFORE")


def test_gate_clears_when_bound_exceeded() -> None:
    gate = DispatchGate(max_entries=2)
    gate.mark_dispatched("a", "X")
    gate.mark_dispatched("b", "X")
    assert len(gate) == 2

    gate.mark_dispatched("c", "X")

    assert len(gate) == 0
    assert gate.should_dispatch("a", "X")


def test_clear_resets_state() -> None:
    gate = DispatchGate()
    gate.mark_dispatched("a", "X")

    gate.clear()

    assert gate.should_dispatch("a", "X")


def test_rejects_non_positive_bound() -> None:
    with pytest.raises(ValueError):
        DispatchGate(max_entries=0)
