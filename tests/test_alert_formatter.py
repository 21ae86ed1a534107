"""Tests for Slack block rendering."""

from src.domain.models import (
    AlertClass,
    AlertMessage,
    Currency,
    DigestEventItem,
    DigestMessage,
    Impact,
    NewsScope,
)
from src.services.alert_formatter import (
    MAX_DIGEST_LINES,
    build_alert_blocks,
    build_digest_blocks,
)


def _alert(alert_class: AlertClass = AlertClass.FIVE_MINUTES_BEFORE) -> AlertMessage:
    return AlertMessage(
        title="CPI m/m",
        currency=Currency.USD,
        impact=Impact.HIGH,
        timestamp="2025-03-10T13:30:00",
        forecast="0.3%",
        previous="",
        alert_class=alert_class,
        channel_id="C1",
        server_id="T1",
    )


def _digest(count: int) -> DigestMessage:
    return DigestMessage(
        news_scope=NewsScope.DAILY,
        channel_id="C1",
        server_id="T1",
        events=[
            DigestEventItem(
                title=f"Event {i}",
                currency=Currency.EUR,
                impact=Impact.MEDIUM,
                timestamp="2025-03-10T08:00:00",
            )
            for i in range(count)
        ],
    )


def test_alert_blocks_include_headline_and_values() -> None:
    blocks, text = build_alert_blocks(_alert())

    assert text == "Releasing in 5 minutes: USD CPI m/m"
    assert blocks[0]["type"] == "section"
    assert ":red_circle:" in blocks[0]["text"]["text"]
    context = blocks[1]["elements"][0]["text"]
    assert "Mon 10 Mar 13:30 ET" in context
    assert "Forecast: 0.3%" in context
    assert "Previous: -" in context


def test_alert_blocks_for_news_drop() -> None:
    _, text = build_alert_blocks(_alert(AlertClass.ON_NEWS_DROP))

    assert text.startswith("Released now:")


def test_digest_blocks_chunk_sections() -> None:
    blocks, text = build_digest_blocks(_digest(20))

    assert text == "Today's economic calendar (20 events)"
    assert blocks[0]["type"] == "header"
    sections = [b for b in blocks if b["type"] == "section"]
    assert len(sections) == 2
    assert sections[0]["text"]["text"].count("\n") == 14


def test_digest_blocks_truncate_long_lists() -> None:
    blocks, text = build_digest_blocks(_digest(MAX_DIGEST_LINES + 5))

    assert text.endswith(f"({MAX_DIGEST_LINES + 5} events)")
    assert blocks[-1]["type"] == "context"
    assert blocks[-1]["elements"][0]["text"] == "...and 5 more events"


def test_digest_line_shows_actual_when_present() -> None:
    message = _digest(1)
    message.events[0].actual = "1.2%"

    blocks, _ = build_digest_blocks(message)

    assert "Actual: *1.2%*" in blocks[1]["text"]["text"]
