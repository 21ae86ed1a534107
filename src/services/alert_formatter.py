"""Slack Block Kit rendering for alert and digest payloads."""

from datetime import datetime
from typing import Any, Final

from src.domain.models import (
    AlertClass,
    AlertMessage,
    DigestEventItem,
    DigestMessage,
    Impact,
    NewsScope,
)

IMPACT_EMOJI: Final[dict[Impact, str]] = {
    Impact.HIGH: ":red_circle:",
    Impact.MEDIUM: ":large_orange_circle:",
    Impact.LOW: ":large_yellow_circle:",
}

ALERT_HEADLINES: Final[dict[AlertClass, str]] = {
    AlertClass.FIVE_MINUTES_BEFORE: "Releasing in 5 minutes",
    AlertClass.ON_NEWS_DROP: "Released now",
}

SCOPE_TITLES: Final[dict[NewsScope, str]] = {
    NewsScope.DAILY: "Today's economic calendar",
    NewsScope.TOMORROW: "Tomorrow's economic calendar",
    NewsScope.WEEKLY: "This week's economic calendar",
}

MAX_DIGEST_LINES: Final[int] = 45
TIME_LABEL_FORMAT: Final[str] = "%a %d %b %H:%M"


def _time_label(timestamp: str) -> str:
    """Render the naive ISO timestamp as New York wall clock label."""
    try:
        return datetime.fromisoformat(timestamp).strftime(TIME_LABEL_FORMAT) + " ET"
    except ValueError:
        return timestamp


def _values_line(forecast: str, previous: str, actual: str | None = None) -> str:
    parts = []
    if actual:
        parts.append(f"Actual: *{actual}*")
    parts.append(f"Forecast: {forecast or '-'}")
    parts.append(f"Previous: {previous or '-'}")
    return " | ".join(parts)


def build_alert_blocks(message: AlertMessage) -> tuple[list[dict[str, Any]], str]:
    """Blocks and fallback text for a single alert.

    Example:
        >>> blocks, text = build_alert_blocks(message)
        >>> blocks[0]["type"]
        'section'
    """
    emoji = IMPACT_EMOJI.get(message.impact, ":white_circle:")
    headline = ALERT_HEADLINES.get(message.alert_class, message.alert_class.value)
    text = f"{headline}: {message.currency.value} {message.title}"

    blocks: list[dict[str, Any]] = [
        {
            "type": "section",
            "text": {
                "type": "mrkdwn",
                "text": f"{emoji} *{headline}*\n*{message.currency.value}* {message.title}",
            },
        },
        {
            "type": "context",
            "elements": [
                {
                    "type": "mrkdwn",
                    "text": f"{_time_label(message.timestamp)} | "
                    f"{message.impact.value.title()} impact | "
                    f"{_values_line(message.forecast, message.previous)}",
                }
            ],
        },
    ]
    return blocks, text


def _digest_line(item: DigestEventItem) -> str:
    emoji = IMPACT_EMOJI.get(item.impact, ":white_circle:")
    return (
        f"{emoji} `{_time_label(item.timestamp)}` *{item.currency.value}* "
        f"{item.title} ({_values_line(item.forecast, item.previous, item.actual)})"
    )


def build_digest_blocks(message: DigestMessage) -> tuple[list[dict[str, Any]], str]:
    """Blocks and fallback text for a scheduled digest."""
    title = SCOPE_TITLES.get(message.news_scope, "Economic calendar")
    lines = [_digest_line(item) for item in message.events[:MAX_DIGEST_LINES]]
    hidden = len(message.events) - len(lines)

    blocks: list[dict[str, Any]] = [
        {"type": "header", "text": {"type": "plain_text", "text": title}},
    ]
    # Section text is capped by Slack, so lines are chunked.
    for start in range(0, len(lines), 15):
        blocks.append(
            {
                "type": "section",
                "text": {"type": "mrkdwn", "text": "\n".join(lines[start : start + 15])},
            }
        )
    if hidden > 0:
        blocks.append(
            {
                "type": "context",
                "elements": [
                    {"type": "mrkdwn", "text": f"...and {hidden} more events"}
                ],
            }
        )

    return blocks, f"{title} ({len(message.events)} events)"
