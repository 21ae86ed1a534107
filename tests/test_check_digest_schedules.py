"""Tests for scheduled digests."""

from datetime import UTC, datetime
from unittest.mock import Mock

import pytest

from src.domain.exceptions import QueuePublishError
from src.domain.message_queue import DIGESTS_QUEUE_NAME
from src.domain.models import Currency, DigestSchedule, Impact, NewsScope
from src.domain.protocols import RepositoryProtocol
from src.use_cases.check_digest_schedules import (
    check_digest_schedules_use_case,
    scope_range,
)
from tests.conftest import create_test_event, fixed_clock

# 08:00 New York on Monday 2025-03-10 (EDT).
CLOCK = fixed_clock(datetime(2025, 3, 10, 12, 0, 45, tzinfo=UTC))


def _schedule(
    channel_id: str = "C1",
    scope: NewsScope = NewsScope.DAILY,
    **kwargs: object,
) -> DigestSchedule:
    return DigestSchedule(
        server_id="T1",
        channel_id=channel_id,
        hour=8,
        minute=0,
        news_scope=scope,
        **kwargs,
    )


@pytest.mark.parametrize(
    ("scope", "start", "end"),
    [
        (NewsScope.DAILY, datetime(2025, 3, 10), datetime(2025, 3, 11)),
        (NewsScope.TOMORROW, datetime(2025, 3, 11), datetime(2025, 3, 12)),
        (NewsScope.WEEKLY, datetime(2025, 3, 10), datetime(2025, 3, 17)),
    ],
)
def test_scope_range(scope: NewsScope, start: datetime, end: datetime) -> None:
    assert scope_range(scope, datetime(2025, 3, 10, 8, 0)) == (start, end)


def test_publishes_digest_for_due_schedule(repo: RepositoryProtocol) -> None:
    repo.save_digest_schedule(_schedule())
    repo.upsert_event(create_test_event("CPI m/m", datetime(2025, 3, 10, 8, 30)))
    repo.upsert_event(create_test_event("Retail Sales", datetime(2025, 3, 11, 8, 30)))
    queue = Mock()

    result = check_digest_schedules_use_case(repo, queue, clock=CLOCK)

    assert result.schedules_due == 1
    assert result.digests_published == 1
    message = queue.publish.call_args.args[0]
    assert message.queue_name == DIGESTS_QUEUE_NAME
    assert message.payload["newsScope"] == "DAILY"
    assert message.payload["channelId"] == "C1"
    assert [item["title"] for item in message.payload["events"]] == ["CPI m/m"]


def test_schedule_filters_are_applied(repo: RepositoryProtocol) -> None:
    repo.save_digest_schedule(
        _schedule(currencies=frozenset({Currency.EUR}), impacts=frozenset({Impact.HIGH}))
    )
    repo.upsert_event(create_test_event("CPI m/m", datetime(2025, 3, 10, 8, 30)))
    queue = Mock()

    result = check_digest_schedules_use_case(repo, queue, clock=CLOCK)

    assert result.digests_empty == 1
    assert result.digests_published == 0
    queue.publish.assert_not_called()


def test_schedules_for_other_minutes_are_ignored(repo: RepositoryProtocol) -> None:
    repo.save_digest_schedule(_schedule().model_copy(update={"minute": 5}))
    repo.upsert_event(create_test_event("CPI m/m", datetime(2025, 3, 10, 8, 30)))
    queue = Mock()

    result = check_digest_schedules_use_case(repo, queue, clock=CLOCK)

    assert result.schedules_due == 0
    queue.publish.assert_not_called()


def test_failure_on_one_schedule_does_not_stop_others(mock_repository: Mock) -> None:
    mock_repository.get_digest_schedules_for_time.return_value = [
        _schedule("C1"),
        _schedule("C2"),
    ]
    mock_repository.find_between.return_value = [
        create_test_event("CPI m/m", datetime(2025, 3, 10, 8, 30))
    ]
    queue = Mock()
    queue.publish.side_effect = [QueuePublishError("down"), Mock()]

    result = check_digest_schedules_use_case(mock_repository, queue, clock=CLOCK)

    assert result.publish_failures == 1
    assert result.digests_published == 1
    mock_repository.get_digest_schedules_for_time.assert_called_once_with(8, 0)
