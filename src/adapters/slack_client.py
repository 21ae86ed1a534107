"""Slack delivery adapter for alert and digest messages."""

import time
from typing import Any, Final

from slack_sdk import WebClient
from slack_sdk.errors import SlackApiError

from src.config.logging_config import get_logger
from src.domain.exceptions import RateLimitError, SlackAPIError

logger = get_logger(__name__)


DEFAULT_SLACK_MAX_RETRIES: Final[int] = 3
DEFAULT_RETRY_AFTER_SECONDS: Final[int] = 60
FALLBACK_TEXT: Final[str] = "Economic calendar alert"


def _retry_after_seconds(error: SlackApiError) -> int:
    header = error.response.headers.get("Retry-After", DEFAULT_RETRY_AFTER_SECONDS)
    try:
        return int(header)
    except (TypeError, ValueError):
        return DEFAULT_RETRY_AFTER_SECONDS


class SlackClient:
    """Posts Block Kit messages through ``chat.postMessage``."""

    def __init__(
        self,
        bot_token: str,
        *,
        max_retries: int = DEFAULT_SLACK_MAX_RETRIES,
        client: WebClient | None = None,
    ) -> None:
        self.client = client or WebClient(token=bot_token)
        self._max_retries = max(max_retries, 1)

    def post_message(
        self, channel_id: str, blocks: list[dict[str, Any]], text: str = ""
    ) -> str:
        """Post blocks to a channel and return the message ``ts``.

        Transient API errors are retried in-process with exponential
        backoff. Rate limits are raised straight away: the caller owns the
        message lease and reschedules it for ``retry_after``.

        Raises:
            RateLimitError: Slack answered ``ratelimited``
            SlackAPIError: Retries exhausted or the response was not ok
        """
        for attempt in range(1, self._max_retries + 1):
            try:
                response = self.client.chat_postMessage(
                    channel=channel_id, blocks=blocks, text=text or FALLBACK_TEXT
                )
            except SlackApiError as error:
                if error.response.get("error") == "ratelimited":
                    retry_after = _retry_after_seconds(error)
                    logger.warning(
                        "slack_rate_limited",
                        channel_id=channel_id,
                        retry_after_seconds=retry_after,
                    )
                    raise RateLimitError(retry_after=retry_after) from error

                if attempt == self._max_retries:
                    raise SlackAPIError(
                        f"chat.postMessage failed after {attempt} attempts: {error}"
                    ) from error

                backoff_seconds = 2**attempt
                logger.warning(
                    "slack_post_retry",
                    channel_id=channel_id,
                    attempt=attempt,
                    backoff_seconds=backoff_seconds,
                    error=str(error),
                )
                time.sleep(backoff_seconds)
                continue

            if not response["ok"]:
                raise SlackAPIError(f"chat.postMessage not ok: {response.get('error')}")
            return str(response["ts"])

        raise SlackAPIError("chat.postMessage was never attempted")
