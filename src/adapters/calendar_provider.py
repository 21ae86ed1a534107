"""HTTP adapter for the economic calendar feed."""

from collections.abc import Mapping
from datetime import date
from typing import Any, Final

import requests
from pydantic import ValidationError as PydanticValidationError

from src.config.logging_config import get_logger
from src.domain.exceptions import (
    ProviderAPIError,
    RateLimitError,
    UnknownProviderValueError,
)
from src.domain.models import Market, RawCalendarItem
from src.services.time_normalizer import DEFAULT_EXCHANGE_TZ, parse_provider_timestamp

logger = get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS: Final[float] = 30.0
DEFAULT_RETRY_AFTER_SECONDS: Final[int] = 60
USER_AGENT: Final[str] = "econ-calendar-alerts/0.1"


class CalendarFeedClient:
    """Fetches weekly calendar JSON feeds per market."""

    def __init__(
        self,
        feed_urls: Mapping[Market, list[str]],
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        exchange_tz: str = DEFAULT_EXCHANGE_TZ,
        session: requests.Session | None = None,
    ) -> None:
        """Initialize client.

        Args:
            feed_urls: Feed URLs for each enabled market
            timeout_seconds: Per-request timeout
            exchange_tz: Timezone used to decide which day an event falls on
            session: Optional preconfigured requests session
        """
        self._feed_urls = {market: list(urls) for market, urls in feed_urls.items()}
        self._timeout_seconds = timeout_seconds
        self._exchange_tz = exchange_tz
        self._session = session or requests.Session()
        self._session.headers.setdefault("User-Agent", USER_AGENT)

    def fetch_events(
        self, market: Market, start: date, end: date
    ) -> list[RawCalendarItem]:
        """Fetch raw events for ``market`` dated within [start, end].

        Malformed records and items whose date cannot be parsed are
        returned unfiltered so the caller can count them as skipped.

        Raises:
            ProviderAPIError: On transport errors, non-2xx or malformed bodies
            RateLimitError: On HTTP 429
        """
        urls = self._feed_urls.get(market)
        if not urls:
            raise ProviderAPIError(f"No feed configured for market {market.value}")

        items: list[RawCalendarItem] = []
        for url in urls:
            for record in self._get_json(url):
                item = self._to_raw_item(record)
                if self._in_range(item, start, end):
                    items.append(item)

        logger.info(
            "calendar_feed_fetched",
            market=market.value,
            start=start.isoformat(),
            end=end.isoformat(),
            items=len(items),
        )
        return items

    def _get_json(self, url: str) -> list[Any]:
        try:
            response = self._session.get(url, timeout=self._timeout_seconds)
        except requests.RequestException as exc:
            raise ProviderAPIError(f"Calendar feed request failed: {exc}") from exc

        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            raise RateLimitError(
                retry_after=int(retry_after)
                if retry_after and retry_after.isdigit()
                else DEFAULT_RETRY_AFTER_SECONDS
            )
        if not response.ok:
            raise ProviderAPIError(
                f"Calendar feed returned HTTP {response.status_code} for {url}"
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise ProviderAPIError(f"Calendar feed returned invalid JSON: {exc}") from exc

        if not isinstance(body, list):
            raise ProviderAPIError("Calendar feed body is not a list")
        return body

    def _to_raw_item(self, record: Any) -> RawCalendarItem:
        """Wrap a feed record; non-object records become an empty item.

        Empty items fail mapping downstream and are counted as skipped
        instead of vanishing here.
        """
        try:
            return RawCalendarItem.model_validate(record)
        except PydanticValidationError:
            logger.warning("calendar_feed_record_malformed", record=str(record)[:200])
            return RawCalendarItem()

    def _in_range(self, item: RawCalendarItem, start: date, end: date) -> bool:
        try:
            local_day = parse_provider_timestamp(item.date, self._exchange_tz).date()
        except UnknownProviderValueError:
            return True
        return start <= local_day <= end


__all__ = ["CalendarFeedClient"]
