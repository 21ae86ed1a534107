"""Domain models for the economic calendar alerts service.

All models use Pydantic v2 for validation and serialization.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Currency(str, Enum):
    """Currencies the provider reports events for."""

    USD = "USD"
    EUR = "EUR"
    GBP = "GBP"
    JPY = "JPY"
    AUD = "AUD"
    CAD = "CAD"
    CHF = "CHF"
    NZD = "NZD"
    CNY = "CNY"


class Impact(str, Enum):
    """Severity classification of a calendar event."""

    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class Market(str, Enum):
    """Provider market feeds."""

    FOREX = "FOREX"
    CRYPTO = "CRYPTO"
    ENERGY = "ENERGY"
    METAL = "METAL"


class AlertClass(str, Enum):
    """Temporal condition that triggers an alert."""

    FIVE_MINUTES_BEFORE = "FIVE_MINUTES_BEFORE"
    ON_NEWS_DROP = "ON_NEWS_DROP"


class NewsScope(str, Enum):
    """Range of events covered by a scheduled digest."""

    DAILY = "DAILY"
    TOMORROW = "TOMORROW"
    WEEKLY = "WEEKLY"


class UpsertOutcome(str, Enum):
    """Result of a single event upsert."""

    CREATED = "created"
    UPDATED = "updated"


class RawCalendarItem(BaseModel):
    """Event record as returned by the provider.

    Fields are kept loose: scalars are stringified and missing values stay
    ``None`` so a broken record still reaches ingestion, where it is mapped
    with validation and counted as skipped.
    """

    model_config = ConfigDict(extra="ignore")

    title: str = ""
    country: str | None = None
    date: str | None = Field(default=None, description="Offset-aware ISO timestamp")
    impact: str | None = None
    forecast: str | None = None
    previous: str | None = None

    @field_validator("country", "date", "impact", "forecast", "previous", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> str | None:
        if value is None or isinstance(value, str):
            return value
        return str(value)

    @field_validator("title", mode="before")
    @classmethod
    def _stringify_title(cls, value: Any) -> str:
        if value is None:
            return ""
        return value if isinstance(value, str) else str(value)


class CalendarEvent(BaseModel):
    """Stored calendar event.

    ``timestamp`` is a naive exchange-local wall clock value (see
    ``src.services.time_normalizer``).
    """

    event_id: int | None = Field(default=None, description="Store-assigned id")
    title: str = Field(..., min_length=1)
    currency: Currency
    timestamp: datetime = Field(..., description="Naive exchange-local time")
    impact: Impact
    forecast: str = ""
    previous: str = ""
    actual: str | None = None
    processed: bool = False
    source: str = "ForexFactory"
    fingerprint: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("timestamp")
    @classmethod
    def _ensure_naive(cls, value: datetime) -> datetime:
        if value.tzinfo is not None:
            msg = "timestamp must be a naive exchange-local datetime"
            raise ValueError(msg)
        return value


class Subscription(BaseModel):
    """Alert subscription for one chat channel."""

    subscription_id: int | None = None
    server_id: str = Field(..., min_length=1)
    channel_id: str = Field(..., min_length=1)
    currencies: frozenset[Currency] = Field(
        default_factory=frozenset, description="Empty means all currencies"
    )
    impacts: frozenset[Impact] = Field(
        default_factory=frozenset, description="Empty means all impacts"
    )
    alert_classes: frozenset[AlertClass]

    @field_validator("alert_classes")
    @classmethod
    def _require_alert_class(
        cls, value: frozenset[AlertClass]
    ) -> frozenset[AlertClass]:
        if not value:
            msg = "subscription must request at least one alert class"
            raise ValueError(msg)
        return value


class DigestSchedule(BaseModel):
    """Scheduled digest of upcoming events for one channel."""

    schedule_id: int | None = None
    server_id: str = Field(..., min_length=1)
    channel_id: str = Field(..., min_length=1)
    hour: int = Field(..., ge=0, le=23, description="Exchange-local hour")
    minute: int = Field(..., ge=0, le=59, description="Exchange-local minute")
    news_scope: NewsScope
    currencies: frozenset[Currency] = Field(default_factory=frozenset)
    impacts: frozenset[Impact] = Field(default_factory=frozenset)


class AlertMessage(BaseModel):
    """Queue payload for a single (event, subscription) alert."""

    model_config = ConfigDict(populate_by_name=True)

    title: str
    currency: Currency
    impact: Impact
    timestamp: str = Field(..., description="Naive ISO timestamp")
    forecast: str = ""
    previous: str = ""
    alert_class: AlertClass = Field(..., alias="alertClass")
    channel_id: str = Field(..., alias="channelId")
    server_id: str = Field(..., alias="serverId")

    def to_payload(self) -> dict[str, str]:
        """Serialize with the wire field names."""
        return self.model_dump(mode="json", by_alias=True)


class DigestEventItem(BaseModel):
    """One event line inside a digest payload."""

    title: str
    currency: Currency
    impact: Impact
    timestamp: str
    forecast: str = ""
    previous: str = ""
    actual: str | None = None


class DigestMessage(BaseModel):
    """Queue payload for a scheduled digest."""

    model_config = ConfigDict(populate_by_name=True)

    news_scope: NewsScope = Field(..., alias="newsScope")
    channel_id: str = Field(..., alias="channelId")
    server_id: str = Field(..., alias="serverId")
    events: list[DigestEventItem] = Field(default_factory=list)

    def to_payload(self) -> dict[str, object]:
        """Serialize with the wire field names."""
        return self.model_dump(mode="json", by_alias=True)


class IngestResult(BaseModel):
    """Result of a calendar ingestion run."""

    events_fetched: int = 0
    events_created: int = 0
    events_updated: int = 0
    events_skipped: int = 0
    markets_processed: list[Market] = Field(default_factory=list)
    markets_failed: list[Market] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


class ScanResult(BaseModel):
    """Result of a temporal scan."""

    scanned_at: datetime
    events_matched: int = 0
    alerts_published: int = 0
    publish_failures: int = 0
    suppressed: int = 0


class RetentionResult(BaseModel):
    """Result of a retention sweep."""

    processed_deleted: int = 0
    stale_deleted: int = 0


class DigestScheduleResult(BaseModel):
    """Result of a digest schedule check."""

    schedules_due: int = 0
    digests_published: int = 0
    digests_empty: int = 0
    publish_failures: int = 0
