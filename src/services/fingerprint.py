"""Content fingerprint for calendar events.

The store's composite unique key is authoritative for deduplication; the
fingerprint is a stable digest of the same identity used for cross-checking,
log correlation and dispatch bookkeeping.
"""

import hashlib
from datetime import datetime

from src.domain.models import CalendarEvent, Currency, Impact
from src.services.time_normalizer import NAIVE_FORMAT


def _encode_field(value: str) -> bytes:
    raw = value.encode("utf-8")
    return str(len(raw)).encode("ascii") + b":" + raw


def fingerprint(
    title: str, timestamp: datetime, impact: Impact | str, currency: Currency | str
) -> str:
    """Compute the identity digest of an event.

    Each field is length-prefixed so that ``("FOMC", "2025")`` and
    ``("FOM", "C2025")`` never encode to the same bytes.

    Args:
        title: Event title as stored
        timestamp: Naive exchange-local timestamp
        impact: Impact level
        currency: Currency code

    Returns:
        SHA-256 hex digest
    """
    impact_value = impact.value if isinstance(impact, Impact) else impact
    currency_value = currency.value if isinstance(currency, Currency) else currency
    material = b"".join(
        _encode_field(part)
        for part in (
            title,
            timestamp.strftime(NAIVE_FORMAT),
            impact_value,
            currency_value,
        )
    )
    return hashlib.sha256(material).hexdigest()


def event_fingerprint(event: CalendarEvent) -> str:
    """Fingerprint of a stored or about-to-be-stored event."""
    return fingerprint(event.title, event.timestamp, event.impact, event.currency)
