"""Explicit parsing of provider strings into domain enums.

Provider values are never cast blindly: anything that does not map to a
known enum member raises ``UnknownProviderValueError`` so the ingestion loop
can skip and count the item.
"""

from typing import Final

from src.domain.exceptions import UnknownProviderValueError
from src.domain.models import Currency, Impact

IMPACT_ALIASES: Final[dict[str, Impact]] = {
    "HIGH": Impact.HIGH,
    "MEDIUM": Impact.MEDIUM,
    "MED": Impact.MEDIUM,
    "LOW": Impact.LOW,
}
"""Provider impact labels (case-insensitive). Holiday/non-economic rows have no mapping."""


def parse_currency(raw: object) -> Currency:
    """Map the provider ``country`` field to a currency.

    Raises:
        UnknownProviderValueError: If the value is not a supported currency
    """
    if not isinstance(raw, str):
        raise UnknownProviderValueError("currency", raw)
    try:
        return Currency(raw.strip().upper())
    except ValueError as exc:
        raise UnknownProviderValueError("currency", raw) from exc


def parse_impact(raw: object) -> Impact:
    """Map the provider ``impact`` field to an impact level.

    Raises:
        UnknownProviderValueError: If the value is not a supported impact
    """
    if not isinstance(raw, str):
        raise UnknownProviderValueError("impact", raw)
    impact = IMPACT_ALIASES.get(raw.strip().upper())
    if impact is None:
        raise UnknownProviderValueError("impact", raw)
    return impact
