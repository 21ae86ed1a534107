"""Session-scoped at-most-once dispatch suppression.

The gate remembers which (event, alert class) pairs were already handled in
this process. Memory is bounded: once more than ``max_entries`` keys are
tracked the whole set is cleared, which can cause a rare duplicate publish
but never a missed one.

State is local to one process and is not locked; callers must serialize
access (the scanner runs single-flight). Two scanner processes each have
their own gate and may both publish the same alert.
"""

from typing import Final

from src.config.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_ENTRIES: Final[int] = 1000

GateKey = tuple[str, str]


class DispatchGate:
    """Bounded in-memory record of dispatched alerts."""

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES) -> None:
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self._max_entries = max_entries
        self._dispatched: set[GateKey] = set()

    def __len__(self) -> int:
        return len(self._dispatched)

    def should_dispatch(self, event_key: str, alert_class: str) -> bool:
        """Return False if the pair was already marked since the last clear."""
        return (event_key, alert_class) not in self._dispatched

    def mark_dispatched(self, event_key: str, alert_class: str) -> None:
        """Record the pair, clearing everything once the bound is exceeded."""
        self._dispatched.add((event_key, alert_class))
        if len(self._dispatched) > self._max_entries:
            cleared = len(self._dispatched)
            self._dispatched.clear()
            logger.info(
                "dispatch_gate_cleared",
                cleared=cleared,
                max_entries=self._max_entries,
            )

    def clear(self) -> None:
        self._dispatched.clear()


__all__ = ["DEFAULT_MAX_ENTRIES", "DispatchGate"]
