"""Custom exception hierarchy for the economic calendar alerts service.

Following error taxonomy: retryable, non-retryable, validation, rate-limit.
"""


class CalendarAlertsError(Exception):
    """Base exception for all application errors."""

    pass


class RetryableError(CalendarAlertsError):
    """Errors that can be retried (network issues, temporary failures)."""

    pass


class NonRetryableError(CalendarAlertsError):
    """Errors that should not be retried (validation, auth, logic errors)."""

    pass


class ValidationError(NonRetryableError):
    """Data validation errors."""

    pass


class UnknownProviderValueError(ValidationError):
    """Provider returned a currency/impact/date value we cannot map."""

    def __init__(self, field: str, value: object) -> None:
        """Initialize with the offending field and raw value."""
        self.field = field
        self.value = value
        super().__init__(f"Unknown {field} value from provider: {value!r}")


class RateLimitError(RetryableError):
    """API rate limit exceeded."""

    def __init__(self, retry_after: int | None = None) -> None:
        """Initialize with optional retry_after seconds."""
        self.retry_after = retry_after
        super().__init__(f"Rate limit exceeded. Retry after: {retry_after}s")


class ProviderAPIError(RetryableError):
    """Calendar provider communication errors."""

    pass


class SlackAPIError(RetryableError):
    """Slack API communication errors."""

    pass


class QueuePublishError(RetryableError):
    """Alert could not be written to the message queue."""

    pass


class RepositoryError(RetryableError):
    """Database/storage errors."""

    pass
