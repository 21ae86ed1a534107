"""Worker package exports."""

from src.workers.alert_consumer import AlertConsumerWorker, DigestConsumerWorker

__all__ = [
    "AlertConsumerWorker",
    "DigestConsumerWorker",
]
