"""Entry point for the queue consumer that delivers alerts to Slack."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from pydantic import SecretStr

from scripts import pipeline_runtime
from src.adapters.repository_factory import create_repository
from src.adapters.slack_client import SlackClient
from src.config.logging_config import get_logger
from src.config.settings import get_settings
from src.workers.alert_consumer import AlertConsumerWorker, DigestConsumerWorker

logger = get_logger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the alert queue consumer")
    parser.add_argument(
        "--poll-interval-seconds",
        type=float,
        default=2.0,
        help="Seconds to wait between receive attempts when the queue is idle",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=10,
        help="Messages leased per receive call",
    )
    parser.add_argument(
        "--skip-digests",
        action="store_true",
        help="Only consume single-event alerts",
    )
    parser.add_argument(
        "--run-once",
        action="store_true",
        help="Process a single batch of messages and exit",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit logs in JSON format",
    )
    args = parser.parse_args(argv)
    if args.batch_size <= 0:
        parser.error("--batch-size must be greater than 0")
    return args


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    settings = get_settings()
    pipeline_runtime.initialize_logging(settings, json_logs=args.json_logs)

    controller = pipeline_runtime.create_shutdown_controller()
    pipeline_runtime.install_signal_handlers(controller)

    try:
        slack_client = SlackClient(bot_token=_extract_secret(settings.slack_bot_token))
    except Exception:  # noqa: BLE001
        logger.exception("slack_client_initialization_failed")
        return 1

    repository = create_repository(settings)
    alert_queue = repository.alert_queue()

    workers: list[pipeline_runtime.WorkerProtocol] = [
        AlertConsumerWorker(
            alert_queue=alert_queue,
            poster=slack_client,
            queue_name=settings.alerts_queue_name,
            batch_size=args.batch_size,
        )
    ]
    if not args.skip_digests:
        workers.append(
            DigestConsumerWorker(
                alert_queue=alert_queue,
                poster=slack_client,
                queue_name=settings.digests_queue_name,
                batch_size=args.batch_size,
            )
        )

    try:
        pipeline_runtime.run_worker_loop(
            workers,
            controller,
            poll_interval=args.poll_interval_seconds,
            run_once=args.run_once,
        )
    finally:
        repository.close()

    return 0


def _extract_secret(secret: SecretStr | None) -> str:
    value = secret.get_secret_value() if secret is not None else ""
    if not value:
        msg = "SLACK_BOT_TOKEN is not configured"
        raise ValueError(msg)
    return value


if __name__ == "__main__":
    raise SystemExit(main())
