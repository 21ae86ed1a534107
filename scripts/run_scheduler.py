"""Entry point for the calendar job scheduler.

Runs ingestion, the temporal alert scan, digest schedule checks and the
retention sweep on their own fixed intervals in one process.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from scripts import pipeline_runtime
from src.adapters.calendar_provider import CalendarFeedClient
from src.adapters.interval_scheduler import IntervalScheduler, ScheduledJob
from src.adapters.repository_factory import create_repository
from src.config.logging_config import get_logger
from src.config.settings import Settings, get_settings
from src.domain.protocols import RepositoryProtocol
from src.services.dispatch_gate import DispatchGate
from src.use_cases.check_digest_schedules import check_digest_schedules_use_case
from src.use_cases.ingest_calendar import ingest_calendar_use_case
from src.use_cases.scan_alerts import TemporalScanner
from src.use_cases.sweep_retention import sweep_retention_use_case

logger = get_logger(__name__)

JOB_NAMES = ("ingest", "scan", "digests", "retention")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the calendar job scheduler")
    parser.add_argument(
        "--jobs",
        nargs="+",
        choices=JOB_NAMES,
        default=list(JOB_NAMES),
        help="Subset of jobs to schedule",
    )
    parser.add_argument(
        "--run-once",
        action="store_true",
        help="Run each selected job a single time and exit",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit logs in JSON format",
    )
    return parser.parse_args(argv)


def build_jobs(
    settings: Settings,
    repository: RepositoryProtocol,
    selected: list[str],
) -> list[ScheduledJob]:
    """Wire use cases into scheduled jobs."""

    alert_queue = repository.alert_queue()
    provider = CalendarFeedClient(
        {
            market: settings.feed_urls_for(market)
            for market in settings.ingest_markets
        },
        timeout_seconds=settings.provider_timeout_seconds,
        exchange_tz=settings.exchange_timezone,
    )
    scanner = TemporalScanner(
        repository,
        alert_queue,
        gate=DispatchGate(settings.dispatch_gate_max_entries),
        queue_name=settings.alerts_queue_name,
        max_attempts=settings.queue_max_attempts,
        exchange_tz=settings.exchange_timezone,
    )

    available = {
        "ingest": ScheduledJob(
            name="ingest",
            interval_seconds=settings.ingest_interval_seconds,
            action=lambda: ingest_calendar_use_case(provider, repository, settings),
        ),
        "scan": ScheduledJob(
            name="scan",
            interval_seconds=settings.scan_interval_seconds,
            action=scanner.scan,
            align_to_interval=True,
        ),
        "digests": ScheduledJob(
            name="digests",
            interval_seconds=settings.digest_interval_seconds,
            align_to_interval=True,
            action=lambda: check_digest_schedules_use_case(
                repository,
                alert_queue,
                queue_name=settings.digests_queue_name,
                max_attempts=settings.queue_max_attempts,
                exchange_tz=settings.exchange_timezone,
            ),
        ),
        "retention": ScheduledJob(
            name="retention",
            interval_seconds=settings.retention_interval_seconds,
            action=lambda: sweep_retention_use_case(repository, settings),
        ),
    }
    return [available[name] for name in selected]


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    settings = get_settings()
    pipeline_runtime.initialize_logging(settings, json_logs=args.json_logs)

    controller = pipeline_runtime.create_shutdown_controller()
    pipeline_runtime.install_signal_handlers(controller)

    repository = create_repository(settings)
    try:
        scheduler = IntervalScheduler(build_jobs(settings, repository, args.jobs))

        if args.run_once:
            for name in args.jobs:
                scheduler.run_now(name)
            scheduler.stop()
            return 0

        pipeline_runtime.run_scheduler_until_shutdown(scheduler, controller)
    finally:
        repository.close()

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
