"""Process plumbing shared by the scheduler and consumer entry points."""

from __future__ import annotations

import signal
import threading
import time
from types import FrameType
from typing import Protocol

from src.adapters.interval_scheduler import IntervalScheduler
from src.config.logging_config import get_logger, setup_logging
from src.config.settings import Settings

logger = get_logger(__name__)


class ShutdownSignal(Protocol):
    def is_set(self) -> bool: ...

    def wait(self, timeout: float) -> bool: ...


class WorkerProtocol(Protocol):
    def process_available_tasks(self) -> int: ...


class ShutdownController:
    """Set once SIGTERM or SIGINT arrives; loops poll it between batches."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def is_set(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        return self._event.wait(timeout)

    def handle_signal(self, signum: int, frame: FrameType | None) -> None:
        logger.info("shutdown_signal_received", signal=signal.Signals(signum).name)
        self._event.set()


def create_shutdown_controller() -> ShutdownController:
    return ShutdownController()


def install_signal_handlers(controller: ShutdownController) -> None:
    for signum in (signal.SIGTERM, signal.SIGINT):
        signal.signal(signum, controller.handle_signal)


def initialize_logging(settings: Settings, *, json_logs: bool = False) -> None:
    setup_logging(
        log_level=settings.log_level,
        json_logs=json_logs,
        exchange_tz=settings.exchange_timezone,
    )
    logger.info("logging_initialized", level=settings.log_level, json_logs=json_logs)


def run_worker_loop(
    workers: list[WorkerProtocol],
    controller: ShutdownSignal,
    *,
    poll_interval: float,
    run_once: bool = False,
    busy_pause_seconds: float = 0.1,
) -> None:
    """Drain the consumers until shutdown.

    After an idle pass (nothing leased) the loop sleeps ``poll_interval``;
    after a busy pass it only pauses briefly. A failing consumer is logged
    and retried on the next pass, except in ``run_once`` mode where the
    error propagates.
    """
    poll_interval = max(0.1, poll_interval)
    logger.info(
        "worker_loop_started",
        workers=[type(worker).__name__ for worker in workers],
        poll_interval=poll_interval,
        run_once=run_once,
    )

    passes = 0
    while not controller.is_set():
        passes += 1
        delivered = 0
        for worker in workers:
            try:
                delivered += worker.process_available_tasks()
            except Exception:  # noqa: BLE001
                logger.exception(
                    "worker_pass_failed", worker=type(worker).__name__, passes=passes
                )
                if run_once:
                    raise

        if run_once:
            break
        if delivered:
            time.sleep(busy_pause_seconds)
        else:
            controller.wait(poll_interval)

    logger.info("worker_loop_stopped", passes=passes)


def run_scheduler_until_shutdown(
    scheduler: IntervalScheduler,
    controller: ShutdownSignal,
    *,
    check_interval: float = 1.0,
) -> None:
    """Start the scheduler and block until shutdown; in-flight jobs finish."""
    scheduler.start()
    logger.info("scheduler_started")
    try:
        while not controller.is_set():
            controller.wait(check_interval)
    finally:
        scheduler.stop()
    logger.info("scheduler_stopped")


__all__ = [
    "ShutdownController",
    "ShutdownSignal",
    "WorkerProtocol",
    "create_shutdown_controller",
    "initialize_logging",
    "install_signal_handlers",
    "run_scheduler_until_shutdown",
    "run_worker_loop",
]
