"""Fixed-interval job scheduler with single-flight execution.

Each job gets its own ticker thread. A tick hands the run to a worker
thread; if the previous run of the same job is still going, the tick is
skipped and logged instead of starting an overlapping run.

Ticks follow absolute deadlines (``first + k * interval``) so wake-up
latency never accumulates. Aligned jobs put their deadlines on wall-clock
multiples of the interval, e.g. every minute at ``:00`` plus a short settle
delay, which keeps a per-minute scan on exactly one tick per minute.
"""

from __future__ import annotations

import math
import threading
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Final

from src.config.logging_config import get_logger
from src.observability.tracing import job_scope

logger = get_logger(__name__)

ALIGNMENT_SETTLE_SECONDS: Final[float] = 0.5


@dataclass
class ScheduledJob:
    """A named action run every ``interval_seconds``.

    ``align_to_interval`` places ticks on wall-clock multiples of the
    interval (offset by ``ALIGNMENT_SETTLE_SECONDS``) instead of counting
    from scheduler start.
    """

    name: str
    interval_seconds: float
    action: Callable[[], object]
    run_on_start: bool = True
    align_to_interval: bool = False
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def __post_init__(self) -> None:
        if self.interval_seconds <= 0:
            msg = "interval_seconds must be positive"
            raise ValueError(msg)

    def first_deadline(self, now: float) -> float:
        """Wall-clock time of the first interval tick after ``now``."""
        if not self.align_to_interval:
            return now + self.interval_seconds
        boundary = math.floor(now / self.interval_seconds) * self.interval_seconds
        deadline = boundary + ALIGNMENT_SETTLE_SECONDS
        if deadline <= now:
            deadline += self.interval_seconds
        return deadline


class IntervalScheduler:
    """Runs jobs on independent fixed-interval threads."""

    def __init__(
        self,
        jobs: list[ScheduledJob],
        *,
        clock: Callable[[], float] = time.time,
        wait: Callable[[float], bool] | None = None,
    ) -> None:
        """Initialize scheduler.

        Args:
            jobs: Jobs to run; names must be unique
            clock: Wall clock in epoch seconds
            wait: Sleep primitive returning True once shutdown was requested;
                defaults to waiting on the internal stop event
        """
        names = [job.name for job in jobs]
        if len(set(names)) != len(names):
            msg = "job names must be unique"
            raise ValueError(msg)

        self._jobs = {job.name: job for job in jobs}
        self._stop = threading.Event()
        self._clock = clock
        self._wait = wait or self._stop.wait
        self._executor = ThreadPoolExecutor(
            max_workers=max(len(jobs), 1), thread_name_prefix="job"
        )
        self._tickers: list[threading.Thread] = []

    def run_now(self, name: str) -> bool:
        """Run a job synchronously under its single-flight guard.

        Returns:
            False if the job was already running and this tick was skipped
        """
        job = self._jobs[name]
        if not job._lock.acquire(blocking=False):
            logger.warning("scheduled_job_skipped_still_running", job=name)
            return False

        try:
            with job_scope(name):
                logger.info("scheduled_job_started")
                try:
                    job.action()
                except Exception:  # noqa: BLE001
                    logger.exception("scheduled_job_failed")
                else:
                    logger.info("scheduled_job_completed")
        finally:
            job._lock.release()
        return True

    def tick(self, name: str) -> bool:
        """Submit a run to the worker pool unless one is in flight."""
        job = self._jobs[name]
        if job._lock.locked():
            logger.warning("scheduled_job_skipped_still_running", job=name)
            return False
        self._executor.submit(self.run_now, name)
        return True

    def _ticker(self, job: ScheduledJob) -> None:
        if job.run_on_start:
            self.tick(job.name)

        deadline = job.first_deadline(self._clock())
        while not self._wait(max(0.0, deadline - self._clock())):
            self.tick(job.name)
            deadline += job.interval_seconds

            now = self._clock()
            if deadline <= now:
                missed = math.floor((now - deadline) / job.interval_seconds) + 1
                deadline += missed * job.interval_seconds
                logger.warning("scheduled_job_ticks_missed", job=job.name, missed=missed)

    def start(self) -> None:
        """Start one ticker thread per job."""
        for job in self._jobs.values():
            thread = threading.Thread(
                target=self._ticker, args=(job,), name=f"ticker-{job.name}", daemon=True
            )
            thread.start()
            self._tickers.append(thread)
            logger.info(
                "scheduled_job_registered",
                job=job.name,
                interval_seconds=job.interval_seconds,
                aligned=job.align_to_interval,
            )

    def stop(self, *, wait: bool = True) -> None:
        """Stop ticking; in-flight runs finish (no mid-run cancellation)."""
        self._stop.set()
        for thread in self._tickers:
            thread.join(timeout=1.0)
        self._executor.shutdown(wait=wait)
        logger.info("interval_scheduler_stopped", jobs=list(self._jobs))


__all__ = ["ALIGNMENT_SETTLE_SECONDS", "IntervalScheduler", "ScheduledJob"]
