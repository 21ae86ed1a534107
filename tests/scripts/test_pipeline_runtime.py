from __future__ import annotations

import signal

import pytest

from scripts import pipeline_runtime


class _Controller:
    def __init__(self, stop_after: int) -> None:
        self.checks = 0
        self.stop_after = stop_after
        self.waits: list[float] = []

    def is_set(self) -> bool:
        self.checks += 1
        return self.checks > self.stop_after

    def wait(self, timeout: float) -> bool:
        self.waits.append(timeout)
        return False


def test_run_worker_loop_once(mocker) -> None:
    worker = mocker.Mock()
    worker.process_available_tasks.return_value = 2

    pipeline_runtime.run_worker_loop(
        [worker], _Controller(stop_after=10), poll_interval=1.0, run_once=True
    )

    worker.process_available_tasks.assert_called_once()


def test_run_worker_loop_waits_when_idle(mocker) -> None:
    worker = mocker.Mock()
    worker.process_available_tasks.return_value = 0
    controller = _Controller(stop_after=2)

    pipeline_runtime.run_worker_loop([worker], controller, poll_interval=3.0)

    assert worker.process_available_tasks.call_count == 2
    assert controller.waits == [3.0, 3.0]


def test_run_worker_loop_survives_worker_errors(mocker) -> None:
    failing = mocker.Mock()
    failing.process_available_tasks.side_effect = RuntimeError("db down")
    healthy = mocker.Mock()
    healthy.process_available_tasks.return_value = 0

    pipeline_runtime.run_worker_loop(
        [failing, healthy], _Controller(stop_after=1), poll_interval=1.0
    )

    healthy.process_available_tasks.assert_called_once()


def test_run_worker_loop_once_reraises(mocker) -> None:
    failing = mocker.Mock()
    failing.process_available_tasks.side_effect = RuntimeError("db down")

    with pytest.raises(RuntimeError):
        pipeline_runtime.run_worker_loop(
            [failing], _Controller(stop_after=10), poll_interval=1.0, run_once=True
        )


def test_run_scheduler_until_shutdown_stops_scheduler(mocker) -> None:
    scheduler = mocker.Mock()

    pipeline_runtime.run_scheduler_until_shutdown(
        scheduler, _Controller(stop_after=1), check_interval=0.5
    )

    scheduler.start.assert_called_once()
    scheduler.stop.assert_called_once()


def test_shutdown_controller_set_by_signal() -> None:
    controller = pipeline_runtime.create_shutdown_controller()
    assert not controller.is_set()

    controller.handle_signal(signal.SIGTERM, None)

    assert controller.is_set()
    assert controller.wait(0.01) is True
