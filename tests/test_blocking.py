"""Tests for the thread-backed blocking facade."""

from __future__ import annotations

import os
import time

import pytest

from isolated_workers import (
    BlockingCoordinator,
    PayloadError,
    WorkerClosed,
    WorkerState,
)


def test_blocking_run_and_submit(config) -> None:
    with BlockingCoordinator(config) as coordinator:
        assert coordinator.run(lambda n: n * 2, 21) == 42
        future = coordinator.submit(lambda s: s[::-1], "isolate")
        assert future.result(timeout=60) == "etalosi"
        with pytest.raises(PayloadError):
            coordinator.run(lambda _: {}["missing"])
    with pytest.raises(WorkerClosed):
        coordinator.run(abs, -1)


def test_blocking_persistent_worker(config) -> None:
    coordinator = BlockingCoordinator(config)
    try:
        worker = coordinator.spawn_worker(lambda req: req.upper(), name="upper")
        assert worker.name == "upper"
        first = worker.submit("abc")
        second = worker.submit("xyz")
        assert (first.result(timeout=60), second.result(timeout=60)) == ("ABC", "XYZ")
        assert worker.ping() != os.getpid()
        worker.close()
        assert worker.state is WorkerState.TERMINATED
        with pytest.raises(WorkerClosed):
            worker.call("late")
    finally:
        coordinator.close()
    assert not coordinator._thread.is_alive()


def test_blocking_state_follows_pending_calls(config) -> None:
    with BlockingCoordinator(config) as coordinator:
        worker = coordinator.spawn_worker(time.sleep)
        assert worker.state is WorkerState.READY
        pending = [worker.submit(0.3) for _ in range(4)]
        deadline = time.monotonic() + 10
        while worker.state is not WorkerState.ACTIVE:
            assert time.monotonic() < deadline
            time.sleep(0.005)
        for future in pending:
            assert future.result(timeout=60) is None
        assert worker.state is WorkerState.READY
        worker.close(timeout=None)
        assert worker.state is WorkerState.TERMINATED
