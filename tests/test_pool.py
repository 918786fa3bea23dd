"""Tests for the load balancing worker pool."""

from __future__ import annotations

import asyncio

import pytest

from isolated_workers import WorkerClosed, WorkerManager, WorkerPool


def run(coro):
    return asyncio.run(coro)


def test_pool_spreads_calls_over_workers(config) -> None:
    run(_test_pool_spreads_calls_over_workers(config))


async def _test_pool_spreads_calls_over_workers(config) -> None:
    async def pid_after(delay):
        import os

        await asyncio.sleep(delay)
        return os.getpid()

    async with WorkerManager(config) as manager:
        async with WorkerPool(manager, pid_after, 2, throttle=2) as pool:
            assert sorted(manager.workers) == ["pool-1", "pool-2"]
            calls = [asyncio.ensure_future(pool.call(0.2)) for _ in range(6)]
            await asyncio.sleep(0.05)
            used, total = pool.throttle_load()
            assert total == 4
            assert used <= total
            assert max(pool.load().values()) <= 2
            pids = await asyncio.gather(*calls)
            assert set(pids) == {worker.pid for worker in pool.workers}
            assert pool.throttle_load() == (0, 4)
        assert len(manager) == 0
        with pytest.raises(WorkerClosed):
            await pool.call(0)


def test_pool_reports_payload_errors_per_call(config) -> None:
    run(_test_pool_reports_payload_errors_per_call(config))


async def _test_pool_reports_payload_errors_per_call(config) -> None:
    async with WorkerManager(config) as manager:
        pool = await WorkerPool(manager, lambda x: 10 // x, 2).start()
        try:
            results = await asyncio.gather(
                *(pool.call(x) for x in (1, 0, 5)), return_exceptions=True
            )
        finally:
            await pool.aclose()
        assert results[0] == 10
        assert "ZeroDivisionError" in str(results[1])
        assert results[2] == 2


def test_pool_size_must_be_positive(config) -> None:
    manager = WorkerManager(config)
    with pytest.raises(ValueError):
        WorkerPool(manager, abs, 0)
