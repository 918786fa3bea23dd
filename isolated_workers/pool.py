"""A fixed-size set of identical persistent workers with load balancing."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from .errors import WorkerClosed
from .process import PersistentWorker, WorkerManager


class WorkerPool:
    """Spread calls over ``size`` workers running the same handler.

    Each worker accepts at most ``throttle`` concurrent calls; the least
    loaded worker with a free slot gets the next one.
    """

    def __init__(
        self,
        manager: WorkerManager,
        handler: Callable[[Any], Any],
        size: int,
        *,
        throttle: Optional[int] = None,
        initializer: Optional[Callable[[], Any]] = None,
        name_prefix: str = "pool",
    ) -> None:
        if size < 1:
            raise ValueError("A worker pool needs at least one worker")
        self.manager = manager
        self.size = size
        self.throttle = throttle or manager.config.pool_throttle
        self._handler = handler
        self._initializer = initializer
        self._name_prefix = name_prefix
        self._handles: List[PersistentWorker] = []
        self._load: Dict[str, int] = {}
        self._slot_freed: Optional[asyncio.Condition] = None
        self._closed = False
        self._logger = logging.getLogger(__name__)

    async def start(self) -> "WorkerPool":
        self._slot_freed = asyncio.Condition()
        results = await asyncio.gather(
            *(
                self.manager.spawn_worker(
                    self._handler,
                    name=f"{self._name_prefix}-{idx + 1}",
                    initializer=self._initializer,
                )
                for idx in range(self.size)
            ),
            return_exceptions=True,
        )
        started = [r for r in results if isinstance(r, PersistentWorker)]
        errors = [r for r in results if isinstance(r, BaseException)]
        if errors:
            await asyncio.gather(*(worker.close() for worker in started))
            raise errors[0]
        self._handles = started
        self._load = {worker.name: 0 for worker in started}
        return self

    @property
    def workers(self) -> List[PersistentWorker]:
        return [worker for worker in self._handles if not worker.closing]

    def load(self) -> Dict[str, int]:
        return dict(self._load)

    def throttle_load(self) -> Tuple[int, int]:
        """Return (used_slots, total_slots) over the live workers."""

        live = self.workers
        used = sum(self._load.get(worker.name, 0) for worker in live)
        return used, len(live) * self.throttle

    def _select(self) -> Optional[PersistentWorker]:
        candidates = [
            worker
            for worker in self.workers
            if self._load.get(worker.name, 0) < self.throttle
        ]
        if not candidates:
            return None
        return min(candidates, key=lambda w: (self._load.get(w.name, 0), w.name))

    async def call(self, request: Any, *, timeout: Optional[float] = None) -> Any:
        if self._slot_freed is None:
            raise RuntimeError("Worker pool has not been started")
        async with self._slot_freed:
            while True:
                if self._closed:
                    raise WorkerClosed("Worker pool is closed")
                if not self.workers:
                    raise WorkerClosed("Worker pool has no live workers")
                worker = self._select()
                if worker is not None:
                    break
                await self._slot_freed.wait()
            self._load[worker.name] += 1
        self._logger.debug(
            "Dispatching to %s (load %d)", worker.name, self._load[worker.name]
        )
        try:
            return await worker.call(request, timeout=timeout)
        finally:
            async with self._slot_freed:
                self._load[worker.name] = max(0, self._load[worker.name] - 1)
                self._slot_freed.notify_all()

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._slot_freed is not None:
            async with self._slot_freed:
                self._slot_freed.notify_all()
        await asyncio.gather(*(worker.close() for worker in self._handles))

    async def __aenter__(self) -> "WorkerPool":
        if self._slot_freed is None:
            await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()
