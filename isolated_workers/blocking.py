"""Thread-backed facade for callers that do not run an event loop.

A :class:`BlockingCoordinator` owns a private event loop on a daemon thread and
a :class:`WorkerManager` living on that loop. Every operation is forwarded with
``asyncio.run_coroutine_threadsafe``.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import threading
from typing import Any, Callable, Optional, Union

from .config import WorkerConfig
from .errors import WorkerClosed
from .process import FROM_CONFIG, PersistentWorker, WorkerManager, WorkerState

logger = logging.getLogger(__name__)


class BlockingWorker:
    """Synchronous view on a :class:`PersistentWorker`."""

    def __init__(
        self, coordinator: "BlockingCoordinator", worker: PersistentWorker
    ) -> None:
        self._coordinator = coordinator
        self._worker = worker

    @property
    def name(self) -> str:
        return self._worker.name

    @property
    def state(self) -> WorkerState:
        """The worker's state, read on the coordinator loop."""

        if self._coordinator._closed:
            return self._worker.state
        return self._coordinator._submit(self._read_state()).result()

    async def _read_state(self) -> WorkerState:
        return self._worker.state

    def submit(
        self, request: Any, *, timeout: Optional[float] = None
    ) -> concurrent.futures.Future:
        return self._coordinator._submit(self._worker.call(request, timeout=timeout))

    def call(self, request: Any, *, timeout: Optional[float] = None) -> Any:
        return self.submit(request, timeout=timeout).result()

    def ping(self, *, timeout: Optional[float] = None) -> int:
        return self._coordinator._submit(self._worker.ping(timeout=timeout)).result()

    def close(self, *, timeout: Union[float, None, object] = FROM_CONFIG) -> None:
        self._coordinator._submit(self._worker.close(timeout=timeout)).result()


class BlockingCoordinator:
    def __init__(self, config: Optional[WorkerConfig] = None) -> None:
        self.loop = asyncio.new_event_loop()
        self._manager = WorkerManager(config)
        self._closed = False
        self._thread = threading.Thread(
            target=self._loop_runner,
            args=(self.loop,),
            name="isolated-workers-loop",
            daemon=True,
        )
        self._thread.start()

    @property
    def manager(self) -> WorkerManager:
        return self._manager

    def _loop_runner(self, loop: asyncio.AbstractEventLoop) -> None:
        asyncio.set_event_loop(loop)
        loop.run_forever()

    def _submit(self, coro) -> concurrent.futures.Future:
        if self._closed:
            coro.close()
            raise WorkerClosed("Coordinator is closed")
        return asyncio.run_coroutine_threadsafe(coro, self.loop)

    def submit(
        self,
        payload: Callable[[Any], Any],
        value: Any = None,
        *,
        timeout: Optional[float] = None,
    ) -> concurrent.futures.Future:
        """Start ``payload(value)`` in a one-shot worker; does not block."""

        return self._submit(self._manager.run(payload, value, timeout=timeout))

    def run(
        self,
        payload: Callable[[Any], Any],
        value: Any = None,
        *,
        timeout: Optional[float] = None,
    ) -> Any:
        return self.submit(payload, value, timeout=timeout).result()

    def spawn_worker(
        self,
        handler: Callable[[Any], Any],
        *,
        name: Optional[str] = None,
        initializer: Optional[Callable[[], Any]] = None,
    ) -> BlockingWorker:
        worker = self._submit(
            self._manager.spawn_worker(handler, name=name, initializer=initializer)
        ).result()
        return BlockingWorker(self, worker)

    def close(self, *, wait: bool = True) -> None:
        if self._closed:
            return
        future = self._submit(self._manager.aclose())
        self._closed = True
        try:
            future.result(timeout=None if wait else 0.5)
        except concurrent.futures.TimeoutError:
            logger.warning("Worker manager did not close in time")
        finally:
            self.loop.call_soon_threadsafe(self.loop.stop)
            self._thread.join(timeout=2.0 if wait else 0.2)
            if not self._thread.is_alive():
                self.loop.close()

    def __enter__(self) -> "BlockingCoordinator":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
