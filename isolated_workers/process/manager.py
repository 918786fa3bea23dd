"""Coordinator-side lifecycle management of isolated workers."""

from __future__ import annotations

import asyncio
import enum
import itertools
import logging
from typing import Any, Callable, Dict, Optional, Union

from ..config import WorkerConfig
from ..errors import RequestTimeout, SpawnFailure, WorkerClosed
from .boundary import spawn_process, stop_process
from .channel import Channel
from .correlator import Correlator
from .messages import Failure, Ready, Response, SetupFailed, Shutdown

#: Default of ``close(timeout=...)``: use the manager's ``drain_timeout``.
FROM_CONFIG: Any = object()

ONESHOT_PREFIX = "oneshot-"


class WorkerState(enum.Enum):
    CREATED = "created"
    READY = "ready"
    ACTIVE = "active"
    CLOSING = "closing"
    TERMINATED = "terminated"


class PersistentWorker:
    """A long-lived worker process answering correlated requests.

    Instances are created by :meth:`WorkerManager.spawn_worker`.
    """

    def __init__(
        self,
        manager: "WorkerManager",
        name: str,
        handler: Callable[[Any], Any],
        initializer: Optional[Callable[[], Any]] = None,
    ) -> None:
        self.manager = manager
        self.name = name
        self._handler = handler
        self._initializer = initializer
        self._logger = logging.getLogger(__name__)
        self._state = WorkerState.CREATED
        self._process = None
        self._channel: Optional[Channel] = None
        self._dispatch_task: Optional[asyncio.Task] = None
        self._ready: Optional[asyncio.Future] = None
        self._close_task: Optional[asyncio.Task] = None
        self.pid: Optional[int] = None
        self.exitcode: Optional[int] = None

    def __repr__(self) -> str:
        return f"<PersistentWorker {self.name} {self.state.value}>"

    @property
    def state(self) -> WorkerState:
        if self._state is WorkerState.READY and self.manager.correlator.outstanding(
            self.name
        ):
            return WorkerState.ACTIVE
        return self._state

    @property
    def closing(self) -> bool:
        return self._state in (WorkerState.CLOSING, WorkerState.TERMINATED)

    def is_alive(self) -> bool:
        return bool(self._process and self._process.is_alive())

    async def start(self) -> None:
        config = self.manager.config
        loop = asyncio.get_running_loop()
        process, conn = spawn_process(
            self._handler,
            name=self.name,
            initializer=self._initializer,
            start_method=config.start_method,
            log_level=config.log_level,
        )
        self._process = process
        self.pid = process.pid
        self._channel = Channel(conn, name=f"parent[{self.name}]")
        self._ready = loop.create_future()
        self._dispatch_task = loop.create_task(self._dispatch())
        try:
            if config.ready_timeout is None:
                await asyncio.shield(self._ready)
            else:
                await asyncio.wait_for(
                    asyncio.shield(self._ready), config.ready_timeout
                )
        except BaseException as exc:
            await self._teardown()
            if isinstance(exc, asyncio.TimeoutError):
                raise SpawnFailure(
                    f"Worker {self.name} did not become ready "
                    f"within {config.ready_timeout}s"
                ) from None
            raise
        self._state = WorkerState.READY

    async def call(self, request: Any, *, timeout: Optional[float] = None) -> Any:
        """Send ``request`` to the handler and wait for its result."""

        if self.closing or self._channel is None:
            raise WorkerClosed(f"Worker {self.name} is closed")
        return await self.manager.correlator.issue(
            self._channel, request, owner=self.name, timeout=timeout
        )

    async def ping(self, *, timeout: Optional[float] = None) -> int:
        """Round-trip a liveness probe; returns the worker's pid."""

        if self.closing or self._channel is None:
            raise WorkerClosed(f"Worker {self.name} is closed")
        return await self.manager.correlator.issue(
            self._channel, None, owner=self.name, timeout=timeout, op="ping"
        )

    async def close(
        self, *, timeout: Union[float, None, object] = FROM_CONFIG
    ) -> None:
        """Stop accepting calls, honor pending ones, then release the process.

        ``timeout`` bounds the wait for pending requests (default: the
        manager's ``drain_timeout``; ``None`` waits as long as it takes);
        whatever is left then fails with :class:`WorkerClosed`.
        """

        if self._close_task is None:
            if self._state is not WorkerState.TERMINATED:
                # calls are judged closed from this point on
                self._state = WorkerState.CLOSING
            if timeout is FROM_CONFIG:
                timeout = self.manager.config.drain_timeout
            self._close_task = asyncio.get_running_loop().create_task(
                self._shutdown(timeout)
            )
        await asyncio.shield(self._close_task)

    async def terminate(self) -> None:
        """Kill the worker; pending requests fail with :class:`WorkerClosed`."""

        if self._state is WorkerState.TERMINATED:
            return
        self._state = WorkerState.CLOSING
        self._fail_pending(f"Worker {self.name} was terminated")
        await self._teardown()

    async def _shutdown(self, timeout: Optional[float]) -> None:
        if self._state is WorkerState.TERMINATED:
            return
        channel = self._channel
        correlator = self.manager.correlator
        if channel is not None and not channel.closed:
            try:
                await channel.send(Shutdown())
            except Exception as exc:
                self._logger.debug(
                    "Could not signal shutdown to %s: %s", self.name, exc
                )
        drained = await correlator.drained(self.name, timeout)
        if not drained:
            self._logger.warning(
                "Worker %s did not answer %d request(s) before close",
                self.name,
                len(correlator.outstanding(self.name)),
            )
            self._fail_pending(f"Worker {self.name} closed before answering")
        if channel is not None and self.is_alive():
            try:
                await asyncio.wait_for(
                    channel.wait_closed(), self.manager.config.join_timeout
                )
            except asyncio.TimeoutError:
                pass
        await self._teardown()

    async def _teardown(self) -> None:
        if self._process is not None:
            self.exitcode = await stop_process(
                self._process, join_timeout=self.manager.config.join_timeout
            )
        if self._channel is not None:
            self._channel.close()
        if self._dispatch_task is not None and not self._dispatch_task.done():
            self._dispatch_task.cancel()
        self._fail_pending(f"Worker {self.name} closed")
        self._state = WorkerState.TERMINATED
        self.manager._forget(self)

    def _fail_pending(self, reason: str) -> None:
        failed = self.manager.correlator.fail_owner(
            self.name, lambda: WorkerClosed(reason)
        )
        if failed:
            self._logger.debug("%s: failed %d pending request(s)", self.name, failed)

    async def _dispatch(self) -> None:
        assert self._channel is not None and self._ready is not None
        ready = self._ready
        correlator = self.manager.correlator
        async for message in self._channel.receive():
            if isinstance(message, (Response, Failure)):
                correlator.on_response(message)
            elif isinstance(message, Ready):
                if not ready.done():
                    ready.set_result(message.pid)
            elif isinstance(message, SetupFailed):
                if not ready.done():
                    ready.set_exception(
                        SpawnFailure(
                            f"Worker {self.name} failed to start: "
                            f"{message.error.describe()}"
                        )
                    )
            else:
                self._logger.warning(
                    "%s received unknown message: %s", self._channel.name, message
                )
        if not ready.done():
            ready.set_exception(
                SpawnFailure(f"Worker {self.name} exited before becoming ready")
            )
            return
        if self.closing:
            # nothing can answer what is still pending
            self._fail_pending(f"Worker {self.name} exited before answering")
            return
        # the worker vanished without being asked to
        self._state = WorkerState.CLOSING
        self.exitcode = await stop_process(
            self._process, join_timeout=self.manager.config.join_timeout
        )
        self._logger.warning(
            "Worker %s exited unexpectedly (exit code %s)", self.name, self.exitcode
        )
        self._fail_pending(
            f"Worker {self.name} exited unexpectedly (exit code {self.exitcode})"
        )
        self._channel.close()
        self._state = WorkerState.TERMINATED
        self.manager._forget(self)


class WorkerManager:
    """Owns the workers of one coordinator and the requests in flight to them."""

    def __init__(self, config: Optional[WorkerConfig] = None) -> None:
        self.config = config or WorkerConfig.from_env()
        self.correlator = Correlator()
        self._workers: Dict[str, PersistentWorker] = {}
        self._starting: Dict[str, PersistentWorker] = {}
        self._names = itertools.count(1)
        self._oneshot_ids = itertools.count(1)
        self._closed = False
        self._close_task: Optional[asyncio.Task] = None
        self._logger = logging.getLogger(__name__)

    def __len__(self) -> int:
        return len(self._workers)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def workers(self) -> Dict[str, PersistentWorker]:
        return dict(self._workers)

    def get_worker(self, name: str) -> PersistentWorker:
        return self._workers[name]

    async def spawn_worker(
        self,
        handler: Callable[[Any], Any],
        *,
        name: Optional[str] = None,
        initializer: Optional[Callable[[], Any]] = None,
    ) -> PersistentWorker:
        """Start a persistent worker running ``handler`` for every call.

        Names starting with ``"oneshot-"`` are reserved for :meth:`run`.
        """

        if name is not None and name.startswith(ONESHOT_PREFIX):
            raise ValueError(
                f"Worker names starting with {ONESHOT_PREFIX!r} are reserved"
            )
        return await self._spawn(
            handler, name or f"worker-{next(self._names)}", initializer
        )

    async def _spawn(
        self,
        handler: Callable[[Any], Any],
        worker_name: str,
        initializer: Optional[Callable[[], Any]] = None,
    ) -> PersistentWorker:
        self._ensure_open()
        if worker_name in self._workers or worker_name in self._starting:
            raise ValueError(f"Worker {worker_name!r} already exists")
        worker = PersistentWorker(self, worker_name, handler, initializer)
        self._starting[worker_name] = worker
        try:
            await worker.start()
        finally:
            self._starting.pop(worker_name, None)
        if self._closed:
            await worker.close()
            raise WorkerClosed("Worker manager closed while spawning")
        self._workers[worker_name] = worker
        self._logger.debug("Worker %s ready (pid %s)", worker_name, worker.pid)
        return worker

    async def run(
        self,
        payload: Callable[[Any], Any],
        value: Any = None,
        *,
        timeout: Optional[float] = None,
    ) -> Any:
        """Run ``payload(value)`` in a fresh worker that is torn down afterwards."""

        worker = await self._spawn(
            payload, f"{ONESHOT_PREFIX}{next(self._oneshot_ids)}"
        )
        try:
            return await worker.call(value, timeout=timeout)
        except (asyncio.CancelledError, RequestTimeout):
            # nobody is left to read the result
            await asyncio.shield(worker.terminate())
            raise
        finally:
            await worker.close()

    async def aclose(self) -> None:
        """Reject new work and close every worker once it has drained."""

        if self._close_task is None:
            self._closed = True
            self._close_task = asyncio.get_running_loop().create_task(
                self._close_all()
            )
        await asyncio.shield(self._close_task)

    async def _close_all(self) -> None:
        workers = list(self._workers.values())
        if workers:
            results = await asyncio.gather(
                *(worker.close() for worker in workers), return_exceptions=True
            )
            for worker, result in zip(workers, results):
                if isinstance(result, Exception):
                    self._logger.error("Closing %s failed: %r", worker.name, result)
        self._workers.clear()

    async def __aenter__(self) -> "WorkerManager":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    def _ensure_open(self) -> None:
        if self._closed:
            raise WorkerClosed("Worker manager is closed")

    def _forget(self, worker: PersistentWorker) -> None:
        if self._workers.get(worker.name) is worker:
            del self._workers[worker.name]
