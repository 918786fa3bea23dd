"""Module level entry points backed by one manager per event loop.

``run_isolated`` and ``spawn_worker`` use a default :class:`WorkerManager`
bound to the running event loop. Call :func:`shutdown_workers` before the loop
ends to close its workers gracefully; otherwise they are reaped when the
interpreter exits.
"""

from __future__ import annotations

import asyncio
import weakref
from typing import Any, Callable, Optional

from .config import WorkerConfig
from .process import PersistentWorker, WorkerManager

_managers: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, WorkerManager]" = (
    weakref.WeakKeyDictionary()
)


def get_manager(config: Optional[WorkerConfig] = None) -> WorkerManager:
    """Return the default manager of the running loop, creating it if needed."""

    loop = asyncio.get_running_loop()
    manager = _managers.get(loop)
    if manager is None or manager.closed:
        manager = WorkerManager(config)
        _managers[loop] = manager
    return manager


def has_spawned() -> bool:
    """Return True if the running loop's default manager has live workers."""

    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        return False
    manager = _managers.get(loop)
    return bool(manager is not None and len(manager))


async def run_isolated(
    payload: Callable[[Any], Any], value: Any = None, *, timeout: Optional[float] = None
) -> Any:
    """Compute ``payload(value)`` in a fresh, automatically torn down worker."""

    return await get_manager().run(payload, value, timeout=timeout)


async def spawn_worker(
    handler: Callable[[Any], Any],
    *,
    name: Optional[str] = None,
    initializer: Optional[Callable[[], Any]] = None,
) -> PersistentWorker:
    """Start a worker answering ``call(request)`` with ``handler(request)``."""

    return await get_manager().spawn_worker(
        handler, name=name, initializer=initializer
    )


async def shutdown_workers() -> None:
    """Gracefully close every worker of the running loop's default manager."""

    manager = _managers.pop(asyncio.get_running_loop(), None)
    if manager is None:
        return
    await manager.aclose()


__all__ = [
    "get_manager",
    "has_spawned",
    "run_isolated",
    "spawn_worker",
    "shutdown_workers",
]
