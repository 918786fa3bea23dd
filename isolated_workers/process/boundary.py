"""Start and stop isolated worker processes.

A worker is a separate OS process started with a ``multiprocessing`` context
(``spawn`` unless configured otherwise). The handler is shipped by value with
cloudpickle, so lambdas and closures work as well as module level functions.
Nothing but encoded messages ever crosses the pipe between the two sides.
"""

from __future__ import annotations

import asyncio
import logging
import multiprocessing as mp
import os
from multiprocessing.connection import Connection
from typing import Any, Callable, Optional, Set, Tuple

import cloudpickle

from ..errors import ChannelClosed, EncodingError, SpawnFailure
from .channel import Channel
from .messages import (
    Failure,
    Ready,
    RemoteError,
    Request,
    Response,
    SetupFailed,
    Shutdown,
)
from .utils import run_handler

logger = logging.getLogger(__name__)


def spawn_process(
    handler: Callable[[Any], Any],
    *,
    name: str,
    initializer: Optional[Callable[[], Any]] = None,
    start_method: str = "spawn",
    log_level: Optional[str] = None,
) -> Tuple[mp.process.BaseProcess, Connection]:
    """Start a worker process; returns it with the coordinator's pipe end."""

    try:
        blob = cloudpickle.dumps((handler, initializer))
    except Exception as exc:
        raise SpawnFailure(f"Cannot ship handler of {name} to a worker: {exc}") from exc
    ctx = mp.get_context(start_method)
    parent_conn, child_conn = ctx.Pipe()
    process = ctx.Process(
        target=_worker_bootstrap,
        args=(child_conn, blob, name, log_level),
        name=name,
        daemon=True,
    )
    try:
        process.start()
    except Exception as exc:
        parent_conn.close()
        raise SpawnFailure(f"Could not start worker {name}: {exc}") from exc
    finally:
        child_conn.close()
    logger.debug("Started worker %s (pid %s)", name, process.pid)
    return process, parent_conn


async def stop_process(
    process: mp.process.BaseProcess, *, join_timeout: float = 1.0
) -> Optional[int]:
    """Make sure ``process`` is gone; returns its exit code."""

    loop = asyncio.get_running_loop()
    if process.is_alive():
        await loop.run_in_executor(None, process.join, join_timeout)
    if process.is_alive():
        logger.debug("Terminating worker %s (pid %s)", process.name, process.pid)
        process.terminate()
        await loop.run_in_executor(None, process.join, join_timeout)
    if process.is_alive():
        logger.warning("Killing worker %s (pid %s)", process.name, process.pid)
        process.kill()
        await loop.run_in_executor(None, process.join, join_timeout)
    return process.exitcode


def _worker_bootstrap(
    conn: Connection, blob: bytes, name: str, log_level: Optional[str]
) -> None:
    if log_level:
        logging.basicConfig(
            level=log_level,
            format="%(asctime)s %(processName)s %(name)s %(levelname)s %(message)s",
        )
    asyncio.run(_child_main(conn, blob, name))


async def _child_main(conn: Connection, blob: bytes, name: str) -> None:
    channel = Channel(conn, name=f"child[{name}]")
    try:
        handler, initializer = cloudpickle.loads(blob)
        if initializer is not None:
            await run_handler(initializer)
    except Exception as exc:
        logger.exception("Setup of worker %s failed in PID %s", name, os.getpid())
        try:
            await channel.send(SetupFailed(RemoteError.capture(exc)))
        finally:
            channel.close()
        return
    try:
        await channel.send(Ready(os.getpid()))
    except ChannelClosed:
        # coordinator went away before we were ready
        channel.close()
        return

    tasks: Set[asyncio.Task] = set()
    async for message in channel.receive():
        if isinstance(message, Shutdown):
            break
        if not isinstance(message, Request):
            logger.warning("%s received unexpected message: %s", name, message)
            continue
        task = asyncio.get_running_loop().create_task(
            _serve(channel, handler, message)
        )
        tasks.add(task)
        task.add_done_callback(tasks.discard)
    if tasks:
        logger.debug("%s draining %d request(s) before exit", name, len(tasks))
        await asyncio.gather(*tasks)
    channel.close()


async def _serve(
    channel: Channel, handler: Callable[[Any], Any], request: Request
) -> None:
    if request.op == "ping":
        reply: Any = Response(request.request_id, os.getpid())
    elif request.op == "call":
        try:
            result = await run_handler(handler, request.payload)
        except (Exception, SystemExit) as exc:
            reply = Failure(request.request_id, RemoteError.capture(exc))
        else:
            reply = Response(request.request_id, result)
    else:
        reply = Failure(
            request.request_id,
            RemoteError("ValueError", f"Unknown operation {request.op!r}"),
        )
    try:
        try:
            await channel.send(reply)
        except EncodingError as exc:
            await channel.send(Failure(request.request_id, RemoteError.capture(exc)))
    except ChannelClosed:
        logger.debug(
            "%s: coordinator gone, dropping reply %s", channel.name, request.request_id
        )
