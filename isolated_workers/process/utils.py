"""Shared helpers for the process management primitives."""

from __future__ import annotations

import asyncio
import functools
import inspect
from typing import Any, Callable


async def run_handler(handler: Callable[..., Any], *args: Any) -> Any:
    """Execute ``handler`` without blocking the running loop.

    Coroutine functions run on the loop; plain callables run in the loop's
    default executor so that several requests can proceed at once.
    """

    if inspect.iscoroutinefunction(handler):
        return await handler(*args)
    loop = asyncio.get_running_loop()
    result = await loop.run_in_executor(None, functools.partial(handler, *args))
    if inspect.isawaitable(result):
        return await result  # type: ignore[return-value]
    return result
