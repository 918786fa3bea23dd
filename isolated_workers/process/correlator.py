"""Match responses arriving from workers to the calls that issued them."""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from ..errors import CorrelationError, PayloadError, RequestTimeout
from .channel import Channel
from .messages import Failure, Message, Request, Response


@dataclass
class PendingRequest:
    request_id: int
    owner: str
    future: asyncio.Future
    created: float = field(default_factory=time.monotonic)
    deadline: Optional[float] = None


class Correlator:
    """Tracks in-flight requests of one coordinator.

    Ids come from a counter scoped to this instance. Responses are routed by
    id only; arrival order does not matter.
    """

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self._pending: Dict[int, PendingRequest] = {}
        self._logger = logging.getLogger(__name__)
        self.discarded = 0

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._pending

    def outstanding(self, owner: Optional[str] = None) -> List[PendingRequest]:
        return [
            pending
            for pending in self._pending.values()
            if owner is None or pending.owner == owner
        ]

    def register(
        self, owner: str, *, timeout: Optional[float] = None
    ) -> PendingRequest:
        request_id = next(self._ids)
        if request_id in self._pending:
            raise CorrelationError(f"Correlation id {request_id} is already pending")
        loop = asyncio.get_running_loop()
        pending = PendingRequest(
            request_id=request_id, owner=owner, future=loop.create_future()
        )
        if timeout is not None:
            pending.deadline = pending.created + timeout
        self._pending[request_id] = pending
        return pending

    def discard(self, request_id: int) -> None:
        self._pending.pop(request_id, None)

    async def issue(
        self,
        channel: Channel,
        payload: Any = None,
        *,
        owner: str = "",
        timeout: Optional[float] = None,
        op: str = "call",
    ) -> Any:
        """Send a request over ``channel`` and wait for its response.

        ``timeout`` covers the whole exchange, sending included.
        """

        pending = self.register(owner, timeout=timeout)
        request_id = pending.request_id
        exchange = self._exchange(channel, pending, payload, op)
        try:
            if pending.deadline is None:
                return await exchange
            try:
                return await asyncio.wait_for(
                    exchange, max(0.0, pending.deadline - time.monotonic())
                )
            except asyncio.TimeoutError:
                raise RequestTimeout(request_id, timeout, owner) from None
        finally:
            self.discard(request_id)

    async def _exchange(
        self, channel: Channel, pending: PendingRequest, payload: Any, op: str
    ) -> Any:
        await channel.send(Request(pending.request_id, payload, op))
        self._logger.debug(
            "%s: issued request %s (%s)", pending.owner, pending.request_id, op
        )
        return await pending.future

    def on_response(self, message: Message) -> bool:
        """Resolve the request ``message`` answers; False if nobody waits for it."""

        if not isinstance(message, (Response, Failure)):
            raise TypeError(f"Not a response: {message!r}")
        pending = self._pending.pop(message.request_id, None)
        if pending is None or pending.future.done():
            self.discarded += 1
            self._logger.debug(
                "Discarding response to unknown request %s", message.request_id
            )
            return False
        if isinstance(message, Failure):
            pending.future.set_exception(
                PayloadError.from_remote(message.error, pending.owner)
            )
        else:
            pending.future.set_result(message.value)
        return True

    def fail_owner(self, owner: str, exc_factory: Callable[[], BaseException]) -> int:
        """Fail every pending request of ``owner``; returns how many were failed."""

        doomed = [p for p in self._pending.values() if p.owner == owner]
        for pending in doomed:
            self._pending.pop(pending.request_id, None)
            if not pending.future.done():
                pending.future.set_exception(exc_factory())
        return len(doomed)

    async def drained(self, owner: str, timeout: Optional[float] = None) -> bool:
        """Wait until ``owner`` has no pending requests; False on timeout."""

        futures = [p.future for p in self.outstanding(owner)]
        if futures:
            _, not_done = await asyncio.wait(futures, timeout=timeout)
            return not not_done
        return True
