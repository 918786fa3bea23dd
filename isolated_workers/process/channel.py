"""Ordered message transport on top of a multiprocessing pipe."""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from multiprocessing.connection import Connection
from typing import AsyncIterator, Optional

from ..errors import ChannelClosed
from .messages import Message, decode, encode

_EOF = object()


class Channel:
    """One end of a duplex, per-direction FIFO message pipe.

    Must be created while an event loop is running. A daemon thread reads
    frames from the pipe and hands them to the loop, so a silent peer never
    blocks the loop nor interpreter exit. Writes go through a single thread of
    their own and never wait behind handler jobs in the default executor.
    """

    def __init__(self, conn: Connection, *, name: Optional[str] = None) -> None:
        self._conn = conn
        self._loop = asyncio.get_running_loop()
        self._logger = logging.getLogger(__name__)
        self._name = name or f"channel-{id(self):x}"
        self._inbox: asyncio.Queue = asyncio.Queue()
        self._send_lock = asyncio.Lock()
        self._writer = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix=f"{self._name}-writer"
        )
        self._closed = False
        self._eof = False
        self._eof_event = asyncio.Event()
        self._conn_lock = threading.Lock()
        self._reader_done = False
        self._reader = threading.Thread(
            target=self._read_forever, name=f"{self._name}-reader", daemon=True
        )
        self._reader.start()

    @property
    def name(self) -> str:
        return self._name

    @property
    def closed(self) -> bool:
        return self._closed or self._eof

    @property
    def at_eof(self) -> bool:
        return self._eof

    async def send(self, message: Message) -> None:
        if self.closed:
            raise ChannelClosed(f"{self._name} is closed")
        data = encode(message)
        async with self._send_lock:
            if self.closed:
                raise ChannelClosed(f"{self._name} is closed")
            try:
                await self._loop.run_in_executor(
                    self._writer, self._conn.send_bytes, data
                )
            except (BrokenPipeError, EOFError, OSError) as exc:
                raise ChannelClosed(f"{self._name} send failed") from exc

    async def receive(self) -> AsyncIterator[Message]:
        """Yield incoming messages until the channel is closed and drained."""

        while True:
            item = await self._inbox.get()
            if item is _EOF:
                # leave the marker for the next subscription
                self._inbox.put_nowait(_EOF)
                return
            yield item

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._writer.shutdown(wait=False)
        self._inbox.put_nowait(_EOF)
        with self._conn_lock:
            if self._reader_done:
                self._close_conn()

    async def wait_closed(self) -> None:
        """Wait until the peer end is gone."""

        await self._eof_event.wait()

    def _close_conn(self) -> None:
        try:
            self._conn.close()
        except OSError:
            pass

    def _read_forever(self) -> None:
        while True:
            try:
                data = self._conn.recv_bytes()
            except (EOFError, OSError):
                break
            try:
                message = decode(data)
            except Exception:
                self._logger.exception("%s dropped an undecodable frame", self._name)
                continue
            if not self._post(message):
                break
        self._post(_EOF)
        with self._conn_lock:
            self._reader_done = True
            if self._closed:
                self._close_conn()

    def _post(self, item: object) -> bool:
        try:
            self._loop.call_soon_threadsafe(self._deliver, item)
        except RuntimeError:
            self._logger.debug("%s: event loop is gone, stopping reader", self._name)
            return False
        return True

    def _deliver(self, item: object) -> None:
        if item is _EOF:
            self._eof = True
            self._eof_event.set()
            if self._closed:
                return
        elif self._closed:
            self._logger.debug("%s discarding message after close", self._name)
            return
        self._inbox.put_nowait(item)

    def __repr__(self) -> str:
        state = "closed" if self.closed else "open"
        return f"<Channel {self._name} {state}>"
