"""Consumers that drain a stream and reassemble what it delivered."""

from __future__ import annotations

import asyncio
from typing import Any, Callable

from dripproxy.core.logging import get_logger
from dripproxy.core.stream import READY_READ, SequentialStream, StreamError


class StreamCollector:
    """Reads everything a stream announces via ``ready_read``.

    ``chunks`` keeps the size of every successful read so tests can assert
    how fragmented the delivery was.
    """

    def __init__(
        self,
        stream: SequentialStream,
        *,
        read_size: int = 1024,
        sink: Callable[[bytes], None] | None = None,
    ) -> None:
        if read_size <= 0:
            raise ValueError("read_size must be greater than zero")
        self.stream = stream
        self.read_size = read_size
        self.sink = sink
        self.received = bytearray()
        self.chunks: list[int] = []
        self.finished = False
        self.error: StreamError | None = None
        self.logger = get_logger("dripproxy.reader")
        self._waiter: asyncio.Future[bytes] | None = None
        self._attached = False

    def attach(self) -> None:
        if self._attached:
            return
        self.stream.subscribe(READY_READ, self._on_ready_read)
        self._attached = True

    def detach(self) -> None:
        if not self._attached:
            return
        self.stream.unsubscribe(READY_READ, self._on_ready_read)
        self._attached = False

    async def collect(self, timeout: float | None = None) -> bytes:
        """Drain the stream on the running loop until it reaches its end."""
        loop = asyncio.get_running_loop()
        self._waiter = loop.create_future()
        self.attach()
        try:
            self.drain()
            await asyncio.wait_for(self._waiter, timeout)
        finally:
            self.detach()
            self._waiter = None
        return bytes(self.received)

    def drain(self) -> None:
        if self.finished:
            return
        while True:
            available = self.stream.bytes_available()
            try:
                data = self.stream.read(available if available > 0 else self.read_size)
            except StreamError as exc:
                self._fail(exc)
                return
            if data:
                self.received.extend(data)
                self.chunks.append(len(data))
                if self.sink is not None:
                    self.sink(data)
                if self.stream.bytes_available() > 0:
                    continue
            if self.stream.bytes_available() == 0 and self.stream.at_end():
                self._finish()
            return

    def _on_ready_read(self, _envelope: dict[str, Any]) -> None:
        self.drain()

    def _finish(self) -> None:
        self.finished = True
        self.logger.debug(
            "stream drained",
            extra={
                "service": "reader",
                "event_action": "finished",
                "payload": {"bytes": len(self.received), "reads": len(self.chunks)},
            },
        )
        if self._waiter is not None and not self._waiter.done():
            self._waiter.set_result(bytes(self.received))

    def _fail(self, exc: StreamError) -> None:
        self.error = exc
        self.finished = True
        if self._waiter is not None and not self._waiter.done():
            self._waiter.set_exception(exc)
            return
        raise exc


def drain_blocking(stream: SequentialStream, timeout_ms: int = 1000) -> bytes:
    """Drain ``stream`` with ``wait_for_ready_read`` and ``read`` alone."""
    received = bytearray()
    while not (stream.at_end() and stream.bytes_available() == 0):
        if stream.bytes_available() == 0 and not stream.wait_for_ready_read(timeout_ms):
            raise TimeoutError(f"no data within {timeout_ms} ms after {len(received)} bytes")
        received.extend(stream.read(stream.bytes_available()))
    return bytes(received)
