"""Stream proxy that releases its source's data in small, delayed chunks."""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Any, Callable

from dripproxy.core.event_bus import EventHandler
from dripproxy.core.logging import get_logger
from dripproxy.core.stream import (
    READY_READ,
    BufferStream,
    OpenMode,
    SequentialStream,
    StreamError,
)
from dripproxy.core.timer import PeriodicTimer
from dripproxy.tarpit.chunking import compute_chunk_size, validate_chunking
from dripproxy.tarpit.jitter import JitterSource, coerce_jitter_source


DEFAULT_CHUNK_SIZE = 8
DEFAULT_RELEASE_INTERVAL_MS = 10
RELEASE_HISTORY_LIMIT = 4096


class DelayingProxyStream(SequentialStream):
    """Sequential view over a source that reveals its bytes a chunk at a time.

    Incremental consumers (parsers, protocol decoders) often misbehave only
    when input arrives fragmented. Wrapping their input in this proxy makes
    every read see at most the bytes released so far; a timer on the event
    loop releases ``chunk_size`` more bytes (optionally varied by up to
    ``jitter_range``) every ``release_interval_ms`` and publishes
    ``ready_read``.

    ``source`` is either raw bytes, copied into a private buffer owned by the
    proxy, or a :class:`SequentialStream` the caller owns. An external source
    must outlive the proxy.

    The proxy is always sequential: ``seek()`` fails regardless of the source.

    Example::

        random.seed(0)
        proxy = DelayingProxyStream(payload, chunk_size=8, jitter_range=7)
        proxy.open()
        parser.feed_from(proxy)  # sees chunks of 1 to 15 bytes
    """

    def __init__(
        self,
        source: SequentialStream | bytes | bytearray | memoryview,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        jitter_range: int = 0,
        release_interval_ms: int = DEFAULT_RELEASE_INTERVAL_MS,
        jitter_source: JitterSource | Callable[[], int] | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        super().__init__("proxy")
        if isinstance(source, (bytes, bytearray, memoryview)):
            buffer = BufferStream(bytes(source), name="proxy-buffer")
            buffer.open(OpenMode.READ_ONLY)
            self._source: SequentialStream = buffer
            self.owns_source = True
        elif isinstance(source, SequentialStream):
            self._source = source
            self.owns_source = False
        else:
            raise TypeError(f"unsupported proxy source: {type(source).__name__}")

        validate_chunking(chunk_size, jitter_range)
        self._chunk_size = int(chunk_size)
        self._jitter_range = int(jitter_range)
        self._jitter_source = coerce_jitter_source(jitter_source)
        self._released = 0
        self.ticks = 0
        self.release_history: deque[int] = deque(maxlen=RELEASE_HISTORY_LIMIT)
        self.logger = get_logger("dripproxy.proxy")
        self._timer = PeriodicTimer(release_interval_ms, self._on_release_timer, loop=loop)

    @property
    def source(self) -> SequentialStream:
        return self._source

    @property
    def released_bytes(self) -> int:
        return self._released

    @property
    def release_interval_ms(self) -> int:
        return self._timer.interval_ms

    @property
    def timer_active(self) -> bool:
        return self._timer.active

    @property
    def chunk_size(self) -> int:
        return self._chunk_size

    def set_chunk_size(self, chunk_size: int) -> None:
        validate_chunking(chunk_size, self._jitter_range)
        self._chunk_size = int(chunk_size)

    @property
    def jitter_range(self) -> int:
        return self._jitter_range

    def set_jitter_range(self, jitter_range: int) -> None:
        """Vary each chunk by up to ``jitter_range`` bytes either way.

        Must stay below ``chunk_size``. Zero (the default) releases exactly
        ``chunk_size`` per tick.
        """
        validate_chunking(self._chunk_size, jitter_range)
        self._jitter_range = int(jitter_range)

    @property
    def jitter_source(self) -> JitterSource | None:
        return self._jitter_source

    def set_jitter_source(self, jitter_source: JitterSource | Callable[[], int] | None) -> None:
        """Replace the integer provider behind the jitter.

        ``None`` restores the process-wide ``random`` generator.
        """
        self._jitter_source = coerce_jitter_source(jitter_source)

    def open(self, mode: OpenMode = OpenMode.READ_ONLY) -> bool:
        if self.owns_source and not self._source.is_open():
            self._source.open(OpenMode.READ_ONLY)
        super().open(mode)
        self._released = 0
        self._source.subscribe(READY_READ, self._on_source_ready_read)
        if self._source.bytes_available() > 0 or not self._source.is_sequential():
            self._timer.start()
            self.logger.debug(
                "release timer armed",
                extra={
                    "service": "proxy",
                    "event_action": "timer_start",
                    "payload": {
                        "interval_ms": self._timer.interval_ms,
                        "source_available": self._source.bytes_available(),
                    },
                },
            )
        return True

    def close(self) -> None:
        self._timer.stop()
        self._source.unsubscribe(READY_READ, self._on_source_ready_read)
        super().close()
        self._source.close()

    def subscribe(self, topic: str, handler: EventHandler) -> None:
        super().subscribe(topic, handler)
        if topic == READY_READ and self._timer.active and not self._timer.scheduled:
            self._timer.start()

    def read(self, max_len: int) -> bytes:
        self._check_readable(max_len)
        bounded = min(self._clamp_released(), max_len)
        try:
            data = self._source.read(bounded)
        except StreamError as exc:
            self.error_string = self._source.error_string or str(exc)
            self.logger.warning(
                "source read failed",
                extra={
                    "service": "proxy",
                    "event_action": "read",
                    "event_outcome": "failure",
                    "payload": {"requested": bounded, "error": self.error_string},
                },
            )
            raise
        self._released -= len(data)
        if data and self._released == 0 and self._more_in_source():
            self._timer.start()
        return data

    def write(self, data: bytes) -> int:
        self._check_writable()
        try:
            written = self._source.write(data)
        except StreamError as exc:
            self.error_string = self._source.error_string or str(exc)
            self.logger.warning(
                "source write failed",
                extra={
                    "service": "proxy",
                    "event_action": "write",
                    "event_outcome": "failure",
                    "payload": {"length": len(data), "error": self.error_string},
                },
            )
            raise
        self._clamp_released()
        return written

    def bytes_available(self) -> int:
        return self._clamp_released()

    def at_end(self) -> bool:
        return self._source.at_end()

    def is_sequential(self) -> bool:
        return True

    def pos(self) -> int:
        return self._source.pos()

    def seek(self, pos: int) -> bool:
        _ = pos
        return False

    def reset(self) -> bool:
        return self._source.reset()

    def size(self) -> int:
        return self._clamp_released() if self.is_open() else -1

    def can_read_line(self) -> bool:
        return self._source.can_read_line()

    def bytes_to_write(self) -> int:
        return self._source.bytes_to_write()

    def wait_for_ready_read(self, timeout_ms: int) -> bool:
        """Make data readable without waiting for the timer.

        Releases one chunk right away when the source holds unreleased bytes.
        Only when everything has been released does this block on the
        source's own wait, releasing a chunk if it reports new data.
        """
        if self._clamp_released() > 0:
            return True
        if self._more_in_source():
            self._release_chunk()
            return True
        if self._source.at_end():
            return True
        ready = self._source.wait_for_ready_read(timeout_ms)
        if ready:
            self._release_chunk()
        return ready

    def wait_for_bytes_written(self, timeout_ms: int) -> bool:
        return self._source.wait_for_bytes_written(timeout_ms)

    async def wait_ready(self, timeout: float | None = None) -> bool:
        """Wait on the running loop until the next ``ready_read`` publication."""
        if self._released > 0:
            return True
        loop = asyncio.get_running_loop()
        waiter: asyncio.Future[None] = loop.create_future()

        def _wake(_envelope: dict[str, Any]) -> None:
            if not waiter.done():
                waiter.set_result(None)

        self.subscribe(READY_READ, _wake)
        try:
            await asyncio.wait_for(waiter, timeout)
        except asyncio.TimeoutError:
            return False
        finally:
            self.unsubscribe(READY_READ, _wake)
        return True

    def snapshot(self) -> dict[str, Any]:
        return {
            "released_bytes": self._released,
            "chunk_size": self._chunk_size,
            "jitter_range": self._jitter_range,
            "release_interval_ms": self._timer.interval_ms,
            "timer_active": self._timer.active,
            "timer_fired": self._timer.fired,
            "ticks": self.ticks,
            "release_history": list(self.release_history),
        }

    def _clamp_released(self) -> int:
        # released bytes never exceed what the source still holds
        available = self._source.bytes_available()
        if self._released > available:
            self._released = available
        return self._released

    def _more_in_source(self) -> bool:
        return self._released < self._source.bytes_available()

    def _release_chunk(self) -> int:
        size = compute_chunk_size(self._chunk_size, self._jitter_range, self._jitter_source)
        self._released = min(self._released + size, self._source.bytes_available())
        self.ticks += 1
        self.release_history.append(size)
        self.logger.debug(
            "chunk released",
            extra={
                "service": "proxy",
                "event_action": "release",
                "payload": {"chunk_size": size, "released_bytes": self._released},
            },
        )
        return size

    def _on_release_timer(self) -> None:
        size = self._release_chunk()
        self.events.publish(READY_READ, {"released_bytes": self._released, "chunk_size": size})

    def _on_source_ready_read(self, _envelope: dict[str, Any]) -> None:
        if self.is_open():
            self._timer.start()
