"""Sequential byte stream contract and the concrete sources the proxy wraps."""

from __future__ import annotations

from abc import ABC, abstractmethod
import enum
import os
from pathlib import Path
import threading
from typing import IO, Any

from dripproxy.core.event_bus import EventBus, EventHandler


READY_READ = "ready_read"
BYTES_WRITTEN = "bytes_written"
ABOUT_TO_CLOSE = "about_to_close"


class OpenMode(enum.IntFlag):
    NOT_OPEN = 0
    READ_ONLY = 1
    WRITE_ONLY = 2
    READ_WRITE = 3


class StreamError(OSError):
    """Raised by a stream when a read or write fails."""


class SequentialStream(ABC):
    """Byte stream contract shared by sources and the proxy.

    Notifications are published on ``events``: ``ready_read`` when new data
    can be read, ``bytes_written`` after a write and ``about_to_close``
    right before the stream closes.
    """

    def __init__(self, name: str = "stream") -> None:
        self.events = EventBus(name)
        self.error_string = ""
        self._open_mode = OpenMode.NOT_OPEN

    @property
    def open_mode(self) -> OpenMode:
        return self._open_mode

    def is_open(self) -> bool:
        return self._open_mode != OpenMode.NOT_OPEN

    def is_readable(self) -> bool:
        return bool(self._open_mode & OpenMode.READ_ONLY)

    def is_writable(self) -> bool:
        return bool(self._open_mode & OpenMode.WRITE_ONLY)

    def subscribe(self, topic: str, handler: EventHandler) -> None:
        self.events.subscribe(topic, handler)

    def unsubscribe(self, topic: str, handler: EventHandler) -> None:
        self.events.unsubscribe(topic, handler)

    def open(self, mode: OpenMode = OpenMode.READ_ONLY) -> bool:
        self._open_mode = OpenMode(mode)
        self.error_string = ""
        return True

    def close(self) -> None:
        if not self.is_open():
            return
        self.events.publish(ABOUT_TO_CLOSE)
        self._open_mode = OpenMode.NOT_OPEN

    @abstractmethod
    def read(self, max_len: int) -> bytes: ...

    @abstractmethod
    def write(self, data: bytes) -> int: ...

    @abstractmethod
    def bytes_available(self) -> int: ...

    def read_all(self) -> bytes:
        return self.read(self.bytes_available())

    def at_end(self) -> bool:
        return self.bytes_available() == 0

    def is_sequential(self) -> bool:
        return True

    def pos(self) -> int:
        return 0

    def seek(self, pos: int) -> bool:
        _ = pos
        return False

    def reset(self) -> bool:
        return self.seek(0)

    def size(self) -> int:
        return self.bytes_available()

    def can_read_line(self) -> bool:
        return False

    def bytes_to_write(self) -> int:
        return 0

    def wait_for_ready_read(self, timeout_ms: int) -> bool:
        _ = timeout_ms
        return False

    def wait_for_bytes_written(self, timeout_ms: int) -> bool:
        _ = timeout_ms
        return False

    def _fail(self, message: str, cause: BaseException | None = None) -> StreamError:
        self.error_string = message
        error = StreamError(message)
        if cause is not None:
            error.__cause__ = cause
        return error

    def _check_readable(self, max_len: int) -> None:
        if max_len < 0:
            raise ValueError("max_len must be greater than or equal to zero")
        if not self.is_readable():
            raise self._fail("device not open for reading")

    def _check_writable(self) -> None:
        if not self.is_writable():
            raise self._fail("device not open for writing")


class BufferStream(SequentialStream):
    """Random-access stream over an in-memory byte buffer."""

    def __init__(self, data: bytes = b"", name: str = "buffer") -> None:
        super().__init__(name)
        self._data = bytearray(data)
        self._pos = 0

    @property
    def data(self) -> bytes:
        return bytes(self._data)

    def set_data(self, data: bytes) -> None:
        self._data = bytearray(data)
        self._pos = 0

    def open(self, mode: OpenMode = OpenMode.READ_ONLY) -> bool:
        super().open(mode)
        self._pos = 0
        return True

    def read(self, max_len: int) -> bytes:
        self._check_readable(max_len)
        chunk = bytes(self._data[self._pos : self._pos + max_len])
        self._pos += len(chunk)
        return chunk

    def write(self, data: bytes) -> int:
        self._check_writable()
        end = self._pos + len(data)
        self._data[self._pos : end] = data
        self._pos = end
        self.events.publish(BYTES_WRITTEN, {"bytes": len(data)})
        self.events.publish(READY_READ)
        return len(data)

    def bytes_available(self) -> int:
        return max(0, len(self._data) - self._pos) if self.is_open() else 0

    def at_end(self) -> bool:
        return self._pos >= len(self._data)

    def is_sequential(self) -> bool:
        return False

    def pos(self) -> int:
        return self._pos

    def seek(self, pos: int) -> bool:
        if pos < 0 or pos > len(self._data):
            return False
        self._pos = pos
        return True

    def size(self) -> int:
        return len(self._data)

    def can_read_line(self) -> bool:
        return self.is_readable() and b"\n" in self._data[self._pos :]


class FileStream(SequentialStream):
    """Random-access stream over a file on disk."""

    _MODES = {
        OpenMode.READ_ONLY: "rb",
        OpenMode.WRITE_ONLY: "wb",
        OpenMode.READ_WRITE: "r+b",
    }

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        super().__init__(self.path.name)
        self._handle: IO[bytes] | None = None

    def open(self, mode: OpenMode = OpenMode.READ_ONLY) -> bool:
        file_mode = self._MODES.get(OpenMode(mode))
        if file_mode is None:
            self.error_string = f"unsupported open mode: {mode!r}"
            return False
        try:
            self._handle = self.path.open(file_mode)
        except OSError as exc:
            self.error_string = exc.strerror or str(exc)
            return False
        super().open(mode)
        return True

    def close(self) -> None:
        if not self.is_open():
            return
        super().close()
        if self._handle is not None:
            self._handle.close()
            self._handle = None

    def read(self, max_len: int) -> bytes:
        self._check_readable(max_len)
        assert self._handle is not None
        try:
            return self._handle.read(max_len)
        except OSError as exc:
            raise self._fail(exc.strerror or str(exc), exc) from exc

    def write(self, data: bytes) -> int:
        self._check_writable()
        assert self._handle is not None
        try:
            written = self._handle.write(data)
            self._handle.flush()
        except OSError as exc:
            raise self._fail(exc.strerror or str(exc), exc) from exc
        self.events.publish(BYTES_WRITTEN, {"bytes": written})
        return written

    def bytes_available(self) -> int:
        if self._handle is None:
            return 0
        return max(0, self.size() - self._handle.tell())

    def is_sequential(self) -> bool:
        return False

    def pos(self) -> int:
        return self._handle.tell() if self._handle is not None else 0

    def seek(self, pos: int) -> bool:
        if self._handle is None or pos < 0:
            return False
        self._handle.seek(pos)
        return True

    def size(self) -> int:
        if self._handle is not None:
            return os.fstat(self._handle.fileno()).st_size
        try:
            return self.path.stat().st_size
        except OSError:
            return 0

    def can_read_line(self) -> bool:
        if self._handle is None or not self.is_readable():
            return False
        start = self._handle.tell()
        line = self._handle.readline()
        self._handle.seek(start)
        return line.endswith(b"\n")

    def wait_for_bytes_written(self, timeout_ms: int) -> bool:
        _ = timeout_ms
        return self.is_writable()


class FeedStream(SequentialStream):
    """Sequential source fed incrementally, possibly from another thread.

    ``feed()`` appends data and publishes ``ready_read``; ``feed_eof()``
    marks the end of the transfer. Writes are collected in ``written``.
    When the stream is wrapped by a proxy running on an event loop, feed it
    from the loop thread; ``wait_for_ready_read()`` may block on a feed from
    any thread.
    """

    def __init__(self, name: str = "feed") -> None:
        super().__init__(name)
        self.written = bytearray()
        self._buffer = bytearray()
        self._consumed = 0
        self._eof = False
        self._failure: str | None = None
        self._condition = threading.Condition()

    @property
    def eof(self) -> bool:
        return self._eof

    def feed(self, data: bytes) -> None:
        if not data:
            return
        with self._condition:
            if self._eof:
                raise RuntimeError("feed() after feed_eof()")
            self._buffer.extend(data)
            self._condition.notify_all()
        self.events.publish(READY_READ, {"bytes": len(data)})

    def feed_eof(self) -> None:
        with self._condition:
            self._eof = True
            self._condition.notify_all()
        self.events.publish(READY_READ, {"bytes": 0})

    def fail(self, message: str) -> None:
        with self._condition:
            self._failure = message
            self._condition.notify_all()

    def read(self, max_len: int) -> bytes:
        self._check_readable(max_len)
        with self._condition:
            if self._failure is not None:
                raise self._fail(self._failure)
            chunk = bytes(self._buffer[:max_len])
            del self._buffer[: len(chunk)]
            self._consumed += len(chunk)
        return chunk

    def write(self, data: bytes) -> int:
        self._check_writable()
        if self._failure is not None:
            raise self._fail(self._failure)
        self.written.extend(data)
        self.events.publish(BYTES_WRITTEN, {"bytes": len(data)})
        return len(data)

    def bytes_available(self) -> int:
        with self._condition:
            return len(self._buffer)

    def at_end(self) -> bool:
        with self._condition:
            return self._eof and not self._buffer

    def pos(self) -> int:
        return self._consumed

    def can_read_line(self) -> bool:
        with self._condition:
            return b"\n" in self._buffer

    def wait_for_ready_read(self, timeout_ms: int) -> bool:
        timeout = None if timeout_ms < 0 else timeout_ms / 1000.0
        with self._condition:
            self._condition.wait_for(
                lambda: bool(self._buffer) or self._eof or self._failure is not None,
                timeout=timeout,
            )
            return bool(self._buffer)

    def wait_for_bytes_written(self, timeout_ms: int) -> bool:
        _ = timeout_ms
        return self.is_writable()


def describe_stream(stream: SequentialStream) -> dict[str, Any]:
    return {
        "name": stream.events.name,
        "open_mode": stream.open_mode.name,
        "sequential": stream.is_sequential(),
        "bytes_available": stream.bytes_available(),
        "at_end": stream.at_end(),
    }
