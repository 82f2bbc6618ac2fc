import threading

import pytest

from dripproxy.core.stream import (
    ABOUT_TO_CLOSE,
    BYTES_WRITTEN,
    READY_READ,
    BufferStream,
    FeedStream,
    FileStream,
    OpenMode,
    StreamError,
    describe_stream,
)


def test_buffer_stream_reads_and_seeks() -> None:
    stream = BufferStream(b"alpha\nbeta")
    assert stream.bytes_available() == 0
    assert stream.open(OpenMode.READ_ONLY)
    assert stream.bytes_available() == 10
    assert stream.can_read_line() is True
    assert stream.read(6) == b"alpha\n"
    assert stream.pos() == 6
    assert stream.can_read_line() is False
    assert stream.is_sequential() is False
    assert stream.seek(2) is True
    assert stream.seek(11) is False
    assert stream.read_all() == b"pha\nbeta"
    assert stream.at_end() is True
    assert stream.reset() is True
    assert stream.read(5) == b"alpha"


def test_buffer_stream_write_publishes_notifications() -> None:
    stream = BufferStream()
    topics: list[str] = []
    stream.subscribe("*", lambda envelope: topics.append(envelope["topic"]))
    stream.open(OpenMode.READ_WRITE)
    assert stream.write(b"xyz") == 3
    assert stream.data == b"xyz"
    assert topics == [BYTES_WRITTEN, READY_READ]
    stream.close()
    assert topics[-1] == ABOUT_TO_CLOSE
    assert stream.is_open() is False


def test_buffer_stream_rejects_reads_and_writes_in_wrong_mode() -> None:
    stream = BufferStream(b"data")
    with pytest.raises(StreamError):
        stream.read(1)
    assert stream.error_string == "device not open for reading"
    stream.open(OpenMode.READ_ONLY)
    with pytest.raises(StreamError):
        stream.write(b"x")
    assert stream.error_string == "device not open for writing"
    with pytest.raises(ValueError):
        stream.read(-1)


def test_file_stream_reads_file(tmp_path) -> None:
    path = tmp_path / "payload.bin"
    path.write_bytes(b"line one\nline two")
    stream = FileStream(path)
    assert stream.open(OpenMode.READ_ONLY)
    assert stream.size() == 17
    assert stream.can_read_line() is True
    assert stream.read(9) == b"line one\n"
    assert stream.bytes_available() == 8
    assert stream.pos() == 9
    assert stream.can_read_line() is False
    assert stream.read(100) == b"line two"
    assert stream.at_end() is True
    info = describe_stream(stream)
    assert info["name"] == "payload.bin"
    assert info["sequential"] is False
    stream.close()
    assert stream.bytes_available() == 0


def test_file_stream_open_failure_sets_error_string(tmp_path) -> None:
    stream = FileStream(tmp_path / "missing.bin")
    assert stream.open(OpenMode.READ_ONLY) is False
    assert stream.error_string
    assert stream.is_open() is False


def test_file_stream_writes(tmp_path) -> None:
    path = tmp_path / "out.bin"
    stream = FileStream(path)
    assert stream.open(OpenMode.WRITE_ONLY)
    assert stream.write(b"hello") == 5
    assert stream.wait_for_bytes_written(10) is True
    stream.close()
    assert path.read_bytes() == b"hello"


def test_feed_stream_delivers_in_order() -> None:
    stream = FeedStream()
    notifications: list[int] = []
    stream.subscribe(READY_READ, lambda envelope: notifications.append(envelope["payload"]["bytes"]))
    stream.open(OpenMode.READ_ONLY)
    stream.feed(b"abc")
    stream.feed(b"")
    stream.feed(b"de\n")
    assert notifications == [3, 3]
    assert stream.can_read_line() is True
    assert stream.read(4) == b"abcd"
    assert stream.pos() == 4
    assert stream.at_end() is False
    stream.feed_eof()
    assert stream.read(10) == b"e\n"
    assert stream.at_end() is True
    with pytest.raises(RuntimeError):
        stream.feed(b"late")


def test_feed_stream_wait_blocks_until_fed() -> None:
    stream = FeedStream()
    stream.open(OpenMode.READ_ONLY)
    assert stream.wait_for_ready_read(10) is False

    timer = threading.Timer(0.05, stream.feed, args=(b"late data",))
    timer.start()
    try:
        assert stream.wait_for_ready_read(2000) is True
    finally:
        timer.join()
    assert stream.read(100) == b"late data"


def test_feed_stream_failure_surfaces_on_read_and_write() -> None:
    stream = FeedStream()
    stream.open(OpenMode.READ_WRITE)
    assert stream.write(b"ping") == 4
    assert bytes(stream.written) == b"ping"
    stream.fail("connection reset by peer")
    with pytest.raises(StreamError):
        stream.read(1)
    assert stream.error_string == "connection reset by peer"
    with pytest.raises(StreamError):
        stream.write(b"pong")
