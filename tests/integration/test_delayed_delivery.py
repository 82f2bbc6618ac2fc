import asyncio
import random
import xml.etree.ElementTree as ET

import pytest

from dripproxy.core.stream import READY_READ, FeedStream, FileStream, OpenMode, StreamError
from dripproxy.tarpit.jitter import SequenceJitterSource
from dripproxy.tarpit.proxy import DelayingProxyStream
from dripproxy.tarpit.reader import StreamCollector


SAMPLE = b"foo bar foo bar lal alal a sdf dsf sadf dsaf dsaf dsaf dfsrgtrewg jlkewrfgewroijresfewa123"

FEED_XML = b"""<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Stream Blog</title>
  <link rel="alternate" type="text/html" href="http://www.example.org"/>
  <entry>
    <title>First post</title>
    <content type="text/html" mode="escaped">&lt;p&gt;Hello&lt;/p&gt;</content>
  </entry>
  <entry>
    <title>Second post</title>
    <content type="text/html" mode="escaped">&lt;p&gt;World&lt;/p&gt;</content>
  </entry>
</feed>
"""

ATOM = "{http://www.w3.org/2005/Atom}"


def _collect(proxy: DelayingProxyStream, timeout: float = 5.0) -> StreamCollector:
    async def _run() -> StreamCollector:
        collector = StreamCollector(proxy)
        proxy.open(OpenMode.READ_ONLY)
        try:
            await collector.collect(timeout=timeout)
        finally:
            proxy.close()
        return collector

    return asyncio.run(_run())


def test_byte_array_is_delivered_in_small_chunks() -> None:
    for _ in range(20):
        proxy = DelayingProxyStream(SAMPLE, chunk_size=5, jitter_range=3, release_interval_ms=1)
        collector = _collect(proxy)
        assert bytes(collector.received) == SAMPLE
        assert len(collector.chunks) > 1
        assert all(size <= 8 for size in collector.chunks)
        assert all(2 <= size <= 8 for size in proxy.release_history)


def test_global_seed_makes_chunking_reproducible() -> None:
    histories = []
    for _ in range(2):
        random.seed(0)
        proxy = DelayingProxyStream(SAMPLE, chunk_size=5, jitter_range=3, release_interval_ms=1)
        _collect(proxy)
        histories.append(list(proxy.release_history)[: proxy.ticks])
    assert histories[0][:10] == histories[1][:10]


def test_precomputed_jitter_sequence_drives_release_sizes() -> None:
    jitter = SequenceJitterSource([84, 79, 82, 24, 3, 33, 64, 3, 20, 33, 22, 62, 51, 36, 86, 87, 77, 1, 74, 22])
    proxy = DelayingProxyStream(
        SAMPLE,
        chunk_size=5,
        jitter_range=3,
        release_interval_ms=1,
        jitter_source=jitter,
    )
    collector = _collect(proxy)
    assert bytes(collector.received) == SAMPLE
    assert list(proxy.release_history)[:5] == [2, 4, 7, 5, 5]


def test_empty_byte_array_finishes_without_release() -> None:
    proxy = DelayingProxyStream(b"", chunk_size=5, jitter_range=3)
    collector = _collect(proxy)
    assert bytes(collector.received) == b""
    assert collector.finished is True
    assert collector.chunks == []
    assert proxy.ticks == 0


def test_file_source_is_delivered_intact(tmp_path) -> None:
    path = tmp_path / "feed.xml"
    path.write_bytes(FEED_XML)
    source = FileStream(path)
    assert source.open(OpenMode.READ_ONLY)
    proxy = DelayingProxyStream(source, chunk_size=5, jitter_range=3, release_interval_ms=1)
    collector = _collect(proxy)
    assert bytes(collector.received) == FEED_XML
    assert source.is_open() is False


def test_incremental_xml_parser_survives_fragmented_input(tmp_path) -> None:
    path = tmp_path / "feed.xml"
    path.write_bytes(FEED_XML)
    source = FileStream(path)
    assert source.open(OpenMode.READ_ONLY)
    proxy = DelayingProxyStream(source, chunk_size=5, jitter_range=3, release_interval_ms=1)
    parser = ET.XMLPullParser(events=("start", "end"))
    titles: list[str] = []
    link: dict[str, str] = {}
    content_attrs: list[tuple[str, str]] = []

    def _feed(data: bytes) -> None:
        parser.feed(data)
        for event, element in parser.read_events():
            if event == "start" and element.tag == f"{ATOM}link":
                link.update(element.attrib)
            elif event == "end" and element.tag == f"{ATOM}title":
                titles.append(element.text or "")
            elif event == "end" and element.tag == f"{ATOM}content":
                content_attrs.append((element.get("type", ""), element.get("mode", "")))

    async def _run() -> StreamCollector:
        collector = StreamCollector(proxy, sink=_feed)
        proxy.open(OpenMode.READ_ONLY)
        try:
            await collector.collect(timeout=5.0)
        finally:
            proxy.close()
        return collector

    collector = asyncio.run(_run())
    parser.close()
    assert len(collector.chunks) > 10
    assert titles == ["Stream Blog", "First post", "Second post"]
    assert link == {"rel": "alternate", "type": "text/html", "href": "http://www.example.org"}
    assert content_attrs == [("text/html", "escaped"), ("text/html", "escaped")]


def test_streaming_source_readiness_rearms_release_timer() -> None:
    source = FeedStream()
    source.open(OpenMode.READ_ONLY)
    proxy = DelayingProxyStream(source, chunk_size=4, release_interval_ms=1)

    async def _run() -> StreamCollector:
        loop = asyncio.get_running_loop()
        collector = StreamCollector(proxy)
        proxy.open(OpenMode.READ_ONLY)
        assert proxy.timer_active is False
        loop.call_later(0.01, source.feed, b"hello ")
        loop.call_later(0.03, source.feed, b"chunked world")
        loop.call_later(0.06, source.feed_eof)
        try:
            await collector.collect(timeout=5.0)
        finally:
            proxy.close()
        return collector

    collector = asyncio.run(_run())
    assert bytes(collector.received) == b"hello chunked world"
    assert all(size <= 4 for size in collector.chunks)


def test_ready_read_notifications_follow_release_ticks() -> None:
    notices: list[dict] = []

    async def _run() -> DelayingProxyStream:
        proxy = DelayingProxyStream(SAMPLE, chunk_size=30, release_interval_ms=2)
        proxy.subscribe(READY_READ, lambda envelope: notices.append(envelope["payload"]))
        proxy.open()
        assert await proxy.wait_ready(timeout=2.0) is True
        first = proxy.released_bytes
        assert first == 30
        assert proxy.read(100) == SAMPLE[:30]
        await asyncio.sleep(0.1)
        proxy.close()
        return proxy

    proxy = asyncio.run(_run())
    assert notices[0] == {"released_bytes": 30, "chunk_size": 30}
    assert max(notice["released_bytes"] for notice in notices) <= 60
    # ticks keep firing once the source is fully released and only clamp
    assert proxy.ticks > 3
    assert proxy.released_bytes == 60


def test_wait_ready_times_out_when_nothing_arrives() -> None:
    source = FeedStream()
    source.open(OpenMode.READ_ONLY)
    proxy = DelayingProxyStream(source, release_interval_ms=1)

    async def _run() -> bool:
        proxy.open()
        try:
            return await proxy.wait_ready(timeout=0.05)
        finally:
            proxy.close()

    assert asyncio.run(_run()) is False


def test_timer_armed_outside_loop_starts_when_subscribed() -> None:
    proxy = DelayingProxyStream(SAMPLE, chunk_size=45, release_interval_ms=1)
    proxy.open()
    assert proxy.timer_active is True

    async def _run() -> bytes:
        collector = StreamCollector(proxy)
        try:
            return await collector.collect(timeout=5.0)
        finally:
            proxy.close()

    assert asyncio.run(_run()) == SAMPLE


def test_source_failure_is_raised_to_collector() -> None:
    source = FeedStream()
    source.open(OpenMode.READ_ONLY)
    proxy = DelayingProxyStream(source, chunk_size=4, release_interval_ms=1)

    async def _run() -> None:
        loop = asyncio.get_running_loop()
        collector = StreamCollector(proxy)
        proxy.open()
        source.feed(b"abcdefgh")
        loop.call_later(0.005, source.fail, "connection reset by peer")
        try:
            await collector.collect(timeout=5.0)
        finally:
            proxy.close()

    with pytest.raises(StreamError):
        asyncio.run(_run())
    assert proxy.error_string == "connection reset by peer"
