"""Chunked, delayed release of stream data for exercising incremental consumers."""

from .chunking import chunk_bounds, compute_chunk_size, validate_chunking
from .jitter import (
    CallableJitterSource,
    GlobalRandomJitterSource,
    JitterExhaustedError,
    JitterSource,
    SeededJitterSource,
    SequenceJitterSource,
)
from .proxy import DelayingProxyStream
from .reader import StreamCollector, drain_blocking

__all__ = [
    "CallableJitterSource",
    "DelayingProxyStream",
    "GlobalRandomJitterSource",
    "JitterExhaustedError",
    "JitterSource",
    "SeededJitterSource",
    "SequenceJitterSource",
    "StreamCollector",
    "chunk_bounds",
    "compute_chunk_size",
    "drain_blocking",
    "validate_chunking",
]
