"""Chunk size computation for the release tick."""

from __future__ import annotations

from dripproxy.tarpit.jitter import DEFAULT_JITTER_SOURCE, JitterSource


def validate_chunking(chunk_size: int, jitter_range: int) -> None:
    if chunk_size <= 0:
        raise ValueError("chunk_size must be greater than zero")
    if jitter_range < 0:
        raise ValueError("jitter_range must be greater than or equal to zero")
    if jitter_range >= chunk_size:
        raise ValueError("jitter_range must be less than chunk_size")


def chunk_bounds(chunk_size: int, jitter_range: int) -> tuple[int, int]:
    validate_chunking(chunk_size, jitter_range)
    return max(1, chunk_size - jitter_range), chunk_size + jitter_range


def compute_chunk_size(
    chunk_size: int,
    jitter_range: int,
    jitter_source: JitterSource | None = None,
) -> int:
    """Return the release size for one tick.

    With a jitter range ``d`` the size is ``chunk_size + u`` where ``u`` lies
    in ``[-d, d]``, derived from the next integer of ``jitter_source`` (the
    process-wide generator when omitted). Never less than 1.
    """
    validate_chunking(chunk_size, jitter_range)
    if jitter_range == 0:
        return chunk_size
    source = jitter_source if jitter_source is not None else DEFAULT_JITTER_SOURCE
    delta = source.next_int() % (2 * jitter_range + 1) - jitter_range
    return max(1, chunk_size + delta)
