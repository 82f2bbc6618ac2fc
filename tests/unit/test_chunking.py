import pytest

from dripproxy.tarpit.chunking import chunk_bounds, compute_chunk_size, validate_chunking
from dripproxy.tarpit.jitter import SequenceJitterSource


def test_chunk_size_without_jitter_is_exact() -> None:
    for chunk_size in (1, 5, 8, 4096):
        assert compute_chunk_size(chunk_size, 0) == chunk_size


def test_jittered_chunk_sizes_cover_exactly_the_bounds() -> None:
    for chunk_size in range(1, 13):
        for jitter_range in range(0, chunk_size):
            low, high = chunk_bounds(chunk_size, jitter_range)
            source = SequenceJitterSource(range(0, 4 * (2 * jitter_range + 1)))
            sizes = {compute_chunk_size(chunk_size, jitter_range, source) for _ in range(len(source.values))}
            assert min(sizes) == low
            assert max(sizes) == high
            assert all(size >= 1 for size in sizes)


def test_jitter_maps_random_value_onto_symmetric_delta() -> None:
    # chunk 5, range 3: value % 7 - 3 gives deltas -3..3
    source = SequenceJitterSource([0, 3, 6, 7, 84])
    sizes = [compute_chunk_size(5, 3, source) for _ in range(5)]
    assert sizes == [2, 5, 8, 2, 2]


def test_smallest_jittered_chunk_is_one_byte() -> None:
    assert chunk_bounds(3, 2) == (1, 5)
    source = SequenceJitterSource([0])
    assert compute_chunk_size(3, 2, source) == 1


@pytest.mark.parametrize(
    ("chunk_size", "jitter_range"),
    [(0, 0), (-1, 0), (5, 5), (5, 9), (5, -1)],
)
def test_invalid_chunking_is_rejected(chunk_size: int, jitter_range: int) -> None:
    with pytest.raises(ValueError):
        validate_chunking(chunk_size, jitter_range)
    with pytest.raises(ValueError):
        compute_chunk_size(chunk_size, jitter_range)
