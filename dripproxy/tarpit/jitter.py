"""Pluggable pseudo-random integer providers for chunk size jitter."""

from __future__ import annotations

from pathlib import Path
import random
from typing import Callable, Iterable, Protocol, runtime_checkable


JITTER_RANDOM_MAX = 2**31 - 1


class JitterExhaustedError(RuntimeError):
    """A non-cycling sequence source ran out of values."""


@runtime_checkable
class JitterSource(Protocol):
    def next_int(self) -> int: ...


def _checked(value: int) -> int:
    value = int(value)
    if value < 0:
        raise ValueError(f"jitter source produced a negative value: {value}")
    return value


class GlobalRandomJitterSource:
    """Draws from the process-wide ``random`` generator.

    Seed it with ``random.seed()`` before a test run for reproducible chunking.
    """

    def next_int(self) -> int:
        return random.randrange(JITTER_RANDOM_MAX)


class SeededJitterSource:
    def __init__(self, seed: int | str | bytes | None = 0) -> None:
        self.seed = seed
        self._random = random.Random(seed)

    def next_int(self) -> int:
        return self._random.randrange(JITTER_RANDOM_MAX)

    def reseed(self) -> None:
        self._random.seed(self.seed)


class SequenceJitterSource:
    """Replays a fixed list of integers, e.g. one recorded from a failing run."""

    def __init__(self, values: Iterable[int], *, cycle: bool = True) -> None:
        self.values = [_checked(value) for value in values]
        if not self.values:
            raise ValueError("sequence jitter source needs at least one value")
        self.cycle = cycle
        self._index = 0

    @classmethod
    def from_file(cls, path: str | Path, *, cycle: bool = True) -> SequenceJitterSource:
        text = Path(path).read_text(encoding="utf-8")
        try:
            values = [int(token) for token in text.split()]
        except ValueError as exc:
            raise ValueError(f"jitter file contains a non-integer token: {path}") from exc
        return cls(values, cycle=cycle)

    @property
    def consumed(self) -> int:
        return self._index

    def next_int(self) -> int:
        if self._index >= len(self.values):
            if not self.cycle:
                raise JitterExhaustedError(f"jitter sequence exhausted after {len(self.values)} values")
            self._index = 0
        value = self.values[self._index]
        self._index += 1
        return value


class CallableJitterSource:
    def __init__(self, func: Callable[[], int]) -> None:
        self.func = func

    def next_int(self) -> int:
        return _checked(self.func())


DEFAULT_JITTER_SOURCE = GlobalRandomJitterSource()


def coerce_jitter_source(value: JitterSource | Callable[[], int] | None) -> JitterSource | None:
    if value is None:
        return None
    if isinstance(value, JitterSource):
        return value
    if callable(value):
        return CallableJitterSource(value)
    raise TypeError(f"unsupported jitter source: {type(value).__name__}")
