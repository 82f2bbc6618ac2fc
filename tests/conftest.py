from __future__ import annotations

import random

import pytest


# Chunk sizes drawn from the process-wide generator must be repeatable
# between runs, so every test starts from the same seed.
@pytest.fixture(autouse=True)
def _seed_global_random() -> None:
    random.seed(0)
