# clvslice/utils/seed.py
from __future__ import annotations

import os
import random as _random
from typing import Optional

import numpy as np
from numpy.random import Generator, default_rng


def seed_everything(seed: int = 42) -> None:
    """Set python/numpy global random seeds in a unified way."""
    os.environ["PYTHONHASHSEED"] = str(seed)
    _random.seed(seed)
    np.random.seed(seed)


def make_rng(seed: Optional[int] = None) -> Generator:
    """Create the numpy Generator that is passed explicitly into every draw."""
    return default_rng(seed)


def spawn_rngs(seed: Optional[int], n: int) -> list[Generator]:
    """Independent child generators, e.g. one per customer record."""
    if n < 0:
        raise ValueError("n must be non-negative")
    ss = np.random.SeedSequence(seed)
    return [default_rng(child) for child in ss.spawn(n)]
