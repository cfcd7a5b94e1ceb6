# clvslice/utils/typing.py
from __future__ import annotations

from typing import Protocol, Sequence, TypeVar, Union

import numpy as np

NDArray = np.ndarray
ArrayLike = Union[NDArray, Sequence[float], float]

P_contra = TypeVar("P_contra", contravariant=True)


class LogDensity(Protocol[P_contra]):
    """Unnormalized log-density evaluated at a position for a fixed params record.

    Implementations must be pure: the same (position, params) always yields the
    same value, and the position buffer must not be retained or mutated.
    """

    def __call__(self, x: NDArray, params: P_contra) -> float:  # pragma: no cover - protocol
        ...
