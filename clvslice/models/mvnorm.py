# clvslice/models/mvnorm.py
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Optional, Sequence

import numpy as np
from numpy.random import Generator

from clvslice.inference.slice import DEFAULT_MAX_ITER, slice_sample
from clvslice.utils.typing import ArrayLike


@dataclass(frozen=True)
class BivariateNormalParams:
    """Zero-mean bivariate normal with a 2x2 covariance matrix."""

    cov: np.ndarray
    precision: np.ndarray = field(init=False, repr=False)
    log_det: float = field(init=False, repr=False)

    def __post_init__(self):
        cov = np.asarray(self.cov, dtype=float)
        if cov.size == 4:
            cov = cov.reshape(2, 2)
        if cov.shape != (2, 2):
            raise ValueError("cov must be a 2x2 matrix (or 4 entries in row-major order)")
        det = cov[0, 0] * cov[1, 1] - cov[0, 1] * cov[1, 0]
        if not (cov[0, 0] > 0 and det > 0):
            raise ValueError("cov must be positive definite")
        precision = np.array([[cov[1, 1], -cov[0, 1]], [-cov[1, 0], cov[0, 0]]]) / det
        object.__setattr__(self, "cov", cov)
        object.__setattr__(self, "precision", precision)
        object.__setattr__(self, "log_det", math.log(det))


def log_bivariate_normal_density(x: np.ndarray, params: BivariateNormalParams) -> float:
    q = float(x @ params.precision @ x)
    return -math.log(2.0 * math.pi) - 0.5 * params.log_det - 0.5 * q


def draw_bivariate_normal(
    cov: ArrayLike,
    x0: Sequence[float] = (0.2, 0.3),
    steps: int = 20,
    width: float = 1.0,
    *,
    rng: Optional[Generator] = None,
    max_iter: Optional[int] = DEFAULT_MAX_ITER,
) -> np.ndarray:
    """One draw from N(0, cov) after `steps` sweeps starting at x0."""
    params = BivariateNormalParams(np.asarray(cov, dtype=float))
    return slice_sample(log_bivariate_normal_density, params, x0, steps, width,
                        rng=rng, max_iter=max_iter)
