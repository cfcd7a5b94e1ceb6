"""Multivariate slice sampling with stepping-out and shrinkage.

The sampler follows Neal (2003), "Slice sampling", Annals of Statistics 31:705-767.
Each coordinate of the current position is updated in turn:

  1. draw a log-threshold ``z = log f(x) - Exp(1)`` below the current density;
  2. place a window of size ``width`` randomly around ``x[j]`` and step it out
     until both ends fall at or below ``z`` (or hit the domain bounds);
  3. draw uniformly from the clipped window, shrinking it towards ``x[j]`` after
     every rejection, until a point above ``z`` is found.

Only the final position is returned; no chain history is kept.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Generic, Optional, Tuple, TypeVar

import numpy as np
from numpy.random import Generator, default_rng

from clvslice.utils.typing import ArrayLike, LogDensity

P = TypeVar("P")

DEFAULT_MAX_ITER = 100_000


class SliceDomainError(ValueError):
    """Raised when sampler inputs violate the slice sampling preconditions."""


class SliceIterationError(RuntimeError):
    """Raised when stepping-out or shrinkage exceeds the iteration ceiling."""


def _per_coordinate(value: ArrayLike, dim: int, name: str) -> np.ndarray:
    arr = np.asarray(value, dtype=float)
    try:
        return np.broadcast_to(arr, (dim,)).copy()
    except ValueError as exc:
        raise SliceDomainError(f"{name} must be a scalar or have length {dim}") from exc


def _eval_at(log_density: LogDensity[P], params: P, x: np.ndarray, j: int, value: float) -> float:
    """Evaluate the log-density with coordinate j temporarily set to value."""
    old = x[j]
    x[j] = value
    try:
        return float(log_density(x, params))
    finally:
        x[j] = old


def _check_ceiling(count: int, max_iter: Optional[int], phase: str, j: int) -> None:
    if max_iter is not None and count >= max_iter:
        raise SliceIterationError(
            f"{phase} exceeded iteration bound ({max_iter}) for coordinate {j}"
        )


def step_out(
    log_density: LogDensity[P],
    params: P,
    x: np.ndarray,
    j: int,
    logz: float,
    rng: Generator,
    *,
    width: float = 1.0,
    lower: float = -math.inf,
    upper: float = math.inf,
    max_iter: Optional[int] = DEFAULT_MAX_ITER,
) -> Tuple[float, float]:
    """Return the stepped-out window (L, R) around x[j]; L <= x[j] <= R always holds."""
    u = rng.uniform(0.0, width)
    L = x[j] - u
    R = x[j] + (width - u)

    n = 0
    while L > lower and _eval_at(log_density, params, x, j, L) > logz:
        L -= width
        n += 1
        _check_ceiling(n, max_iter, "stepping out (left)", j)
    n = 0
    while R < upper and _eval_at(log_density, params, x, j, R) > logz:
        R += width
        n += 1
        _check_ceiling(n, max_iter, "stepping out (right)", j)
    return float(L), float(R)


def shrink(
    log_density: LogDensity[P],
    params: P,
    x: np.ndarray,
    j: int,
    logz: float,
    r0: float,
    r1: float,
    rng: Generator,
    *,
    max_iter: Optional[int] = DEFAULT_MAX_ITER,
) -> Tuple[float, float]:
    """Draw from [r0, r1] until the log-density exceeds logz; returns (value, log-density).

    Rejected points replace the endpoint on their side of x[j], so the window
    only ever contracts and never excludes the current value.
    """
    current = x[j]
    n = 0
    while True:
        xs = rng.uniform(r0, r1)
        logys = _eval_at(log_density, params, x, j, xs)
        if logys > logz:
            return float(xs), logys
        if xs < current:
            r0 = xs
        else:
            r1 = xs
        n += 1
        _check_ceiling(n, max_iter, "shrinkage", j)


def slice_sample(
    log_density: LogDensity[P],
    params: P,
    x0: ArrayLike,
    steps: int = 10,
    width: ArrayLike = 1.0,
    lower: ArrayLike = -math.inf,
    upper: ArrayLike = math.inf,
    *,
    rng: Optional[Generator] = None,
    max_iter: Optional[int] = DEFAULT_MAX_ITER,
) -> np.ndarray:
    """Run ``steps`` full sweeps of coordinate-wise slice sampling starting from x0.

    Parameters
    ----------
    log_density : callable (x, params) -> float, unnormalized and side-effect free.
    params : opaque record forwarded verbatim to ``log_density``.
    x0 : starting position (scalar or 1-D); must lie within the bounds.
    steps : number of sweeps over all coordinates; 0 returns a copy of x0.
    width : stepping-out increment, scalar or per coordinate.
    lower, upper : domain bounds, scalar or per coordinate.
    rng : numpy Generator; a fresh ``default_rng()`` when omitted.
    max_iter : ceiling on every stepping-out and shrinkage loop (None disables).

    Returns
    -------
    np.ndarray of shape (D,) owned by the caller.
    """
    x = np.array(x0, dtype=float, ndmin=1)
    if x.ndim != 1 or x.size == 0:
        raise SliceDomainError("x0 must be a non-empty scalar or 1-D vector")
    if not float(steps).is_integer() or steps < 0:
        raise SliceDomainError(f"steps must be a non-negative integer, got {steps!r}")
    steps = int(steps)
    dim = x.size

    w = _per_coordinate(width, dim, "width")
    lo = _per_coordinate(lower, dim, "lower")
    hi = _per_coordinate(upper, dim, "upper")
    if np.any(~np.isfinite(w) | (w <= 0)):
        raise SliceDomainError("width must be finite and > 0")
    if np.any(np.isnan(lo) | np.isnan(hi)):
        raise SliceDomainError("bounds must not be NaN")
    if np.any(lo >= hi):
        raise SliceDomainError("lower bound must be strictly below upper bound")
    if np.any(~np.isfinite(x)):
        raise SliceDomainError("x0 must be finite")
    if np.any((x < lo) | (x > hi)):
        raise SliceDomainError("x0 lies outside [lower, upper]")

    if steps == 0:
        return x

    if rng is None:
        rng = default_rng()

    logy = float(log_density(x, params))
    if not math.isfinite(logy):
        raise SliceDomainError(f"log-density at x0 must be finite, got {logy}")

    for _ in range(steps):
        for j in range(dim):
            logz = logy - rng.exponential(1.0)
            L, R = step_out(
                log_density, params, x, j, logz, rng,
                width=w[j], lower=lo[j], upper=hi[j], max_iter=max_iter,
            )
            r0 = max(L, lo[j])
            r1 = min(R, hi[j])
            x[j], logy = shrink(log_density, params, x, j, logz, r0, r1, rng, max_iter=max_iter)

    return x


@dataclass
class SliceSampler(Generic[P]):
    """Binds a log-density, its params record and tuning to a reusable sampler."""

    log_density: LogDensity[P]
    params: P
    steps: int = 10
    width: ArrayLike = 1.0
    lower: ArrayLike = -math.inf
    upper: ArrayLike = math.inf
    max_iter: Optional[int] = DEFAULT_MAX_ITER
    rng: Generator = field(default_factory=default_rng)

    def step(self, state: ArrayLike, rng: Optional[Generator] = None) -> np.ndarray:
        return slice_sample(
            self.log_density,
            self.params,
            state,
            steps=self.steps,
            width=self.width,
            lower=self.lower,
            upper=self.upper,
            rng=rng or self.rng,
            max_iter=self.max_iter,
        )
