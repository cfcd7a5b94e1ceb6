"""Synthetic customer cohorts for the Pareto/NBD and Pareto/CNBD models."""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Callable, Dict, Mapping, Optional, Union

import numpy as np
from numpy.random import default_rng

from .summary import CustomerData

__all__ = [
    "GeneratorError",
    "SimulatedCohort",
    "simulate_pareto_nbd",
    "simulate_pcnbd",
    "simulate_cohort",
    "COHORT_GENERATORS",
]

_TINY = np.finfo(float).tiny


class GeneratorError(ValueError):
    """Raised when an invalid simulation configuration is provided."""


@dataclass
class SimulatedCohort:
    """Simulated calibration data together with the true latent parameters."""

    data: CustomerData
    level_1: Dict[str, np.ndarray]
    params: Dict[str, float] = field(default_factory=dict)


def _require(params: Mapping[str, float], names) -> Dict[str, float]:
    out = {}
    for name in names:
        if name not in params:
            raise GeneratorError(f"Missing heterogeneity parameter '{name}'.")
        value = float(params[name])
        if not value > 0:
            raise GeneratorError(f"Parameter '{name}' must be > 0, got {value}.")
        out[name] = value
    return out


def _check_size(n: int) -> None:
    if int(n) != n or n <= 0:
        raise GeneratorError("n must be a positive integer.")


def _simulate(n: int, T_cal: Union[float, np.ndarray], k: np.ndarray, lam: np.ndarray,
              mu: np.ndarray, rng) -> SimulatedCohort:
    Tcal = np.broadcast_to(np.asarray(T_cal, dtype=float), (n,)).copy()
    if np.any(Tcal <= 0):
        raise GeneratorError("T_cal must be > 0.")

    tau = rng.exponential(1.0 / mu)
    x = np.zeros(n)
    tx = np.zeros(n)
    litt = np.zeros(n)
    for i in range(n):
        horizon = min(tau[i], Tcal[i])
        t = 0.0
        while True:
            itt = rng.gamma(shape=k[i], scale=1.0 / (k[i] * lam[i]))
            if t + itt > horizon:
                break
            t += itt
            x[i] += 1
            litt[i] += math.log(max(itt, _TINY))
        tx[i] = t

    data = CustomerData(x=x, tx=tx, Tcal=Tcal, litt=litt)
    level_1 = {"k": k, "lambda": lam, "mu": mu, "tau": tau, "alive": (tau > Tcal).astype(float)}
    return SimulatedCohort(data=data, level_1=level_1)


def simulate_pcnbd(n: int, T_cal: Union[float, np.ndarray], params: Mapping[str, float],
                   seed: Optional[int] = None) -> SimulatedCohort:
    """Simulate Pareto/CNBD customers.

    k ~ Gamma(t, gamma), lambda ~ Gamma(r, alpha), mu ~ Gamma(s, beta) (rates),
    lifetimes tau ~ Exp(mu), inter-transaction times ~ Gamma(k, rate k*lambda).
    """
    p = _require(params, ("t", "gamma", "r", "alpha", "s", "beta"))
    _check_size(n)
    rng = default_rng(seed)
    k = rng.gamma(p["t"], 1.0 / p["gamma"], size=n)
    lam = rng.gamma(p["r"], 1.0 / p["alpha"], size=n)
    mu = rng.gamma(p["s"], 1.0 / p["beta"], size=n)
    cohort = _simulate(n, T_cal, k, lam, mu, rng)
    cohort.params = p
    return cohort


def simulate_pareto_nbd(n: int, T_cal: Union[float, np.ndarray], params: Mapping[str, float],
                        seed: Optional[int] = None) -> SimulatedCohort:
    """Simulate Pareto/NBD customers (Poisson purchasing, i.e. k = 1)."""
    p = _require(params, ("r", "alpha", "s", "beta"))
    _check_size(n)
    rng = default_rng(seed)
    lam = rng.gamma(p["r"], 1.0 / p["alpha"], size=n)
    mu = rng.gamma(p["s"], 1.0 / p["beta"], size=n)
    cohort = _simulate(n, T_cal, np.ones(n), lam, mu, rng)
    cohort.params = p
    return cohort


COHORT_GENERATORS: Dict[str, Callable[..., SimulatedCohort]] = {
    "pnbd": simulate_pareto_nbd,
    "pcnbd": simulate_pcnbd,
}


def simulate_cohort(model: str, n: int, T_cal: Union[float, np.ndarray],
                    params: Mapping[str, float], seed: Optional[int] = None) -> SimulatedCohort:
    key = model.strip().lower()
    if key not in COHORT_GENERATORS:
        raise GeneratorError(f"Unknown cohort model '{model}'. Use one of {sorted(COHORT_GENERATORS)}.")
    return COHORT_GENERATORS[key](n, T_cal, params, seed=seed)
