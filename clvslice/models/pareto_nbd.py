# clvslice/models/pareto_nbd.py
"""Pareto/NBD individual-level posteriors (Ma & Liu 2007) and a hierarchical Gibbs chain.

Purchases follow Poisson(lambda) until an unobserved dropout time tau ~ Exp(mu);
tau is integrated out analytically, so each customer's lambda and mu are slice
sampled directly from their conditionals. Heterogeneity is
lambda ~ Gamma(r, alpha) and mu ~ Gamma(s, beta).
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Sequence

import numpy as np
from numpy.random import Generator, default_rng

from clvslice.data.summary import CustomerData
from clvslice.inference.slice import slice_sample
from clvslice.models.gamma import draw_gamma_parameters
from clvslice.utils.config_parser import DrawSettings
from clvslice.utils.logging_utils import Timer, progress
from clvslice.utils.typing import ArrayLike

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ParetoNBDHyper:
    r: float
    alpha: float
    s: float
    beta: float

    def __post_init__(self):
        if not all(v > 0 for v in (self.r, self.alpha, self.s, self.beta)):
            raise ValueError("Pareto/NBD heterogeneity parameters must all be > 0")


@dataclass(frozen=True)
class ParetoNBDCustomer:
    """Fixed data for one customer's lambda / mu update."""

    x: float
    tx: float
    Tcal: float
    lambda_: float
    mu: float
    hyper: ParetoNBDHyper


def _log_likelihood(lam: float, mu: float, x: float, tx: float, Tcal: float) -> float:
    # lambda^x / (lambda+mu) * (mu e^{-(lambda+mu) tx} + lambda e^{-(lambda+mu) Tcal})
    lm = lam + mu
    return (x * math.log(lam) - math.log(lm)
            + np.logaddexp(math.log(mu) - tx * lm, math.log(lam) - Tcal * lm))


def log_post_lambda(position: np.ndarray, c: ParetoNBDCustomer) -> float:
    lam = float(position[0])
    if lam <= 0:
        return -math.inf
    h = c.hyper
    return ((h.r - 1.0) * math.log(lam) - lam * h.alpha
            + float(_log_likelihood(lam, c.mu, c.x, c.tx, c.Tcal)))


def log_post_mu(position: np.ndarray, c: ParetoNBDCustomer) -> float:
    mu = float(position[0])
    if mu <= 0:
        return -math.inf
    h = c.hyper
    return ((h.s - 1.0) * math.log(mu) - mu * h.beta
            + float(_log_likelihood(c.lambda_, mu, c.x, c.tx, c.Tcal)))


def pnbd_palive(tx: ArrayLike, Tcal: ArrayLike, lambda_: ArrayLike, mu: ArrayLike) -> np.ndarray:
    """Closed-form P(alive at Tcal) given individual lambda and mu."""
    tx, Tcal, lambda_, mu = np.broadcast_arrays(
        *(np.asarray(a, dtype=float) for a in (tx, Tcal, lambda_, mu))
    )
    lm = lambda_ + mu
    with np.errstate(over="ignore"):
        return 1.0 / (1.0 + (mu / lm) * np.expm1(lm * (Tcal - tx)))


_TARGETS = {
    "lambda": (log_post_lambda, "pnbd_lambda_steps"),
    "mu": (log_post_mu, "pnbd_mu_steps"),
}


def draw_pnbd_individual(
    what: str,
    data: CustomerData,
    lambda_: ArrayLike,
    mu: ArrayLike,
    hyper: ParetoNBDHyper,
    *,
    rng: Optional[Generator] = None,
    settings: Optional[DrawSettings] = None,
) -> np.ndarray:
    """Draw a new lambda or mu for every customer, holding the other at its current value."""
    if what not in _TARGETS:
        raise ValueError(f"Unknown Pareto/NBD parameter '{what}'. Use one of {sorted(_TARGETS)}.")
    settings = settings or DrawSettings()
    rng = rng or default_rng()
    log_density, steps_attr = _TARGETS[what]
    steps = getattr(settings, steps_attr)

    n = len(data)
    lam = np.broadcast_to(np.asarray(lambda_, dtype=float), (n,))
    mus = np.broadcast_to(np.asarray(mu, dtype=float), (n,))
    if what == "lambda":
        width, current = 3.0 * math.sqrt(hyper.r) / hyper.alpha, lam
    else:
        width, current = 3.0 * math.sqrt(hyper.s) / hyper.beta, mus

    out = np.empty(n, dtype=float)
    for i in range(n):
        record = ParetoNBDCustomer(
            x=float(data.x[i]), tx=float(data.tx[i]), Tcal=float(data.Tcal[i]),
            lambda_=float(lam[i]), mu=float(mus[i]), hyper=hyper,
        )
        out[i] = slice_sample(log_density, record, current[i], steps, width, 0.0, math.inf,
                              rng=rng, max_iter=settings.max_iter)[0]
    return out


# ------------------------------
# Hierarchical Gibbs chain
# ------------------------------
@dataclass
class ParetoNBD_Gibbs:
    # Hyperprior Gamma(a, b) for each of r, alpha, s, beta
    hyper_prior: Sequence[float] = (1e-3, 1e-3, 1e-3, 1e-3)

    # Sampling controls
    iters: int = 1000
    burnin: Optional[int] = None
    thin: int = 1
    seed: int = 42
    settings: DrawSettings = field(default_factory=DrawSettings)
    show_progress: bool = False

    # Runtime state (accessible after fit)
    rng: Generator = field(init=False)
    level_2_names_: tuple = field(default=("r", "alpha", "s", "beta"), init=False)
    level_2_samples_: Optional[np.ndarray] = field(default=None, init=False)  # [S, 4]
    level_1_samples_: Optional[np.ndarray] = field(default=None, init=False)  # [S, 2, N]
    palive_: Optional[np.ndarray] = field(default=None, init=False)           # [N]

    def __post_init__(self):
        self.rng = default_rng(self.seed)
        if self.burnin is None:
            self.burnin = self.iters // 2
        if self.iters <= 0 or self.thin <= 0 or self.burnin < 0:
            raise ValueError("iters and thin must be > 0 and burnin >= 0")

    def fit(self, data: CustomerData, init: Optional[Dict[str, float]] = None) -> "ParetoNBD_Gibbs":
        """Run the chain on calibration data; stores thinned post-burnin draws."""
        n = len(data)
        lam0 = max(float(data.x.mean()) / float(data.Tcal.mean()), 1e-3)
        mu0 = 1.0 / (3.0 * float(data.Tcal.mean()))
        level_2 = {"r": 1.0, "alpha": 1.0 / lam0, "s": 1.0, "beta": 1.0 / mu0}
        if init:
            level_2.update({name: float(v) for name, v in init.items() if name in level_2})
        lam = np.full(n, level_2["r"] / level_2["alpha"])
        mu = np.full(n, level_2["s"] / level_2["beta"])

        kept = max(0, (self.iters - self.burnin + self.thin - 1) // self.thin)
        l2_draws = np.zeros((kept, 4))
        l1_draws = np.zeros((kept, 2, n))
        palive_sum = np.zeros(n)
        keep_i = 0

        with Timer("Pareto/NBD MCMC", logger):
            for it in progress(range(self.iters), total=self.iters, desc="Pareto/NBD", disable=not self.show_progress):
                hyper = ParetoNBDHyper(**level_2)
                lam = draw_pnbd_individual("lambda", data, lam, mu, hyper, rng=self.rng, settings=self.settings)
                mu = draw_pnbd_individual("mu", data, lam, mu, hyper, rng=self.rng, settings=self.settings)

                level_2["r"], level_2["alpha"] = self._draw_hyper(lam, (level_2["r"], level_2["alpha"]))
                level_2["s"], level_2["beta"] = self._draw_hyper(mu, (level_2["s"], level_2["beta"]))

                if it >= self.burnin and ((it - self.burnin) % self.thin == 0):
                    l2_draws[keep_i] = [level_2[k] for k in self.level_2_names_]
                    l1_draws[keep_i, 0] = lam
                    l1_draws[keep_i, 1] = mu
                    palive_sum += pnbd_palive(data.tx, data.Tcal, lam, mu)
                    keep_i += 1

        self.level_2_samples_ = l2_draws
        self.level_1_samples_ = l1_draws
        self.palive_ = palive_sum / kept if kept > 0 else None
        if kept > 0:
            logger.info("level_2 posterior mean=%s", dict(zip(self.level_2_names_, l2_draws.mean(axis=0).round(4))))
        return self

    def _draw_hyper(self, values: np.ndarray, current) -> tuple:
        shape, rate = draw_gamma_parameters(
            values, init=current, hyper=self.hyper_prior,
            steps=self.settings.hyper_steps, width=self.settings.hyper_width,
            rng=self.rng, max_iter=self.settings.max_iter,
        )
        return float(shape), float(rate)

    def get_posterior_summaries(self) -> Dict[str, Any]:
        if self.level_2_samples_ is None or self.level_1_samples_ is None:
            raise RuntimeError("Not fitted.")
        if self.level_2_samples_.shape[0] == 0:
            raise RuntimeError("No posterior samples retained; check iters/burnin.")
        return {
            "level_2_mean": dict(zip(self.level_2_names_, self.level_2_samples_.mean(axis=0))),
            "level_2_ci95": dict(zip(self.level_2_names_, np.quantile(self.level_2_samples_, [0.025, 0.975], axis=0).T)),
            "lambda_mean": self.level_1_samples_[:, 0].mean(axis=0),
            "mu_mean": self.level_1_samples_[:, 1].mean(axis=0),
            "palive": self.palive_,
        }
