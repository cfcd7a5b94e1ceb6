# clvslice/models/pareto_cnbd.py
"""Pareto/CNBD: Erlang-k style purchasing with an exponential lifetime.

Inter-transaction times are Gamma(k, rate=k*lambda), the dropout time is
tau ~ Exp(mu), and heterogeneity is k ~ Gamma(t, gamma), lambda ~ Gamma(r, alpha),
mu ~ Gamma(s, beta). k, lambda and tau (for churned customers) are slice sampled;
mu has a conjugate gamma update.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Sequence

import numpy as np
from numpy.random import Generator, default_rng
from scipy.special import gammaincc, xlogy

from clvslice.data.summary import CustomerData
from clvslice.inference.quadrature import pcnbd_palive
from clvslice.inference.slice import slice_sample
from clvslice.models.gamma import draw_gamma_parameters
from clvslice.utils.config_parser import DrawSettings
from clvslice.utils.logging_utils import Timer, progress
from clvslice.utils.typing import ArrayLike

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ParetoCNBDHyper:
    t: float
    gamma: float
    r: float
    alpha: float
    s: float
    beta: float

    def __post_init__(self):
        if not all(v > 0 for v in (self.t, self.gamma, self.r, self.alpha, self.s, self.beta)):
            raise ValueError("Pareto/CNBD heterogeneity parameters must all be > 0")


@dataclass(frozen=True)
class ParetoCNBDCustomer:
    """Fixed data for one customer's k / lambda / tau update."""

    x: float
    tx: float
    Tcal: float
    litt: float
    k: float
    lambda_: float
    mu: float
    tau: float
    hyper: ParetoCNBDHyper


_TINY = np.finfo(float).tiny
_CF_EPS = 1e-15
_CF_MAX_TERMS = 500


def log_gammaincc(a: float, z: float) -> float:
    """log Q(a, z), the regularized upper incomplete gamma function.

    Uses scipy's ``gammaincc`` while it is representable; in the far tail, where
    Q underflows, evaluates the Legendre continued fraction (modified Lentz) so
    log Q stays finite:

        log Q = a log z - z - lgamma(a) + log CF(a, z)
    """
    if z <= 0:
        return 0.0
    q = float(gammaincc(a, z))
    if q >= _TINY:
        return math.log(q)
    b = z + 1.0 - a
    c = 1.0 / _TINY
    d = 1.0 / b if b != 0 else 1.0 / _TINY
    h = d
    for i in range(1, _CF_MAX_TERMS + 1):
        an = -i * (i - a)
        b += 2.0
        d = an * d + b
        if abs(d) < _TINY:
            d = _TINY
        c = b + an / c
        if abs(c) < _TINY:
            c = _TINY
        d = 1.0 / d
        delta = d * c
        h *= delta
        if abs(delta - 1.0) < _CF_EPS:
            break
    return a * math.log(z) - z - math.lgamma(a) + math.log(h)


def _log_sf(d: float, k: float, lam: float) -> float:
    # log(1 - F(d)) for Gamma(k, rate=k*lam)
    return log_gammaincc(k, k * lam * max(d, 0.0))


def _log_pdf(d: float, k: float, lam: float) -> float:
    rate = k * lam
    return k * math.log(rate) + float(xlogy(k - 1.0, d)) - rate * d - math.lgamma(k)


def log_post_k(position: np.ndarray, c: ParetoCNBDCustomer) -> float:
    k = float(position[0])
    if k <= 0:
        return -math.inf
    h = c.hyper
    return ((h.t - 1.0) * math.log(k) - k * h.gamma
            + k * c.x * math.log(k * c.lambda_) - c.x * math.lgamma(k)
            - k * c.lambda_ * c.tx + (k - 1.0) * c.litt
            + _log_sf(min(c.Tcal, c.tau) - c.tx, k, c.lambda_))


def log_post_lambda(position: np.ndarray, c: ParetoCNBDCustomer) -> float:
    lam = float(position[0])
    if lam <= 0:
        return -math.inf
    h = c.hyper
    return ((h.r - 1.0) * math.log(lam) - lam * h.alpha
            + c.k * c.x * math.log(lam) - c.k * lam * c.tx
            + _log_sf(min(c.Tcal, c.tau) - c.tx, c.k, lam))


def log_post_tau(position: np.ndarray, c: ParetoCNBDCustomer) -> float:
    """Dropout time of a churned customer: -mu tau + log(mu S(tau) + f(tau))."""
    tau = float(position[0])
    if tau < 0:
        return -math.inf
    return -c.mu * tau + float(np.logaddexp(math.log(c.mu) + _log_sf(tau, c.k, c.lambda_),
                                            _log_pdf(tau, c.k, c.lambda_)))


def tau_is_flat(tx: float, k: float, lambda_: float, threshold: float) -> bool:
    """True when log S(tx) underflows the threshold and the tau posterior cannot be resolved."""
    return _log_sf(tx, k, lambda_) < threshold


def draw_pcnbd_individual(
    what: str,
    data: CustomerData,
    k: ArrayLike,
    lambda_: ArrayLike,
    mu: ArrayLike,
    tau: ArrayLike,
    hyper: ParetoCNBDHyper,
    *,
    rng: Optional[Generator] = None,
    settings: Optional[DrawSettings] = None,
) -> np.ndarray:
    """Draw a new k, lambda or tau for every customer given the current level-1 state."""
    if what not in ("k", "lambda", "tau"):
        raise ValueError(f"Unknown Pareto/CNBD parameter '{what}'. Use one of ['k', 'lambda', 'tau'].")
    settings = settings or DrawSettings()
    rng = rng or default_rng()

    n = len(data)
    ks, lams, mus, taus = (np.broadcast_to(np.asarray(a, dtype=float), (n,)) for a in (k, lambda_, mu, tau))
    out = np.empty(n, dtype=float)
    for i in range(n):
        c = ParetoCNBDCustomer(
            x=float(data.x[i]), tx=float(data.tx[i]), Tcal=float(data.Tcal[i]), litt=float(data.litt[i]),
            k=float(ks[i]), lambda_=float(lams[i]), mu=float(mus[i]), tau=float(taus[i]), hyper=hyper,
        )
        if what == "k":
            out[i] = slice_sample(log_post_k, c, c.k, settings.pcnbd_k_steps,
                                  3.0 * math.sqrt(hyper.t) / hyper.gamma, 0.0, math.inf,
                                  rng=rng, max_iter=settings.max_iter)[0]
        elif what == "lambda":
            out[i] = slice_sample(log_post_lambda, c, c.lambda_, settings.pcnbd_lambda_steps,
                                  3.0 * math.sqrt(hyper.r) / hyper.alpha, 0.0, math.inf,
                                  rng=rng, max_iter=settings.max_iter)[0]
        else:
            out[i] = _draw_tau(c, rng, settings)
    return out


def draw_pcnbd_mu(tau: ArrayLike, hyper: ParetoCNBDHyper, *, rng: Optional[Generator] = None) -> np.ndarray:
    """Conjugate dropout-rate update: mu | tau ~ Gamma(s + 1, rate = beta + tau)."""
    tau = np.asarray(tau, dtype=float)
    if np.any(tau < 0):
        raise ValueError("tau must be non-negative")
    rng = rng or default_rng()
    return rng.gamma(hyper.s + 1.0, 1.0 / (hyper.beta + tau))


def _draw_tau(c: ParetoCNBDCustomer, rng: Generator, settings: DrawSettings) -> float:
    if c.Tcal <= c.tx:
        # last purchase at the end of the window: the support is a single point
        return c.tx
    if tau_is_flat(c.tx, c.k, c.lambda_, settings.tau_flat_threshold):
        logger.debug("tau posterior too flat (tx=%.4g, k=%.4g, lambda=%.4g); drawing uniformly",
                     c.tx, c.k, c.lambda_)
        return float(rng.uniform(c.tx, c.Tcal))
    tau_init = c.tau if c.tx <= c.tau <= c.Tcal else c.tx + (c.Tcal - c.tx) / 2.0
    return float(slice_sample(log_post_tau, c, tau_init, settings.pcnbd_tau_steps,
                              (c.Tcal - c.tx) / 2.0, c.tx, c.Tcal,
                              rng=rng, max_iter=settings.max_iter)[0])


# ------------------------------
# Hierarchical Gibbs chain
# ------------------------------
@dataclass
class ParetoCNBD_Gibbs:
    # Hyperprior Gamma(a, b) for each of (t, gamma), (r, alpha), (s, beta)
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
    level_2_names_: tuple = field(default=("t", "gamma", "r", "alpha", "s", "beta"), init=False)
    level_1_names_: tuple = field(default=("k", "lambda", "mu", "tau"), init=False)
    level_2_samples_: Optional[np.ndarray] = field(default=None, init=False)  # [S, 6]
    level_1_samples_: Optional[np.ndarray] = field(default=None, init=False)  # [S, 4, N]
    palive_: Optional[np.ndarray] = field(default=None, init=False)           # [N]

    def __post_init__(self):
        self.rng = default_rng(self.seed)
        if self.burnin is None:
            self.burnin = self.iters // 2
        if self.iters <= 0 or self.thin <= 0 or self.burnin < 0:
            raise ValueError("iters and thin must be > 0 and burnin >= 0")

    def fit(self, data: CustomerData, init: Optional[Dict[str, float]] = None) -> "ParetoCNBD_Gibbs":
        """Run the chain on calibration data; stores thinned post-burnin draws."""
        n = len(data)
        lam0 = max(float(data.x.mean()) / float(data.Tcal.mean()), 1e-3)
        mu0 = 1.0 / (3.0 * float(data.Tcal.mean()))
        level_2 = {"t": 1.0, "gamma": 1.0, "r": 1.0, "alpha": 1.0 / lam0, "s": 1.0, "beta": 1.0 / mu0}
        if init:
            level_2.update({name: float(v) for name, v in init.items() if name in level_2})
        k = np.full(n, level_2["t"] / level_2["gamma"])
        lam = np.full(n, level_2["r"] / level_2["alpha"])
        mu = np.full(n, level_2["s"] / level_2["beta"])
        tau = data.tx + 0.5 / mu

        kept = max(0, (self.iters - self.burnin + self.thin - 1) // self.thin)
        l2_draws = np.zeros((kept, 6))
        l1_draws = np.zeros((kept, 4, n))
        alive_sum = np.zeros(n)
        keep_i = 0
        s = self.settings

        with Timer("Pareto/CNBD MCMC", logger):
            for it in progress(range(self.iters), total=self.iters, desc="Pareto/CNBD", disable=not self.show_progress):
                hyper = ParetoCNBDHyper(**level_2)
                k = draw_pcnbd_individual("k", data, k, lam, mu, tau, hyper, rng=self.rng, settings=s)
                lam = draw_pcnbd_individual("lambda", data, k, lam, mu, tau, hyper, rng=self.rng, settings=s)
                mu = draw_pcnbd_mu(tau, hyper, rng=self.rng)

                palive = pcnbd_palive(data.x, data.tx, data.Tcal, k, lam, mu,
                                      epsabs=s.palive_epsabs, epsrel=s.palive_epsrel, limit=s.palive_limit)
                alive = self.rng.uniform(size=n) < palive
                tau = data.Tcal + self.rng.exponential(1.0 / mu)
                churned = np.flatnonzero(~alive)
                if churned.size:
                    tau[churned] = draw_pcnbd_individual(
                        "tau", data.subset(churned), k[churned], lam[churned], mu[churned], tau[churned],
                        hyper, rng=self.rng, settings=s,
                    )

                level_2["t"], level_2["gamma"] = self._draw_hyper(k, (level_2["t"], level_2["gamma"]))
                level_2["r"], level_2["alpha"] = self._draw_hyper(lam, (level_2["r"], level_2["alpha"]))
                level_2["s"], level_2["beta"] = self._draw_hyper(mu, (level_2["s"], level_2["beta"]))

                if it >= self.burnin and ((it - self.burnin) % self.thin == 0):
                    l2_draws[keep_i] = [level_2[name] for name in self.level_2_names_]
                    l1_draws[keep_i] = np.vstack([k, lam, mu, tau])
                    alive_sum += alive
                    keep_i += 1

        self.level_2_samples_ = l2_draws
        self.level_1_samples_ = l1_draws
        self.palive_ = alive_sum / kept if kept > 0 else None
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
        out: Dict[str, Any] = {
            "level_2_mean": dict(zip(self.level_2_names_, self.level_2_samples_.mean(axis=0))),
            "level_2_ci95": dict(zip(self.level_2_names_, np.quantile(self.level_2_samples_, [0.025, 0.975], axis=0).T)),
            "palive": self.palive_,
        }
        for j, name in enumerate(self.level_1_names_):
            out[f"{name}_mean"] = self.level_1_samples_[:, j].mean(axis=0)
        return out
