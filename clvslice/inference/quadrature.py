"""Adaptive quadrature for the Pareto/CNBD probability of being alive."""
from __future__ import annotations

import logging
import math

import numpy as np
from scipy.integrate import quad
from scipy.special import gammaincc

from clvslice.utils.typing import ArrayLike

logger = logging.getLogger(__name__)


def _survival(d: float, k: float, lam: float) -> float:
    # 1 - F(d) for an inter-transaction time ~ Gamma(shape=k, rate=k*lam)
    return float(gammaincc(k, k * lam * d))


def pcnbd_palive(
    x: ArrayLike,
    tx: ArrayLike,
    Tcal: ArrayLike,
    k: ArrayLike,
    lambda_: ArrayLike,
    mu: ArrayLike,
    *,
    epsabs: float = 1e-4,
    epsrel: float = 1e-4,
    limit: int = 100,
) -> np.ndarray:
    """P(alive at Tcal) per customer given recency and individual parameters.

        P = S(Tcal - tx) e^{-mu Tcal} /
            (S(Tcal - tx) e^{-mu Tcal} + mu * int_{tx}^{Tcal} S(y - tx) e^{-mu y} dy)

    where S is the survival function of Gamma(k, rate=k*lambda). The integral is
    evaluated by QUADPACK (dqags) through :func:`scipy.integrate.quad`.
    """
    x, tx, Tcal, k, lambda_, mu = np.broadcast_arrays(
        *(np.atleast_1d(np.asarray(a, dtype=float)) for a in (x, tx, Tcal, k, lambda_, mu))
    )
    if np.any(tx > Tcal) or np.any(tx < 0):
        raise ValueError("Require 0 <= tx <= Tcal for every customer")
    if np.any(k <= 0) or np.any(lambda_ <= 0) or np.any(mu < 0):
        raise ValueError("Require k > 0, lambda > 0 and mu >= 0")

    out = np.empty(x.shape, dtype=float)
    for i in np.ndindex(x.shape):
        t_i, T_i, k_i, l_i, m_i = float(tx[i]), float(Tcal[i]), float(k[i]), float(lambda_[i]), float(mu[i])
        # both terms carry e^{-mu tx}; it cancels, so time is measured from tx
        numer = _survival(T_i - t_i, k_i, l_i) * math.exp(-m_i * (T_i - t_i))

        def integrand(y: float) -> float:
            return _survival(y - t_i, k_i, l_i) * math.exp(-m_i * (y - t_i))

        if T_i > t_i:
            integral, abserr = quad(integrand, t_i, T_i, epsabs=epsabs, epsrel=epsrel, limit=limit)
        else:
            integral, abserr = 0.0, 0.0
        logger.debug("palive[%s]: integral=%.6g abserr=%.2g", i, integral, abserr)
        denom = numer + m_i * integral
        out[i] = numer / denom if denom > 0 else 0.0
    return out
