from __future__ import annotations

import math

import numpy as np
import numpy.testing as npt
import pytest

from clvslice.data import CustomerData, simulate_pareto_nbd
from clvslice.inference.quadrature import pcnbd_palive
from clvslice.models.pareto_nbd import (
    ParetoNBD_Gibbs,
    ParetoNBDCustomer,
    ParetoNBDHyper,
    draw_pnbd_individual,
    log_post_lambda,
    log_post_mu,
    pnbd_palive,
)

HYPER = ParetoNBDHyper(r=0.8, alpha=6.0, s=0.6, beta=10.0)


def _direct(lam, mu, c: ParetoNBDCustomer, what):
    h = c.hyper
    if what == "lambda":
        prior = (h.r - 1) * math.log(lam) - lam * h.alpha
    else:
        prior = (h.s - 1) * math.log(mu) - mu * h.beta
    return (prior + c.x * math.log(lam) - math.log(lam + mu)
            + math.log(mu * math.exp(-c.tx * (lam + mu)) + lam * math.exp(-c.Tcal * (lam + mu))))


def test_log_posteriors_match_direct_formula():
    c = ParetoNBDCustomer(x=3, tx=10.0, Tcal=30.0, lambda_=0.2, mu=0.05, hyper=HYPER)
    npt.assert_allclose(log_post_lambda(np.array([0.35]), c), _direct(0.35, 0.05, c, "lambda"), rtol=1e-10)
    npt.assert_allclose(log_post_mu(np.array([0.02]), c), _direct(0.2, 0.02, c, "mu"), rtol=1e-10)
    assert log_post_lambda(np.array([0.0]), c) == -math.inf
    assert log_post_mu(np.array([-1.0]), c) == -math.inf


def test_log_posterior_stable_for_long_horizons():
    c = ParetoNBDCustomer(x=40, tx=900.0, Tcal=1000.0, lambda_=2.0, mu=0.5, hyper=HYPER)
    assert np.isfinite(log_post_lambda(np.array([2.0]), c))
    assert np.isfinite(log_post_mu(np.array([0.5]), c))


def test_draw_individual_returns_positive_draw_per_customer():
    data = CustomerData(x=[0, 2, 5, 1], tx=[0.0, 12.0, 30.0, 3.0], Tcal=[40.0, 40.0, 35.0, 38.0])
    rng = np.random.default_rng(0)
    lam = draw_pnbd_individual("lambda", data, 0.1, 0.05, HYPER, rng=rng)
    mu = draw_pnbd_individual("mu", data, lam, 0.05, HYPER, rng=rng)
    assert lam.shape == mu.shape == (4,)
    npt.assert_array_less(0.0, lam)
    npt.assert_array_less(0.0, mu)


def test_unknown_selector_fails_fast():
    data = CustomerData(x=[1], tx=[2.0], Tcal=[5.0])
    with pytest.raises(ValueError, match="Unknown Pareto/NBD parameter"):
        draw_pnbd_individual("tau", data, 0.1, 0.1, HYPER)


def test_frequent_buyer_gets_larger_lambda():
    data = CustomerData(x=np.r_[np.zeros(200), np.full(200, 20.0)],
                        tx=np.r_[np.zeros(200), np.full(200, 38.0)],
                        Tcal=40.0)
    rng = np.random.default_rng(3)
    lam = draw_pnbd_individual("lambda", data, 0.1, 0.05, HYPER, rng=rng)
    assert lam[200:].mean() > 3 * lam[:200].mean()


def test_closed_form_palive_agrees_with_quadrature_for_k_one():
    tx, Tcal, lam, mu = 7.0, 12.0, 1.4, 0.015
    closed = pnbd_palive(tx, Tcal, lam, mu)
    quad = pcnbd_palive(0, tx, Tcal, 1.0, lam, mu)[0]
    la_mu = lam + mu
    ref = math.exp(-la_mu * Tcal) / (math.exp(-la_mu * Tcal)
                                     + (mu / la_mu) * (math.exp(-la_mu * tx) - math.exp(-la_mu * Tcal)))
    assert round(float(closed), 4) == round(ref, 4)
    assert round(float(quad), 4) == round(ref, 4)
    npt.assert_allclose(pnbd_palive(5.0, 5.0, 0.3, 0.1), 1.0)


def test_gibbs_chain_runs_and_stores_draws():
    cohort = simulate_pareto_nbd(n=40, T_cal=52.0, params={"r": 0.9, "alpha": 10.0, "s": 0.8, "beta": 12.0}, seed=1)
    model = ParetoNBD_Gibbs(iters=30, burnin=10, thin=5, seed=7)
    fitted = model.fit(cohort.data)

    expected = (model.iters - model.burnin) // model.thin
    assert fitted.level_2_samples_.shape == (expected, 4)
    assert fitted.level_1_samples_.shape == (expected, 2, 40)
    npt.assert_array_less(0.0, fitted.level_2_samples_)
    npt.assert_array_less(0.0, fitted.level_1_samples_)
    assert fitted.palive_.shape == (40,)
    assert np.all((fitted.palive_ >= 0) & (fitted.palive_ <= 1))

    summaries = fitted.get_posterior_summaries()
    assert set(summaries["level_2_mean"]) == {"r", "alpha", "s", "beta"}
    assert summaries["lambda_mean"].shape == (40,)


def test_gibbs_chain_requires_fit_before_summaries():
    with pytest.raises(RuntimeError):
        ParetoNBD_Gibbs(iters=2).get_posterior_summaries()


def test_gibbs_chain_recovers_rates_and_ranks_active_customers():
    cohort = simulate_pareto_nbd(n=200, T_cal=52.0, params={"r": 0.9, "alpha": 10.0, "s": 0.8, "beta": 12.0}, seed=17)
    model = ParetoNBD_Gibbs(iters=40, burnin=15, thin=1, seed=2).fit(cohort.data)
    summaries = model.get_posterior_summaries()

    true_lam = cohort.level_1["lambda"]
    assert np.corrcoef(summaries["lambda_mean"], true_lam)[0, 1] > 0.5

    truly_alive = cohort.level_1["alive"] == 1.0
    assert truly_alive.any() and (~truly_alive).any()
    assert summaries["palive"][truly_alive].mean() > summaries["palive"][~truly_alive].mean()

    # hyperparameters are redrawn every sweep
    assert np.all(np.ptp(model.level_2_samples_, axis=0) > 0)
