from __future__ import annotations

import numpy as np
import numpy.testing as npt
import pytest

from clvslice.data import (
    CustomerData,
    GeneratorError,
    simulate_cohort,
    simulate_pareto_nbd,
    simulate_pcnbd,
)

PCNBD = {"t": 4.5, "gamma": 1.5, "r": 5.0, "alpha": 10.0, "s": 0.8, "beta": 12.0}
PNBD = {"r": 0.9, "alpha": 10.0, "s": 0.8, "beta": 12.0}


def test_simulated_summaries_are_consistent():
    cohort = simulate_pcnbd(n=200, T_cal=52.0, params=PCNBD, seed=0)
    data = cohort.data
    assert len(data) == 200
    assert np.all(data.x >= 0)
    assert np.all((data.tx >= 0) & (data.tx <= data.Tcal))
    npt.assert_array_equal(data.tx[data.x == 0], 0.0)
    npt.assert_array_equal(data.litt[data.x == 0], 0.0)
    assert np.all(cohort.level_1["tau"] > data.tx)
    npt.assert_array_equal(cohort.level_1["alive"], (cohort.level_1["tau"] > data.Tcal).astype(float))
    assert cohort.params == PCNBD


def test_pareto_nbd_cohort_has_unit_k_and_is_reproducible():
    a = simulate_pareto_nbd(n=50, T_cal=39.0, params=PNBD, seed=4)
    b = simulate_cohort("pnbd", n=50, T_cal=39.0, params=PNBD, seed=4)
    npt.assert_array_equal(a.level_1["k"], 1.0)
    npt.assert_array_equal(a.data.x, b.data.x)
    npt.assert_array_equal(a.data.tx, b.data.tx)


def test_invalid_configuration_raises():
    with pytest.raises(GeneratorError):
        simulate_pcnbd(n=0, T_cal=10.0, params=PCNBD)
    with pytest.raises(GeneratorError):
        simulate_pareto_nbd(n=10, T_cal=10.0, params={"r": 1.0, "alpha": 1.0, "s": 1.0})
    with pytest.raises(GeneratorError):
        simulate_pareto_nbd(n=10, T_cal=-1.0, params=PNBD)
    with pytest.raises(GeneratorError):
        simulate_cohort("bgnbd", n=10, T_cal=10.0, params=PNBD)


def test_customer_data_validation_and_aliases():
    data = CustomerData.from_mapping({"x": [0, 3], "t.x": [0.0, 4.0], "T.cal": [10.0, 10.0]})
    npt.assert_array_equal(data.tx, [0.0, 4.0])
    npt.assert_array_equal(data.litt, [0.0, 0.0])
    sub = data.subset(np.array([1]))
    assert len(sub) == 1 and sub.x[0] == 3

    with pytest.raises(ValueError):
        CustomerData(x=[1], tx=[5.0], Tcal=[4.0])
    with pytest.raises(ValueError):
        CustomerData(x=[-1], tx=[0.0], Tcal=[4.0])
    with pytest.raises(ValueError, match="finite"):
        CustomerData(x=[1, 2], tx=[np.nan, 1.0], Tcal=[4.0, 4.0])
    with pytest.raises(ValueError, match="finite"):
        CustomerData(x=[1], tx=[1.0], Tcal=[np.nan])
    with pytest.raises(KeyError):
        CustomerData.from_mapping({"x": [1], "tx": [0.0]})
