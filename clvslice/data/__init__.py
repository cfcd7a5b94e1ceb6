"""Data subpackage: customer summaries and synthetic cohort generators."""

from .summary import CustomerData
from .generators import (
    COHORT_GENERATORS,
    GeneratorError,
    SimulatedCohort,
    simulate_cohort,
    simulate_pareto_nbd,
    simulate_pcnbd,
)
