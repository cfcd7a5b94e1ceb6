"""Model-specific log-densities, batch drivers and hierarchical chains."""
from __future__ import annotations

from .gamma import (
    GammaHyperPosterior,
    GammaParams,
    draw_gamma,
    draw_gamma_parameters,
    log_gamma_density,
    log_gamma_hyper_posterior,
)
from .mvnorm import BivariateNormalParams, draw_bivariate_normal, log_bivariate_normal_density
from .pareto_nbd import ParetoNBD_Gibbs, ParetoNBDHyper, draw_pnbd_individual, pnbd_palive
from .pareto_cnbd import ParetoCNBD_Gibbs, ParetoCNBDHyper, draw_pcnbd_individual, draw_pcnbd_mu

__all__ = [
    "GammaParams",
    "GammaHyperPosterior",
    "log_gamma_density",
    "log_gamma_hyper_posterior",
    "draw_gamma",
    "draw_gamma_parameters",
    "BivariateNormalParams",
    "log_bivariate_normal_density",
    "draw_bivariate_normal",
    "ParetoNBDHyper",
    "ParetoNBD_Gibbs",
    "draw_pnbd_individual",
    "pnbd_palive",
    "ParetoCNBDHyper",
    "ParetoCNBD_Gibbs",
    "draw_pcnbd_individual",
    "draw_pcnbd_mu",
]
