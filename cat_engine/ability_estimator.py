# cat_engine/ability_estimator.py

"""
Ability (θ) estimation from a response history.

Two interchangeable methods behind one interface:

- EAP: posterior mean over a fixed θ grid with a N(0, 1) prior. Stays finite
  when every answer is correct (or every answer wrong), where maximum
  likelihood diverges. Default.
- MAP: Fisher-scoring iterations on the log-posterior with the same prior.

Both report SE(θ) = 1 / sqrt(Σ Iᵢ(θ)) over the answered items, evaluated
at the new estimate.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import List, Sequence, Tuple

from .irt_engine import (
    THETA_MAX,
    THETA_MIN,
    dprob_dtheta,
    fisher_info,
    prob_correct,
)
from .schema import IRTParams

EPS = 1e-6
GRID_POINTS = 81
MAP_MAX_ITER = 30
MAP_TOL = 1e-4


class EstimationMethod(str, Enum):
    EAP = "eap"
    MAP = "map"


@dataclass(frozen=True)
class AbilityEstimate:
    theta: float
    standard_error: float


def standard_error(theta: float, params: Sequence[IRTParams]) -> float:
    total = sum(fisher_info(theta, p) for p in params)
    if total <= 0:
        return float("inf")
    return 1.0 / math.sqrt(total)


def _theta_grid(n: int = GRID_POINTS) -> List[float]:
    step = (THETA_MAX - THETA_MIN) / (n - 1)
    return [THETA_MIN + i * step for i in range(n)]


def estimate_eap(
    answered: Sequence[Tuple[IRTParams, bool]],
    prior_mean: float = 0.0,
    prior_sd: float = 1.0,
) -> float:
    """Posterior mean of θ over the grid. Log-space weights avoid underflow on long tests."""
    grid = _theta_grid()
    log_weights = []
    for theta in grid:
        lw = -0.5 * ((theta - prior_mean) / prior_sd) ** 2
        for pars, correct in answered:
            p = prob_correct(theta, pars.a, pars.b, pars.c)
            p = min(max(p, EPS), 1.0 - EPS)
            lw += math.log(p) if correct else math.log(1.0 - p)
        log_weights.append(lw)

    peak = max(log_weights)
    weights = [math.exp(lw - peak) for lw in log_weights]
    total = sum(weights)
    return sum(t * w for t, w in zip(grid, weights)) / total


def update_theta_map_once(
    theta: float,
    answered: Sequence[Tuple[IRTParams, bool]],
    prior_mean: float = 0.0,
    prior_var: float = 1.0,
) -> Tuple[float, float]:
    """
    One MAP Fisher-scoring step.
    Returns (theta_new, posterior SE)
    """
    U = 0.0  # Score
    I = 0.0  # Fisher
    prior_prec = 1.0 / prior_var

    for pars, correct in answered:
        a, b, c = pars.a, pars.b, pars.c
        p = prob_correct(theta, a, b, c)
        if not (EPS < p < 1.0 - EPS):
            continue
        dp = dprob_dtheta(theta, a, b, c)
        resp = 1.0 if correct else 0.0

        U += (resp - p) * dp / (p * (1.0 - p))
        I += (dp * dp) / (p * (1.0 - p))

    den = I + prior_prec
    theta_new = theta + (U - (theta - prior_mean) * prior_prec) / den
    theta_new = min(max(theta_new, THETA_MIN), THETA_MAX)

    se = 1.0 / math.sqrt(den)
    return theta_new, se


def estimate_map(answered: Sequence[Tuple[IRTParams, bool]], start: float = 0.0) -> float:
    theta = start
    for _ in range(MAP_MAX_ITER):
        theta_new, _ = update_theta_map_once(theta, answered)
        if abs(theta_new - theta) < MAP_TOL:
            return theta_new
        theta = theta_new
    return theta


class AbilityEstimator:
    """Turns the answered (params, correct) pairs of a session into θ and SE."""

    def __init__(self, method: EstimationMethod = EstimationMethod.EAP):
        self.method = EstimationMethod(method)

    def estimate(self, answered: Sequence[Tuple[IRTParams, bool]], start: float = 0.0) -> AbilityEstimate:
        if not answered:
            return AbilityEstimate(theta=start, standard_error=1.0)

        if self.method == EstimationMethod.MAP:
            theta = estimate_map(answered, start=start)
        else:
            theta = estimate_eap(answered)

        se = standard_error(theta, [pars for pars, _ in answered])
        return AbilityEstimate(theta=theta, standard_error=se)
