from __future__ import annotations

import math
from typing import Iterable

import numpy as np
import pandas as pd
from scipy.special import expit
from scipy.stats import gamma as gamma_dist

from fundcast.errors import InvalidQuery
from fundcast.modeling.types import FittedModel, GammaParams, Outcome, Platform

# -----------------------------
# Input checks
# -----------------------------


def _as_float(x, name: str) -> float:
    try:
        v = float(x)
    except (TypeError, ValueError) as e:
        raise InvalidQuery(f"{name} must be a real number, got {x!r}") from e
    if not math.isfinite(v):
        raise InvalidQuery(f"{name} must be finite, got {x!r}")
    return v


def _goal(goal) -> float:
    g = _as_float(goal, "goal")
    if g <= 0:
        raise InvalidQuery(f"goal must be > 0, got {goal!r}")
    return g


def _target(target) -> float:
    t = _as_float(target, "target")
    if t < 0:
        raise InvalidQuery(f"target must be >= 0, got {target!r}")
    return t


def _platform(platform) -> Platform:
    try:
        return Platform.parse(platform)
    except ValueError as e:
        raise InvalidQuery(str(e)) from e


def _outcome(outcome) -> Outcome:
    try:
        return Outcome.parse(outcome)
    except ValueError as e:
        raise InvalidQuery(str(e)) from e


def _prob(p, name: str = "p") -> float:
    v = _as_float(p, name)
    if not (0.0 <= v <= 1.0):
        raise InvalidQuery(f"{name} must be in [0, 1], got {p!r}")
    return v


# -----------------------------
# Gamma branch helpers
# -----------------------------


def _scale(params: GammaParams, goal: float) -> float:
    """1 / rate at this goal. The linear rate can leave (0, inf) far outside
    the goals the model was fit on; such queries are rejected."""
    rate = params.rate(goal)
    if not (rate > 0 and math.isfinite(rate)):
        raise InvalidQuery(f"Gamma rate {rate:.6g} at goal={goal:g} is not positive; goal is outside the model's range")
    return 1.0 / rate


def _upper_tail(x: float, params: GammaParams, goal: float) -> float:
    """P(X >= x) for X ~ Gamma(alpha, beta0 + beta1 * goal)."""
    return float(gamma_dist.sf(x, a=params.alpha, scale=_scale(params, goal)))


def _clamp01(p: float) -> float:
    return min(1.0, max(0.0, float(p)))


# -----------------------------
# Queries
# -----------------------------


def p_met(goal, platform, model: FittedModel) -> float:
    """P(campaign meets its goal) from the logistic block."""
    g = _goal(goal)
    params = model.params(_platform(platform))
    return float(expit(params.c0 + params.c1 * math.log10(g)))


def survival(target, goal, platform, model: FittedModel) -> float:
    """P(raised >= target) for a campaign with this goal on this platform.

    Two branches, weighted by P(met):
      met:   always clears a target below the goal; above it, the excess
             over goal must clear target/goal - 1
      under: only counts on keep-what-you-raise platforms, and only for
             targets below the goal

    Raising at least $0 is certain, so target == 0 returns 1 on every platform.
    """
    g = _goal(goal)
    t = _target(target)
    plat = _platform(platform)
    if t == 0.0:
        return 1.0

    params = model.params(plat)
    pm = float(expit(params.c0 + params.c1 * math.log10(g)))
    frac = t / g

    if t < g:
        cdf_met = 1.0
        cdf_under = _upper_tail(frac, params.under, g) if plat.keeps_partial_funds else 0.0
    else:
        cdf_met = _upper_tail(frac - 1.0, params.met, g)
        cdf_under = 0.0

    if plat.keeps_partial_funds:
        s = pm * cdf_met + (1.0 - pm) * cdf_under
    else:
        s = pm * cdf_met
    return _clamp01(s)


def survival_curve(targets: Iterable[float], goal, platform, model: FittedModel) -> np.ndarray:
    return np.array([survival(t, goal, platform, model) for t in targets], dtype=float)


def compare_platforms(targets: Iterable[float], goal, model: FittedModel) -> pd.DataFrame:
    """Survival probabilities for the same goal on each platform, one row per target."""
    ts = [float(t) for t in targets]
    out = {"target": ts}
    for plat in Platform:
        out[plat.value] = survival_curve(ts, goal, plat, model)
    return pd.DataFrame(out)


def quantile(p, goal, platform, model: FittedModel, outcome_branch) -> float:
    """Raised amount (USD) at the p-th quantile of one outcome branch.

    This inverts a single Gamma branch conditioned on met/under, not the
    combined `survival` curve; see `survival_quantile` for that.
    """
    q = _prob(p)
    g = _goal(goal)
    branch = _outcome(outcome_branch)
    params = model.params(_platform(platform)).branch(branch)

    x = float(gamma_dist.ppf(q, a=params.alpha, scale=_scale(params, g)))
    if branch is Outcome.MET:
        return g * (1.0 + x)
    return g * x


def survival_quantile(prob, goal, platform, model: FittedModel) -> float:
    """Infimum of the targets whose survival probability is <= prob.

    `survival` is non-increasing but not continuous: it is flat on (0, goal]
    for all-or-nothing platforms and drops at the goal on keep-what-you-raise
    platforms. Each continuous piece is a single Gamma tail, so it inverts
    with the inverse survival function; flat and jump regions map to 0 or
    to the goal itself. The infimum need not be attained: on an
    all-or-nothing platform with prob >= P(met) the answer is 0 while
    survival(0) == 1.
    """
    q = _prob(prob, "prob")
    g = _goal(goal)
    plat = _platform(platform)
    if q >= 1.0:
        return 0.0
    if q <= 0.0:
        return math.inf

    params = model.params(plat)
    pm = float(expit(params.c0 + params.c1 * math.log10(g)))

    if q < pm:
        # Above the goal: pm * sf_met(t/g - 1) == q
        x = float(gamma_dist.isf(q / pm, a=params.met.alpha, scale=_scale(params.met, g)))
        return g * (1.0 + x)

    if not plat.keeps_partial_funds:
        return 0.0

    # Below the goal: pm + (1 - pm) * sf_under(t/g) == q, for q above the
    # value just left of the goal; between pm and that value the answer is the goal.
    left_of_goal = pm + (1.0 - pm) * _upper_tail(1.0, params.under, g)
    if q <= left_of_goal:
        return g
    x = float(gamma_dist.isf((q - pm) / (1.0 - pm), a=params.under.alpha, scale=_scale(params.under, g)))
    return g * x

