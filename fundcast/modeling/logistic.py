"""Meet-goal logistic model.

    met_goal ~ log10(goal) * is_kickstarter

Indiegogo is the baseline level, so the fit estimates Indiegogo's intercept
and slope directly and Kickstarter's as deltas. `platform_coefficients` folds
the deltas back into per-platform (c0, c1) pairs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import numpy as np
import pandas as pd
import statsmodels.api as sm
from scipy.special import expit
from statsmodels.tools.sm_exceptions import PerfectSeparationError

from fundcast.config import LogitConfig
from fundcast.errors import FitDivergence
from fundcast.modeling.types import Platform

logger = logging.getLogger(__name__)

INTERCEPT = "const"
LOG_GOAL = "log10_goal"
KICKSTARTER = "is_kickstarter"
INTERACTION = "log10_goal:is_kickstarter"

TERMS = [INTERCEPT, LOG_GOAL, KICKSTARTER, INTERACTION]


@dataclass(frozen=True)
class LogisticFit:
    coef: Dict[str, float]
    std_err: Dict[str, float]
    p_values: Dict[str, float]

    n_obs: int
    iterations: int
    log_likelihood: float
    pseudo_r2: float

    def platform_coefficients(self, platform) -> Tuple[float, float]:
        """(c0, c1) such that P(met) = sigmoid(c0 + c1 * log10(goal))."""
        platform = Platform.parse(platform)
        c0 = self.coef[INTERCEPT]
        c1 = self.coef[LOG_GOAL]
        if platform is Platform.KICKSTARTER:
            c0 = c0 + self.coef[KICKSTARTER]
            c1 = c1 + self.coef[INTERACTION]
        return (float(c0), float(c1))

    def p_met(self, goal_usd, platform: Platform):
        c0, c1 = self.platform_coefficients(platform)
        return expit(c0 + c1 * np.log10(goal_usd))

    def summary_frame(self) -> pd.DataFrame:
        def stars(p: float) -> str:
            return "***" if p < 0.001 else "**" if p < 0.01 else "*" if p < 0.05 else ""

        return pd.DataFrame(
            {
                "coef": [self.coef[t] for t in TERMS],
                "std_err": [self.std_err[t] for t in TERMS],
                "p_value": [self.p_values[t] for t in TERMS],
                "sig": [stars(self.p_values[t]) for t in TERMS],
            },
            index=pd.Index(TERMS, name="term"),
        )


def design_matrix(df: pd.DataFrame) -> pd.DataFrame:
    log_goal = np.log10(df["goal_usd"].to_numpy(dtype=float))
    is_ks = (df["platform"] == Platform.KICKSTARTER.value).to_numpy(dtype=float)
    X = pd.DataFrame(
        {
            LOG_GOAL: log_goal,
            KICKSTARTER: is_ks,
            INTERACTION: log_goal * is_ks,
        }
    )
    return sm.add_constant(X, has_constant="add")


def fit_logistic(df: pd.DataFrame, config: Optional[LogitConfig] = None) -> LogisticFit:
    """Maximum-likelihood fit of the meet-goal model.

    Raises FitDivergence when the optimizer stops without converging, when the
    design is singular or perfectly separated, or when any coefficient or
    standard error comes back non-finite.
    """
    cfg = config or LogitConfig()

    X = design_matrix(df)
    y = df["met_goal"].to_numpy(dtype=float)

    try:
        res = sm.Logit(y, X).fit(method=cfg.method, maxiter=cfg.max_iter, disp=0)
    except (PerfectSeparationError, np.linalg.LinAlgError) as e:
        raise FitDivergence(f"Logistic fit failed on {len(df):,} campaigns: {e}") from e

    converged = bool(res.mle_retvals.get("converged", False))
    iterations = int(res.mle_retvals.get("iterations", cfg.max_iter))
    if not converged:
        raise FitDivergence(f"Logistic fit did not converge within {cfg.max_iter} iterations ({cfg.method})")

    params = res.params
    bse = res.bse
    pvalues = res.pvalues
    if not (np.all(np.isfinite(params)) and np.all(np.isfinite(bse))):
        raise FitDivergence(f"Logistic fit produced non-finite estimates: {dict(params)}")

    fit = LogisticFit(
        coef={t: float(params[t]) for t in TERMS},
        std_err={t: float(bse[t]) for t in TERMS},
        p_values={t: float(pvalues[t]) for t in TERMS},
        n_obs=int(res.nobs),
        iterations=iterations,
        log_likelihood=float(res.llf),
        pseudo_r2=float(res.prsquared),
    )
    logger.info(f"Logistic fit converged in {iterations} iterations on {fit.n_obs:,} campaigns (pseudo R2={fit.pseudo_r2:.4f})")
    return fit


def calibration_table(fit: LogisticFit, df: pd.DataFrame, *, n_bins: int = 10) -> pd.DataFrame:
    """Reliability bins: mean predicted P(met) vs observed meet rate.

    Equal-width bins over [0, 1]; empty bins are kept with NaN rates.
    """
    p = np.empty(len(df), dtype=float)
    for platform in Platform:
        mask = (df["platform"] == platform.value).to_numpy()
        if mask.any():
            p[mask] = fit.p_met(df.loc[mask, "goal_usd"].to_numpy(dtype=float), platform)

    edges = np.linspace(0.0, 1.0, int(n_bins) + 1)
    bins = pd.cut(np.clip(p, 0.0, 1.0), edges, include_lowest=True)
    frame = pd.DataFrame({"bin": bins, "p": p, "met": df["met_goal"].to_numpy(dtype=float)})
    out = frame.groupby("bin", observed=False).agg(
        prob_pred=("p", "mean"),
        prob_true=("met", "mean"),
        count=("met", "size"),
    )
    out["count"] = out["count"].astype(int)
    return out.reset_index(drop=True)


def log_summary(fit: LogisticFit) -> None:
    for term, row in fit.summary_frame().iterrows():
        logger.info(f"  {term:28} β = {row['coef']:.4f} (se={row['std_err']:.4f}, p={row['p_value']:.4g}) {row['sig']}")
