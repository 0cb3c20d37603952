from __future__ import annotations

import logging
import math
from typing import Sequence

import numpy as np

from fundcast.errors import SamplerDivergence
from fundcast.modeling.types import (
    GAMMA_PARAMS,
    ChainSamples,
    GammaPosterior,
    Interval,
    Outcome,
    ParameterSummary,
    Platform,
)

logger = logging.getLogger(__name__)

QUANTILES = (2.5, 50.0, 97.5)
RHAT_WARN = 1.1


def gelman_rubin(chains: np.ndarray) -> float:
    """Potential scale reduction factor for an (n_chains, n_draws) array.

    NaN when there are fewer than two chains or two draws, or no
    within-chain variance to compare against.
    """
    chains = np.asarray(chains, dtype=float)
    m, n = chains.shape
    if m < 2 or n < 2:
        return float("nan")
    W = float(np.mean(np.var(chains, axis=1, ddof=1)))
    B = n * float(np.var(np.mean(chains, axis=1), ddof=1))
    if W <= 0:
        return float("nan")
    var_hat = (n - 1) / n * W + B / n
    return math.sqrt(var_hat / W)


def summarize(draws: np.ndarray) -> ParameterSummary:
    lo, med, hi = np.percentile(np.asarray(draws, dtype=float), QUANTILES)
    return ParameterSummary(median=float(med), ci95=Interval(low=float(lo), high=float(hi)))


def compile_posterior(chains: Sequence[ChainSamples], platform: Platform, outcome: Outcome) -> GammaPosterior:
    """Pool every chain's draws and reduce each parameter to median + 95% interval."""
    if not chains or any(len(c) == 0 for c in chains):
        raise SamplerDivergence("no posterior draws to compile", platform=platform.value, outcome=outcome.value)

    summaries = {}
    r_hat = {}
    for name in GAMMA_PARAMS:
        per_chain = [c.draws(name) for c in chains]
        pooled = np.concatenate(per_chain)
        if not np.all(np.isfinite(pooled)):
            raise SamplerDivergence(f"non-finite {name} draws", platform=platform.value, outcome=outcome.value)
        summaries[name] = summarize(pooled)

        n_min = min(len(d) for d in per_chain)
        r_hat[name] = gelman_rubin(np.vstack([d[:n_min] for d in per_chain]))

    post = GammaPosterior(
        platform=platform,
        outcome=outcome,
        alpha=summaries["alpha"],
        beta0=summaries["beta0"],
        beta1=summaries["beta1"],
        n_chains=len(chains),
        n_draws=int(sum(len(c) for c in chains)),
        r_hat=r_hat,
    )

    label = f"{platform.value}/{outcome.value}"
    logger.info(
        f"{label}: alpha={post.alpha.median:.4g} beta0={post.beta0.median:.4g} beta1={post.beta1.median:.4g} "
        f"({post.n_draws} draws)"
    )
    for name, rh in r_hat.items():
        if math.isfinite(rh) and rh > RHAT_WARN:
            logger.warning(f"{label}: R-hat for {name} is {rh:.3f} (> {RHAT_WARN}); chains may not have mixed")
    return post
