"""Metropolis-within-Gibbs sampler for the goal-dependent Gamma model.

    x[i] ~ Gamma(alpha, rate = beta0 + beta1 * goal[i])

    alpha ~ Gamma(2, 1)
    beta0 ~ Normal(10, 10), truncated to beta0 > 0
    beta1 ~ Normal(0, 10)

alpha and beta0 are updated on the log scale (Jacobian included) so every
draw stays positive; beta1 is updated on its natural scale. Proposals that
make any rate non-positive are rejected. Step sizes adapt during warmup only
and warmup draws are discarded.

Sums that do not depend on the rate (sum x, sum log x, sum goal * x) are
computed once per chain, so only the beta updates cost O(n).
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Union

import numpy as np
from joblib import Parallel, delayed
from scipy.special import gammaln
from tqdm import tqdm

from fundcast.config import MET_OFFSET, UNDER_EPSILON, SamplerConfig
from fundcast.errors import SamplerDivergence
from fundcast.modeling.types import GAMMA_PARAMS, ChainSamples, Outcome

logger = logging.getLogger(__name__)

ALPHA_PRIOR = (2.0, 1.0)  # shape, rate
BETA0_PRIOR = (10.0, 10.0)  # mean, sd
BETA1_PRIOR = (0.0, 10.0)  # mean, sd

Seed = Union[int, np.random.SeedSequence]


def preprocess(raised_frac: np.ndarray, outcome: Outcome) -> np.ndarray:
    """Shift raised fractions into the open Gamma support.

    met:   excess over goal, raised_frac - 0.9999
    under: raised_frac + 0.0001, so campaigns that raised nothing keep a density
    """
    frac = np.asarray(raised_frac, dtype=float)
    if outcome is Outcome.MET:
        return frac - MET_OFFSET
    return frac + UNDER_EPSILON


def _exp(v: float) -> float:
    return math.inf if v > 700.0 else math.exp(v)


def _accept(rng: np.random.Generator, delta: float) -> bool:
    if not math.isfinite(delta):
        return False
    return delta >= 0.0 or rng.random() < math.exp(delta)


class _Posterior:
    def __init__(self, x: np.ndarray, goal: np.ndarray):
        self.goal = goal
        self.n = int(x.shape[0])
        self.sum_x = float(np.sum(x))
        self.sum_log_x = float(np.sum(np.log(x)))
        self.sum_goal_x = float(np.sum(goal * x))

    def sum_log_rate(self, beta0: float, beta1: float) -> float:
        if not (math.isfinite(beta0) and math.isfinite(beta1)):
            return -math.inf
        rates = beta0 + beta1 * self.goal
        if not np.all(rates > 0):
            return -math.inf
        return float(np.sum(np.log(rates)))

    def alpha_terms(self, log_alpha: float, sum_log_rate: float) -> float:
        # Everything in the log posterior that moves with alpha.
        a = _exp(log_alpha)
        if not math.isfinite(a) or a <= 0:
            return -math.inf
        shape, rate = ALPHA_PRIOR
        return (
            a * sum_log_rate
            - self.n * float(gammaln(a))
            + (a - 1.0) * self.sum_log_x
            + (shape - 1.0) * log_alpha
            - rate * a
            + log_alpha
        )

    def beta_terms(self, alpha: float, log_beta0: float, beta1: float, sum_log_rate: float) -> float:
        # Everything in the log posterior that moves with beta0 or beta1.
        if not math.isfinite(sum_log_rate):
            return -math.inf
        b0 = _exp(log_beta0)
        m0, s0 = BETA0_PRIOR
        m1, s1 = BETA1_PRIOR
        return (
            alpha * sum_log_rate
            - b0 * self.sum_x
            - beta1 * self.sum_goal_x
            - 0.5 * ((b0 - m0) / s0) ** 2
            - 0.5 * ((beta1 - m1) / s1) ** 2
            + log_beta0
        )


def _moment_start(x: np.ndarray):
    m = float(np.mean(x))
    v = float(np.var(x)) if x.shape[0] > 1 else 0.0
    if not (v > 0):
        v = m * m
    if not (m > 0 and v > 0):
        # underflowed moments; every start will be rejected
        return (math.nan, math.nan)
    return (m * m / v, m / v)


def run_chain(
    x: np.ndarray,
    goal: np.ndarray,
    config: SamplerConfig,
    seed: Seed,
    *,
    chain: int = 0,
    label: str = "",
    platform: Optional[str] = None,
    outcome: Optional[str] = None,
) -> ChainSamples:
    """Run one chain and return its post-warmup draws."""
    x = np.asarray(x, dtype=float)
    goal = np.asarray(goal, dtype=float)
    where = dict(platform=platform, outcome=outcome)

    if x.shape[0] == 0:
        raise SamplerDivergence("no records to sample from", **where)
    if x.shape != goal.shape:
        raise SamplerDivergence(f"x and goal have different shapes {x.shape} vs {goal.shape}", **where)
    if not (np.all(np.isfinite(x)) and np.all(x > 0)):
        raise SamplerDivergence("values outside the Gamma support (0, inf) after preprocessing", **where)

    rng = np.random.default_rng(seed)
    post = _Posterior(x, goal)

    # Independent, jittered starts around the moment estimates.
    alpha0, rate0 = _moment_start(x)
    g_max = float(np.max(goal))
    la = lb0 = b1 = math.nan
    slr = -math.inf
    for _ in range(config.max_init_attempts):
        la = math.log(alpha0) + rng.normal(0.0, 0.5)
        lb0 = math.log(rate0) + rng.normal(0.0, 0.5)
        b1 = 0.1 * rate0 / g_max * rng.normal()
        slr = post.sum_log_rate(math.exp(lb0), b1)
        lp = post.alpha_terms(la, slr) + post.beta_terms(math.exp(la), lb0, b1, slr)
        if math.isfinite(lp):
            break
    else:
        raise SamplerDivergence(
            f"chain {chain}: no finite log-likelihood after {config.max_init_attempts} starting points",
            **where,
        )

    log_steps = np.array([math.log(0.1), math.log(0.1), math.log(0.1 * rate0 / g_max)])
    n_keep = config.n_keep
    out = np.empty((n_keep, 3), dtype=float)
    batch_acc = np.zeros(3, dtype=int)
    kept_acc = np.zeros(3, dtype=int)
    n_batch = 0

    iterator = tqdm(range(config.n_iter), desc=f"{label} chain {chain}", disable=not config.progress, leave=False)
    for it in iterator:
        accepted = np.zeros(3, dtype=bool)

        # alpha | beta
        la_new = la + math.exp(log_steps[0]) * rng.normal()
        delta = post.alpha_terms(la_new, slr) - post.alpha_terms(la, slr)
        if _accept(rng, delta):
            la = la_new
            accepted[0] = True
        alpha = math.exp(la)

        # beta0 | alpha, beta1
        lb0_new = lb0 + math.exp(log_steps[1]) * rng.normal()
        slr_new = post.sum_log_rate(_exp(lb0_new), b1)
        delta = post.beta_terms(alpha, lb0_new, b1, slr_new) - post.beta_terms(alpha, lb0, b1, slr)
        if _accept(rng, delta):
            lb0, slr = lb0_new, slr_new
            accepted[1] = True

        # beta1 | alpha, beta0
        b1_new = b1 + math.exp(log_steps[2]) * rng.normal()
        slr_new = post.sum_log_rate(_exp(lb0), b1_new)
        delta = post.beta_terms(alpha, lb0, b1_new, slr_new) - post.beta_terms(alpha, lb0, b1, slr)
        if _accept(rng, delta):
            b1, slr = b1_new, slr_new
            accepted[2] = True

        if it < config.n_warmup:
            batch_acc += accepted
            if (it + 1) % config.adapt_every == 0:
                n_batch += 1
                step = min(1.0, 1.0 / math.sqrt(n_batch))
                rates = batch_acc / float(config.adapt_every)
                log_steps += np.where(rates > config.target_accept, step, -step)
                batch_acc[:] = 0
        else:
            kept_acc += accepted
            out[it - config.n_warmup] = (alpha, math.exp(lb0), b1)

    if not np.all(np.isfinite(out)):
        raise SamplerDivergence(f"chain {chain}: non-finite draws", **where)

    acceptance = {name: float(kept_acc[i]) / n_keep for i, name in enumerate(GAMMA_PARAMS)}
    if min(acceptance.values()) < 0.05:
        logger.warning(f"{label} chain {chain}: low acceptance {acceptance}")
    logger.debug(f"{label} chain {chain}: done, acceptance {acceptance}")

    return ChainSamples(alpha=out[:, 0].copy(), beta0=out[:, 1].copy(), beta1=out[:, 2].copy(), acceptance=acceptance)




@dataclass(frozen=True)
class ChainTask:
    """One chain's inputs: preprocessed values, goals and its own seed."""

    x: np.ndarray
    goal: np.ndarray
    seed: Seed
    chain: int = 0
    platform: Optional[str] = None
    outcome: Optional[str] = None

    @property
    def label(self) -> str:
        if self.platform:
            return f"{self.platform}/{self.outcome}"
        return self.outcome or ""


def run_chains(tasks: Sequence[ChainTask], config: SamplerConfig) -> List[ChainSamples]:
    """Run every task as an independent joblib job; results follow task order."""
    n_records = sum(int(t.x.shape[0]) for t in tasks)
    logger.info(
        f"Running {len(tasks)} chains ({config.n_iter} iterations, {config.n_warmup} warmup) "
        f"over {n_records:,} records with n_jobs={config.n_jobs}"
    )
    return Parallel(n_jobs=config.n_jobs)(
        delayed(run_chain)(
            t.x,
            t.goal,
            config,
            t.seed,
            chain=t.chain,
            label=t.label,
            platform=t.platform,
            outcome=t.outcome,
        )
        for t in tasks
    )


def partition_tasks(
    raised_frac: np.ndarray,
    goal_usd: np.ndarray,
    outcome: Outcome,
    n_chains: int,
    seed: Seed,
    *,
    platform: Optional[str] = None,
) -> List[ChainTask]:
    """`n_chains` tasks for one partition, each seeded from its own child of `seed`."""
    root = seed if isinstance(seed, np.random.SeedSequence) else np.random.SeedSequence(seed)
    x = preprocess(raised_frac, outcome)
    goal = np.asarray(goal_usd, dtype=float)
    return [
        ChainTask(x=x, goal=goal, seed=s, chain=k, platform=platform, outcome=outcome.value)
        for k, s in enumerate(root.spawn(n_chains))
    ]


def sample_partition(
    raised_frac: np.ndarray,
    goal_usd: np.ndarray,
    outcome: Outcome,
    config: Optional[SamplerConfig] = None,
    *,
    seed: Optional[Seed] = None,
    platform: Optional[str] = None,
) -> List[ChainSamples]:
    """Draw `config.n_chains` independent chains for one homogeneous partition."""
    cfg = config or SamplerConfig()
    tasks = partition_tasks(
        raised_frac,
        goal_usd,
        outcome,
        cfg.n_chains,
        cfg.seed if seed is None else seed,
        platform=platform,
    )
    return run_chains(tasks, cfg)
