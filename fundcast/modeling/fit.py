from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional

import numpy as np

from fundcast.config import FitConfig
from fundcast.data.campaigns import Dataset, campaigns_frame, partition, subsample
from fundcast.errors import FitDivergence, SamplerDivergence
from fundcast.modeling.gamma_sampler import ChainTask, partition_tasks, run_chains
from fundcast.modeling.logistic import LogisticFit, fit_logistic, log_summary
from fundcast.modeling.posterior import compile_posterior
from fundcast.modeling.types import (
    PARTITIONS,
    ChainSamples,
    FittedModel,
    GammaPosterior,
    Outcome,
    PartitionKey,
    Platform,
    PlatformParams,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PartitionRecord:
    """What was fed to the sampler for one partition."""

    platform: Platform
    outcome: Outcome
    n_records: int
    n_used: int
    subsampled: bool


@dataclass(frozen=True)
class FitResult:
    model: FittedModel
    logistic: LogisticFit
    posteriors: Dict[PartitionKey, GammaPosterior]
    partitions: Dict[PartitionKey, PartitionRecord]
    config: FitConfig


def assemble_model(logistic: LogisticFit, posteriors: Mapping[PartitionKey, GammaPosterior]) -> FittedModel:
    """Build the query-time model. Every platform needs both outcome branches."""
    missing = [f"{p.value}/{o.value}" for p, o in PARTITIONS if (p, o) not in posteriors]
    if missing:
        raise SamplerDivergence(f"missing compiled posteriors for {missing}")

    blocks = {}
    for platform in Platform:
        c0, c1 = logistic.platform_coefficients(platform)
        blocks[platform] = PlatformParams(
            c0=c0,
            c1=c1,
            under=posteriors[(platform, Outcome.UNDER)].point(),
            met=posteriors[(platform, Outcome.MET)].point(),
        )
    return FittedModel(kickstarter=blocks[Platform.KICKSTARTER], indiegogo=blocks[Platform.INDIEGOGO])


def fit_model(dataset: Dataset, config: Optional[FitConfig] = None) -> FitResult:
    """Fit the logistic model and all four Gamma partitions.

    All chains (partitions x n_chains) are dispatched as independent joblib
    tasks. Seeds are spawned per partition and per chain from
    `config.sampler.seed`, so results do not depend on `n_jobs`.
    """
    cfg = config or FitConfig()
    scfg = cfg.sampler
    df = campaigns_frame(dataset)
    logger.info(f"Fitting on {len(df):,} campaigns: {df['platform'].value_counts().to_dict()}")

    try:
        logistic = fit_logistic(df, cfg.logit)
    except FitDivergence as e:
        logger.error(f"Logistic fit failed, aborting: {e}")
        raise
    log_summary(logistic)

    root = np.random.SeedSequence(scfg.seed)
    records: Dict[PartitionKey, PartitionRecord] = {}
    tasks: List[ChainTask] = []
    task_keys: List[PartitionKey] = []

    for key, part_seq in zip(PARTITIONS, root.spawn(len(PARTITIONS))):
        platform, outcome = key
        sub_seq, chain_seq = part_seq.spawn(2)

        part = partition(df, platform, outcome)
        if len(part) == 0:
            raise SamplerDivergence("partition is empty", platform.value, outcome.value)

        cap = cfg.cap_for(platform)
        used, was_subsampled = subsample(part, cap, np.random.default_rng(sub_seq))
        if was_subsampled:
            logger.info(f"{platform.value}/{outcome.value}: subsampled {len(part):,} -> {len(used):,} records")

        records[key] = PartitionRecord(
            platform=platform,
            outcome=outcome,
            n_records=len(part),
            n_used=len(used),
            subsampled=was_subsampled,
        )

        part_tasks = partition_tasks(
            used["raised_frac"].to_numpy(dtype=float),
            used["goal_usd"].to_numpy(dtype=float),
            outcome,
            scfg.n_chains,
            chain_seq,
            platform=platform.value,
        )
        tasks.extend(part_tasks)
        task_keys.extend([key] * len(part_tasks))

    try:
        results = run_chains(tasks, scfg)
    except SamplerDivergence as e:
        logger.error(f"Sampling failed, no model published: {e}")
        raise

    chains: Dict[PartitionKey, List[ChainSamples]] = {key: [] for key in PARTITIONS}
    for key, samples in zip(task_keys, results):
        chains[key].append(samples)

    posteriors = {key: compile_posterior(chains[key], key[0], key[1]) for key in PARTITIONS}
    model = assemble_model(logistic, posteriors)

    return FitResult(model=model, logistic=logistic, posteriors=posteriors, partitions=records, config=cfg)
