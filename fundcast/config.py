"""Fit configuration.

Defaults reproduce the reference run: 3 chains x 2000 iterations (first half
warmup), Kickstarter partitions capped at 25,000 records, Indiegogo uncapped.
Every knob can be overridden with a FUNDCAST_* environment variable through
`FitConfig.from_env()`.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from typing import Dict, Optional

from fundcast.modeling.types import Platform

# Boundary nudges that keep each partition inside the Gamma support (0, inf).
MET_OFFSET = 0.9999
UNDER_EPSILON = 0.0001

REFERENCE_KICKSTARTER_CAP = 25_000


def _default_caps() -> Dict[Platform, Optional[int]]:
    return {Platform.KICKSTARTER: REFERENCE_KICKSTARTER_CAP, Platform.INDIEGOGO: None}


@dataclass(frozen=True)
class SamplerConfig:
    n_chains: int = 3
    n_iter: int = 2000
    n_warmup: int = 1000
    seed: int = 0
    n_jobs: int = -1
    target_accept: float = 0.44
    adapt_every: int = 50
    max_init_attempts: int = 100
    progress: bool = False

    def __post_init__(self) -> None:
        if self.n_chains < 1:
            raise ValueError(f"n_chains must be >= 1, got {self.n_chains}")
        if not (0 <= self.n_warmup < self.n_iter):
            raise ValueError(f"need 0 <= n_warmup < n_iter, got n_warmup={self.n_warmup}, n_iter={self.n_iter}")
        if not (0.0 < self.target_accept < 1.0):
            raise ValueError(f"target_accept must be in (0, 1), got {self.target_accept}")
        if self.adapt_every < 1:
            raise ValueError(f"adapt_every must be >= 1, got {self.adapt_every}")
        if self.max_init_attempts < 1:
            raise ValueError(f"max_init_attempts must be >= 1, got {self.max_init_attempts}")

    @property
    def n_keep(self) -> int:
        return self.n_iter - self.n_warmup


@dataclass(frozen=True)
class LogitConfig:
    max_iter: int = 100
    method: str = "newton"

    def __post_init__(self) -> None:
        if self.max_iter < 1:
            raise ValueError(f"max_iter must be >= 1, got {self.max_iter}")


@dataclass(frozen=True)
class FitConfig:
    sampler: SamplerConfig = field(default_factory=SamplerConfig)
    logit: LogitConfig = field(default_factory=LogitConfig)
    max_records: Dict[Platform, Optional[int]] = field(default_factory=_default_caps)

    def __post_init__(self) -> None:
        for platform, cap in self.max_records.items():
            if cap is not None and int(cap) < 1:
                raise ValueError(f"max_records[{platform.value}] must be positive or None, got {cap}")

    def cap_for(self, platform: Platform) -> Optional[int]:
        return self.max_records.get(platform)

    @classmethod
    def from_env(cls, base: Optional["FitConfig"] = None) -> "FitConfig":
        cfg = base or cls()
        sampler = cfg.sampler

        n_iter = os.getenv("FUNDCAST_MCMC_ITERATIONS")
        n_warmup = os.getenv("FUNDCAST_MCMC_WARMUP")
        n_chains = os.getenv("FUNDCAST_MCMC_CHAINS")
        n_jobs = os.getenv("FUNDCAST_N_JOBS")
        seed = os.getenv("FUNDCAST_SEED")

        if n_iter is not None:
            # Keep the warmup at half the run unless it is set explicitly.
            sampler = replace(sampler, n_iter=int(n_iter), n_warmup=int(n_warmup) if n_warmup else int(n_iter) // 2)
        elif n_warmup is not None:
            sampler = replace(sampler, n_warmup=int(n_warmup))
        if n_chains is not None:
            sampler = replace(sampler, n_chains=int(n_chains))
        if n_jobs is not None:
            sampler = replace(sampler, n_jobs=int(n_jobs))
        if seed is not None:
            sampler = replace(sampler, seed=int(seed))

        caps = dict(cfg.max_records)
        ks_cap = os.getenv("FUNDCAST_KICKSTARTER_CAP")
        if ks_cap is not None:
            caps[Platform.KICKSTARTER] = None if ks_cap.strip().lower() in ("", "none") else int(ks_cap)

        return replace(cfg, sampler=sampler, max_records=caps)
