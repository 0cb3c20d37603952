from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Tuple

import numpy as np


class Platform(str, Enum):
    KICKSTARTER = "Kickstarter"
    INDIEGOGO = "Indiegogo"

    def __str__(self) -> str:
        return self.value

    @property
    def keeps_partial_funds(self) -> bool:
        """Keep-what-you-raise platforms pay out even when the goal is missed."""
        return self is Platform.INDIEGOGO

    @classmethod
    def parse(cls, value) -> "Platform":
        if isinstance(value, Platform):
            return value
        s = str(value).strip().lower()
        for p in cls:
            if p.value.lower() == s:
                return p
        raise ValueError(f"Unknown platform: {value!r}")


class Outcome(str, Enum):
    UNDER = "under"
    MET = "met"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, value) -> "Outcome":
        if isinstance(value, Outcome):
            return value
        s = str(value).strip().lower()
        for o in cls:
            if o.value == s:
                return o
        raise ValueError(f"Unknown outcome branch: {value!r}")


PartitionKey = Tuple[Platform, Outcome]

PARTITIONS: Tuple[PartitionKey, ...] = tuple((p, o) for p in Platform for o in Outcome)

GAMMA_PARAMS = ("alpha", "beta0", "beta1")


@dataclass(frozen=True)
class Interval:
    low: float
    high: float


@dataclass(frozen=True)
class ParameterSummary:
    median: float
    ci95: Interval


@dataclass(frozen=True)
class GammaParams:
    """Shape plus goal-linear rate: rate(goal) = beta0 + beta1 * goal."""

    alpha: float
    beta0: float
    beta1: float

    def __post_init__(self) -> None:
        for name in GAMMA_PARAMS:
            if not math.isfinite(float(getattr(self, name))):
                raise ValueError(f"{name} must be finite, got {getattr(self, name)!r}")
        if self.alpha <= 0:
            raise ValueError(f"alpha must be > 0, got {self.alpha}")
        if self.beta0 <= 0:
            raise ValueError(f"beta0 must be > 0, got {self.beta0}")

    def rate(self, goal: float) -> float:
        return self.beta0 + self.beta1 * float(goal)


@dataclass(frozen=True)
class PlatformParams:
    c0: float
    c1: float
    under: GammaParams
    met: GammaParams

    def __post_init__(self) -> None:
        if not (math.isfinite(self.c0) and math.isfinite(self.c1)):
            raise ValueError(f"logistic coefficients must be finite, got c0={self.c0}, c1={self.c1}")

    def branch(self, outcome) -> GammaParams:
        outcome = Outcome.parse(outcome)
        if outcome is Outcome.MET:
            return self.met
        elif outcome is Outcome.UNDER:
            return self.under
        raise ValueError(f"Unknown outcome branch: {outcome!r}")


@dataclass(frozen=True)
class FittedModel:
    """Everything the survival queries need: one parameter block per platform."""

    kickstarter: PlatformParams
    indiegogo: PlatformParams

    def params(self, platform) -> PlatformParams:
        platform = Platform.parse(platform)
        if platform is Platform.KICKSTARTER:
            return self.kickstarter
        elif platform is Platform.INDIEGOGO:
            return self.indiegogo
        raise ValueError(f"Unknown platform: {platform!r}")


@dataclass(frozen=True)
class ChainSamples:
    """Post-warmup draws from one chain, in iteration order."""

    alpha: np.ndarray
    beta0: np.ndarray
    beta1: np.ndarray
    acceptance: Dict[str, float] = field(default_factory=dict)

    def __len__(self) -> int:
        return int(self.alpha.shape[0])

    def draws(self, name: str) -> np.ndarray:
        return getattr(self, name)


@dataclass(frozen=True)
class GammaPosterior:
    platform: Platform
    outcome: Outcome

    alpha: ParameterSummary
    beta0: ParameterSummary
    beta1: ParameterSummary

    n_chains: int
    n_draws: int  # pooled, all chains
    r_hat: Dict[str, float]

    def summary(self, name: str) -> ParameterSummary:
        return getattr(self, name)

    def point(self) -> GammaParams:
        return GammaParams(alpha=self.alpha.median, beta0=self.beta0.median, beta1=self.beta1.median)
