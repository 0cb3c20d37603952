from __future__ import annotations

import numpy as np
import pandas as pd
import pytest
from scipy.special import expit

from fundcast.config import FitConfig, SamplerConfig
from fundcast.modeling.types import FittedModel, GammaParams, Platform, PlatformParams

# (c0, c1) of P(met) = sigmoid(c0 + c1 * log10(goal)) used to simulate data
TRUE_LOGIT = {
    Platform.KICKSTARTER: (3.0, -0.9),
    Platform.INDIEGOGO: (2.0, -0.8),
}


def simulate_campaigns(n_per_platform: int = 600, seed: int = 0) -> pd.DataFrame:
    """Synthetic normalized campaigns drawn from the two-stage model itself."""
    rng = np.random.default_rng(seed)
    frames = []
    for platform, (c0, c1) in TRUE_LOGIT.items():
        log_goal = rng.uniform(2.5, 5.0, n_per_platform)
        goal = 10.0**log_goal
        met = rng.random(n_per_platform) < expit(c0 + c1 * log_goal)

        excess = rng.gamma(0.8, 1.0 / (5.0 + 1e-6 * goal))
        partial = np.minimum(rng.gamma(0.6, 1.0 / (3.0 + 1e-6 * goal)), 0.99)
        partial[rng.random(n_per_platform) < 0.05] = 0.0  # campaigns that raised nothing

        frac = np.where(met, 1.0 + excess, partial)
        frames.append(
            pd.DataFrame(
                {
                    "platform": platform.value,
                    "goal_usd": goal,
                    "raised_frac": frac,
                    "met_goal": frac >= 1.0,
                }
            )
        )
    return pd.concat(frames, ignore_index=True)


@pytest.fixture(scope="session")
def campaigns() -> pd.DataFrame:
    return simulate_campaigns()


@pytest.fixture(scope="session")
def fast_config() -> FitConfig:
    return FitConfig(sampler=SamplerConfig(n_iter=300, n_warmup=150, n_jobs=1, seed=7))


@pytest.fixture(scope="session")
def fit_result(campaigns, fast_config):
    from fundcast.modeling.fit import fit_model

    return fit_model(campaigns, fast_config)


@pytest.fixture
def model() -> FittedModel:
    return FittedModel(
        kickstarter=PlatformParams(
            c0=2.0,
            c1=-0.8,
            under=GammaParams(alpha=0.6, beta0=3.0, beta1=1e-6),
            met=GammaParams(alpha=0.8, beta0=5.0, beta1=1e-6),
        ),
        indiegogo=PlatformParams(
            c0=1.5,
            c1=-0.7,
            under=GammaParams(alpha=0.5, beta0=2.5, beta1=2e-6),
            met=GammaParams(alpha=0.7, beta0=4.0, beta1=1e-6),
        ),
    )
