"""Public entry points.

    model = fit(campaigns)
    save(model, "models/fundcast.csv")
    survival(25_000, 10_000, "Indiegogo", load("models/fundcast.csv"))
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from fundcast.config import FitConfig
from fundcast.data.campaigns import Dataset
from fundcast.domain import survival as _survival
from fundcast.modeling.fit import FitResult, fit_model
from fundcast.modeling.types import FittedModel
from fundcast.storage import model_table


def fit(dataset: Dataset, config: Optional[FitConfig] = None) -> FittedModel:
    """Fit the full model. Raises FitDivergence / SamplerDivergence; never returns a partial model."""
    return fit_model(dataset, config).model


def fit_report(dataset: Dataset, config: Optional[FitConfig] = None) -> FitResult:
    """Like `fit`, but also returns the logistic fit, posteriors and partition sizes."""
    return fit_model(dataset, config)


def survival(target, goal, platform, model: FittedModel) -> float:
    return _survival.survival(target, goal, platform, model)


def quantile(p, goal, platform, model: FittedModel, outcome_branch) -> float:
    return _survival.quantile(p, goal, platform, model, outcome_branch)


def save(model: FittedModel, path: Path) -> None:
    model_table.save_model(model, path)


def load(path: Path) -> FittedModel:
    return model_table.load_model(path)
