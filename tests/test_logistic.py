from __future__ import annotations

import math

import numpy as np
import pytest
from scipy.special import expit

from fundcast.config import LogitConfig
from fundcast.data.campaigns import campaigns_frame
from fundcast.errors import FitDivergence
from fundcast.modeling.logistic import (
    INTERACTION,
    INTERCEPT,
    KICKSTARTER,
    LOG_GOAL,
    TERMS,
    calibration_table,
    design_matrix,
    fit_logistic,
)
from fundcast.modeling.types import Platform

from conftest import TRUE_LOGIT, simulate_campaigns


@pytest.fixture(scope="module")
def large_frame():
    return campaigns_frame(simulate_campaigns(n_per_platform=4000, seed=1))


@pytest.fixture(scope="module")
def fit(large_frame):
    return fit_logistic(large_frame)


def test_design_matrix_columns(large_frame):
    X = design_matrix(large_frame)
    assert list(X.columns) == TERMS
    assert np.all(X[INTERCEPT] == 1.0)
    igg = (large_frame["platform"] == Platform.INDIEGOGO.value).to_numpy()
    assert np.all(X.loc[igg, KICKSTARTER] == 0.0)
    assert np.all(X.loc[igg, INTERACTION] == 0.0)


def test_recovers_simulated_coefficients(fit):
    mid = 10**3.75
    for platform, (c0, c1) in TRUE_LOGIT.items():
        fc0, fc1 = fit.platform_coefficients(platform)
        assert fc1 == pytest.approx(c1, abs=0.25)
        assert expit(fc0 + fc1 * math.log10(mid)) == pytest.approx(expit(c0 + c1 * math.log10(mid)), abs=0.05)


def test_platform_coefficients_fold_in_kickstarter_deltas(fit):
    igg = fit.platform_coefficients(Platform.INDIEGOGO)
    ks = fit.platform_coefficients(Platform.KICKSTARTER)

    assert igg == (fit.coef[INTERCEPT], fit.coef[LOG_GOAL])
    assert ks[0] == pytest.approx(fit.coef[INTERCEPT] + fit.coef[KICKSTARTER])
    assert ks[1] == pytest.approx(fit.coef[LOG_GOAL] + fit.coef[INTERACTION])


def test_fit_metadata(fit, large_frame):
    assert fit.n_obs == len(large_frame)
    assert 0 < fit.iterations <= LogitConfig().max_iter
    assert fit.log_likelihood < 0
    assert 0.0 < fit.pseudo_r2 < 1.0


def test_summary_frame(fit):
    table = fit.summary_frame()
    assert list(table.index) == TERMS
    assert list(table.columns) == ["coef", "std_err", "p_value", "sig"]
    assert np.all(table["std_err"] > 0)
    # log10(goal) is a strong predictor on this many campaigns
    assert table.loc[LOG_GOAL, "sig"] == "***"


def test_non_convergence_raises(large_frame):
    with pytest.raises(FitDivergence, match="did not converge"):
        fit_logistic(large_frame, LogitConfig(max_iter=1))


def test_invalid_logit_config():
    with pytest.raises(ValueError):
        LogitConfig(max_iter=0)


def test_calibration_table(fit, large_frame):
    table = calibration_table(fit, large_frame, n_bins=10)

    assert len(table) == 10
    assert list(table.columns) == ["prob_pred", "prob_true", "count"]
    assert table["count"].sum() == len(large_frame)

    # A logistic MLE with an intercept matches the observed meet rate overall.
    seen = table["count"] > 0
    predicted = float(np.sum(table.loc[seen, "prob_pred"] * table.loc[seen, "count"]))
    observed = float(np.sum(table.loc[seen, "prob_true"] * table.loc[seen, "count"]))
    assert predicted == pytest.approx(observed, rel=1e-4)
