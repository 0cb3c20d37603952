from __future__ import annotations

import pickle

import numpy as np
import pytest

from fundcast.config import MET_OFFSET, UNDER_EPSILON, SamplerConfig
from fundcast.errors import SamplerDivergence
from fundcast.modeling.gamma_sampler import partition_tasks, preprocess, run_chain, sample_partition
from fundcast.modeling.types import Outcome

TRUE = {"alpha": 2.0, "beta0": 5.0, "beta1": 1e-5}


@pytest.fixture(scope="module")
def gamma_data():
    rng = np.random.default_rng(42)
    goal = 10.0 ** rng.uniform(3.0, 5.0, 1500)
    rate = TRUE["beta0"] + TRUE["beta1"] * goal
    x = rng.gamma(TRUE["alpha"], 1.0 / rate)
    return x, goal


@pytest.fixture(scope="module")
def recovered(gamma_data):
    x, goal = gamma_data
    cfg = SamplerConfig(n_chains=1, n_iter=600, n_warmup=300, n_jobs=1)
    return run_chain(x, goal, cfg, np.random.SeedSequence(123), label="recovery")


def test_preprocess_offsets():
    frac = np.array([0.0, 0.5, 1.0, 2.5])
    np.testing.assert_allclose(preprocess(frac, Outcome.UNDER), frac + UNDER_EPSILON)
    np.testing.assert_allclose(preprocess(frac, Outcome.MET), frac - MET_OFFSET)
    # goal met exactly still lands inside the Gamma support
    assert preprocess(np.array([1.0]), Outcome.MET)[0] > 0


def test_keeps_post_warmup_draws_only(recovered):
    assert len(recovered) == 300
    assert set(recovered.acceptance) == {"alpha", "beta0", "beta1"}
    assert all(0.0 < a <= 1.0 for a in recovered.acceptance.values())


def test_draws_are_in_support(recovered, gamma_data):
    _, goal = gamma_data
    assert np.all(recovered.alpha > 0)
    assert np.all(recovered.beta0 > 0)
    rates = recovered.beta0[:, None] + recovered.beta1[:, None] * goal[None, :]
    assert np.all(rates > 0)


def test_recovers_shape_and_mean(recovered, gamma_data):
    x, goal = gamma_data
    alpha = float(np.median(recovered.alpha))
    beta0 = float(np.median(recovered.beta0))
    beta1 = float(np.median(recovered.beta1))

    assert 1.6 < alpha < 2.5
    implied_mean = float(np.mean(alpha / (beta0 + beta1 * goal)))
    assert implied_mean == pytest.approx(float(np.mean(x)), rel=0.1)


def test_same_seed_same_chain(gamma_data):
    x, goal = gamma_data
    cfg = SamplerConfig(n_iter=120, n_warmup=60, n_jobs=1)
    a = run_chain(x, goal, cfg, 5)
    b = run_chain(x, goal, cfg, 5)
    c = run_chain(x, goal, cfg, 6)

    np.testing.assert_array_equal(a.alpha, b.alpha)
    np.testing.assert_array_equal(a.beta1, b.beta1)
    assert not np.array_equal(a.alpha, c.alpha)


def test_empty_partition_raises():
    cfg = SamplerConfig(n_iter=20, n_warmup=10)
    with pytest.raises(SamplerDivergence) as info:
        run_chain(np.array([]), np.array([]), cfg, 0, platform="Indiegogo", outcome="met")
    assert info.value.platform == "Indiegogo"
    assert info.value.outcome == "met"
    assert str(info.value).startswith("Indiegogo/met: ")


def test_values_outside_support_raise():
    cfg = SamplerConfig(n_iter=20, n_warmup=10)
    with pytest.raises(SamplerDivergence, match="support"):
        run_chain(np.array([0.5, -0.1]), np.array([1_000.0, 2_000.0]), cfg, 0)


def test_shape_mismatch_raises():
    cfg = SamplerConfig(n_iter=20, n_warmup=10)
    with pytest.raises(SamplerDivergence, match="shapes"):
        run_chain(np.array([0.5, 0.2]), np.array([1_000.0]), cfg, 0)


def test_unusable_start_raises_after_max_attempts():
    # moments of values this small underflow to zero
    x = 1e-300 * (1.0 + np.random.default_rng(0).random(40))
    goal = np.linspace(1_000.0, 5_000.0, 40)
    cfg = SamplerConfig(n_iter=20, n_warmup=10, max_init_attempts=5)

    with pytest.raises(SamplerDivergence, match="after 5 starting points") as info:
        run_chain(x, goal, cfg, 0, chain=1, platform="Kickstarter", outcome="under")
    assert info.value.platform == "Kickstarter"


def test_sampler_divergence_survives_pickling():
    err = SamplerDivergence("chain 2: non-finite draws", "Kickstarter", "under")
    back = pickle.loads(pickle.dumps(err))
    assert (back.platform, back.outcome, back.message) == ("Kickstarter", "under", "chain 2: non-finite draws")
    assert str(back) == str(err)


def test_sample_partition_shapes(gamma_data):
    x, goal = gamma_data
    frac = x[:200] + MET_OFFSET
    cfg = SamplerConfig(n_chains=3, n_iter=100, n_warmup=50, n_jobs=1)

    chains = sample_partition(frac, goal[:200], Outcome.MET, cfg, seed=9, platform="Kickstarter")
    assert len(chains) == 3
    assert all(len(c) == 50 for c in chains)
    # independent seeds per chain
    assert not np.array_equal(chains[0].alpha, chains[1].alpha)


def test_parallel_matches_serial(gamma_data):
    x, goal = gamma_data
    serial = SamplerConfig(n_chains=2, n_iter=80, n_warmup=40, n_jobs=1)
    parallel = SamplerConfig(n_chains=2, n_iter=80, n_warmup=40, n_jobs=2)

    a = sample_partition(x[:300], goal[:300], Outcome.UNDER, serial, seed=17)
    b = sample_partition(x[:300], goal[:300], Outcome.UNDER, parallel, seed=17)
    for ca, cb in zip(a, b):
        np.testing.assert_array_equal(ca.alpha, cb.alpha)
        np.testing.assert_array_equal(ca.beta0, cb.beta0)
        np.testing.assert_array_equal(ca.beta1, cb.beta1)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"n_chains": 0},
        {"n_iter": 100, "n_warmup": 100},
        {"n_warmup": -1},
        {"target_accept": 1.0},
        {"adapt_every": 0},
    ],
)
def test_invalid_sampler_config(kwargs):
    with pytest.raises(ValueError):
        SamplerConfig(**kwargs)


def test_partition_tasks_seed_each_chain():
    tasks = partition_tasks(np.array([1.5, 2.0]), np.array([1_000.0, 2_000.0]), Outcome.MET, 3, 4, platform="Indiegogo")

    assert [t.chain for t in tasks] == [0, 1, 2]
    assert all(t.label == "Indiegogo/met" for t in tasks)
    assert len({t.seed.spawn_key for t in tasks}) == 3
    np.testing.assert_allclose(tasks[0].x, [1.5 - MET_OFFSET, 2.0 - MET_OFFSET])
