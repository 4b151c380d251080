import logging

import numpy as np
import pytest

from beat_states.models.emissions import DiscreteEmission, GaussianEmission
from beat_states.models.rate_hmm import (
    InsufficientDataError,
    RateHMM,
    StateRemap,
    decode_states,
    fit_discrete_hmm,
    fit_gaussian_hmm,
    fit_hmm,
)


def two_regime_rates(seed=0, block=200):
    rng = np.random.default_rng(seed)
    levels = [1.0, 2.0, 1.0, 2.0]
    rates = np.concatenate([lvl + 0.05 * rng.standard_normal(block) for lvl in levels])
    truth = np.repeat([1, 2, 1, 2], block)
    return rates, truth


def test_state_remap_ranks_by_mean():
    remap = StateRemap.from_means(np.array([2.0, 0.5, 1.0]))
    assert remap.remap.tolist() == [3, 1, 2]
    assert remap.order.tolist() == [1, 2, 0]
    assert remap.apply(np.array([0, 1, 2, 1])).tolist() == [3, 1, 2, 1]


def test_state_remap_puts_unused_state_last():
    remap = StateRemap.from_means(np.array([np.nan, 1.0]))
    assert remap.remap.tolist() == [2, 1]


def test_gaussian_fit_recovers_regimes():
    rates, truth = two_regime_rates()
    model = fit_gaussian_hmm(rates, 2, random_state=0)

    assert model.model_type == 'gaussian'
    assert np.all(np.diff(model.state_stats[:, 0]) >= 0)
    assert model.state_stats[:, 0] == pytest.approx([1.0, 2.0], abs=0.05)
    assert model.sorted_emission.means == pytest.approx(model.state_stats[:, 0])

    states = decode_states(rates, model)
    assert set(np.unique(states)) <= {1, 2}
    assert np.mean(states == truth) > 0.95


def test_discrete_fit_is_canonical():
    rates, truth = two_regime_rates(seed=1)
    model = fit_discrete_hmm(rates, 2, n_symbols=10, random_state=1)

    assert model.model_type == 'discrete'
    assert model.emission.edges.size == 9
    means = model.state_stats[:, 0]
    assert np.all(np.diff(means[~np.isnan(means)]) >= 0)

    states = decode_states(rates, model)
    assert states.shape == rates.shape
    assert states.min() >= 1 and states.max() <= 2
    assert states[truth == 1].mean() <= states[truth == 2].mean()


def test_sorted_parameters_are_stochastic():
    rates, _ = two_regime_rates(seed=2)
    model = fit_discrete_hmm(rates, 3, n_symbols=6, random_state=2)
    assert model.sorted_transition.sum(axis=1) == pytest.approx(np.ones(3))
    assert model.sorted_emission.emission.sum(axis=1) == pytest.approx(np.ones(3))
    assert model.sorted_prior.sum() == pytest.approx(1.0)
    assert model.transition.sum(axis=1) == pytest.approx(np.ones(3))


def test_fit_is_reproducible_with_seed():
    rates, _ = two_regime_rates(seed=4)
    a = fit_gaussian_hmm(rates, 2, random_state=7)
    b = fit_gaussian_hmm(rates, 2, random_state=7)
    assert a.transition == pytest.approx(b.transition)
    assert np.array_equal(decode_states(rates, a), decode_states(rates, b))


def test_gaussian_needs_more_rates_than_states():
    with pytest.raises(InsufficientDataError):
        fit_gaussian_hmm(np.array([1.0, 2.0]), 2)
    with pytest.raises(ValueError):
        fit_hmm(np.array([1.0, 2.0, 3.0]), 3, model_type='gaussian')


def test_fit_hmm_rejects_unknown_type():
    with pytest.raises(ValueError):
        fit_hmm(np.arange(10.0), 2, model_type='poisson')


def test_decode_gaussian_maps_through_remap():
    model = RateHMM(
        prior=np.array([0.5, 0.5]),
        transition=np.array([[0.9, 0.1], [0.1, 0.9]]),
        emission=GaussianEmission(np.array([2.0, 0.0]), np.array([0.05, 0.05])),
        state_remap=StateRemap.from_means(np.array([2.0, 0.0])),
    )
    states = decode_states(np.array([0.0, 0.1, 0.0, 2.0, 1.9, 2.0]), model)
    assert states.tolist() == [1, 1, 1, 2, 2, 2]


def test_decode_discrete_uses_training_edges():
    model = RateHMM(
        prior=np.array([0.5, 0.5]),
        transition=np.array([[0.8, 0.2], [0.2, 0.8]]),
        emission=DiscreteEmission(np.array([[0.9, 0.1], [0.1, 0.9]]), edges=np.array([0.5])),
        state_remap=StateRemap.identity(2),
    )
    assert decode_states(np.array([0.0, 0.1, 1.0, 5.0]), model).tolist() == [1, 1, 2, 2]


def test_decode_discrete_without_edges_raises():
    model = RateHMM(
        prior=np.array([1.0]),
        transition=np.array([[1.0]]),
        emission=DiscreteEmission(np.array([[0.5, 0.5]])),
        state_remap=StateRemap.identity(1),
    )
    with pytest.raises(ValueError):
        decode_states(np.array([1.0]), model)


def test_emission_m_step():
    emission = DiscreteEmission(np.full((2, 2), 0.5))
    resp = np.array([[1.0, 0.0], [1.0, 0.0], [0.0, 1.0]])
    refit = emission.fit(np.array([1, 1, 2]), resp)
    assert refit.emission == pytest.approx(np.array([[1.0, 0.0], [0.0, 1.0]]))

    gauss = GaussianEmission(np.zeros(2), np.ones(2))
    refit = gauss.fit(np.array([1.0, 3.0, 10.0]), resp)
    assert refit.means == pytest.approx([2.0, 10.0])
    assert refit.variances == pytest.approx([1.0, 1e-6])


def test_emission_log_likelihood_shapes():
    gauss = GaussianEmission(np.array([0.0, 1.0, 2.0]), np.ones(3))
    x = np.linspace(0, 2, 7)
    assert gauss.log_likelihood(x).shape == (7, 3)
    assert gauss.log_likelihood(x, state=1) == pytest.approx(gauss.log_likelihood(x)[:, 1])


def test_discrete_state_without_assignments_gets_nan_stats(caplog):
    # four rates cannot visit five states
    caplog.set_level(logging.WARNING)
    model = fit_discrete_hmm(np.full(4, 1.2), 5, n_symbols=4, random_state=0)

    means = model.state_stats[:, 0]
    unused = np.isnan(means)
    assert unused.any()
    assert np.all(np.isnan(model.state_stats[unused, 1]))
    # unused states rank after every visited one
    n_used = int((~unused).sum())
    assert not unused[:n_used].any() and unused[n_used:].all()
    assert means[:n_used] == pytest.approx(np.full(n_used, 1.2))
    assert "no training assignments" in caplog.text

    states = decode_states(np.full(4, 1.2), model)
    assert states.max() <= n_used


def test_empty_kmeans_cluster_is_logged(caplog):
    # two distinct values for three clusters leaves the middle centre unused
    caplog.set_level(logging.WARNING)
    model = fit_gaussian_hmm(np.array([1.0, 1.0, 1.0, 5.0, 5.0, 5.0]), 3, random_state=0)
    assert model.n_states == 3
    assert "clusters empty" in caplog.text


@pytest.mark.parametrize("fit", [
    lambda r: fit_gaussian_hmm(r, 2, random_state=0),
    lambda r: fit_discrete_hmm(r, 2, random_state=0),
])
def test_decode_empty_rates_raises(fit):
    rates, _ = two_regime_rates(seed=5, block=20)
    model = fit(rates)
    with pytest.raises(ValueError):
        decode_states(np.array([]), model)
