import numpy as np
import pytest

from outbreak_phylodynamics.errors import InvalidParameter
from outbreak_phylodynamics.simulate.outbreak import SimulationParameters, simulate_outbreak
from outbreak_phylodynamics.timeseries import downsample
from outbreak_phylodynamics.timeseries.downsample import sample, subset_individuals, register_strategy


@pytest.fixture(scope="module")
def outbreak():
    params = SimulationParameters(population=5000, initial_susceptible=4999, step_count=1500,
                                  min_epidemic_size=20, max_attempts=100)
    return simulate_outbreak(params, seed=7).unwrap()


def test_probability_one_and_zero(outbreak):
    rng = np.random.default_rng(123)
    everyone = sample(outbreak.individuals, "proportional", probability=1.0, rng=rng)
    assert everyone.ids == tuple(range(outbreak.total_infected))
    assert everyone.total_sampled == outbreak.total_infected

    nobody = sample(outbreak.individuals, "proportional", probability=0.0, rng=rng)
    assert nobody.ids == ()
    assert nobody.total_sampled == 0


def test_probability_out_of_range_raises():
    rng = np.random.default_rng(123)
    with pytest.raises(InvalidParameter):
        sample(range(10), "proportional", probability=1.5, rng=rng)
    with pytest.raises(InvalidParameter):
        sample(range(10), "proportional", probability=-0.1, rng=rng)
    with pytest.raises(InvalidParameter):
        sample(range(10), "proportional", probability=None, rng=rng)


def test_proportional_sampling_is_reproducible(outbreak):
    """p=0.01 on the 5000-individual outbreak with a fixed seed"""
    first = sample(outbreak.individuals, "proportional", probability=0.01, rng=np.random.default_rng(2024))
    second = sample(outbreak.individuals, "proportional", probability=0.01, rng=np.random.default_rng(2024))
    assert first.total_sampled == second.total_sampled
    assert first.ids == second.ids
    assert list(first.ids) == sorted(set(first.ids))
    assert first.total_sampled <= outbreak.total_infected


def test_fixed_count_strategy():
    rng = np.random.default_rng(123)
    subset = sample(range(100), "fixed", size=10, rng=rng)
    assert subset.total_sampled == 10
    assert len(set(subset.ids)) == 10
    assert all(0 <= i < 100 for i in subset.ids)
    assert sample(range(100), "fixed", size=0, rng=rng).ids == ()

    with pytest.raises(InvalidParameter):
        sample(range(5), "fixed", size=6, rng=rng)
    with pytest.raises(InvalidParameter):
        sample(range(5), "fixed", rng=rng)


def test_unknown_strategy_raises():
    with pytest.raises(InvalidParameter):
        sample(range(5), "stratified", probability=0.5)


def test_custom_strategy():
    register_strategy("even", lambda ids, rng, probability=None, size=None: ids[ids % 2 == 0])
    try:
        subset = sample(range(7), "even")
        assert subset.ids == (0, 2, 4, 6)
        assert subset.strategy == "even"
    finally:
        downsample.STRATEGIES.pop("even")


def test_subset_individuals(outbreak):
    subset = sample(outbreak.individuals, "fixed", size=5, rng=np.random.default_rng(1))
    chosen = subset_individuals(outbreak.individuals, subset)
    assert [ind.id for ind in chosen] == list(subset.ids)
    assert subset.ids[0] in subset


def test_membership_uses_the_sampled_ids():
    subset = sample(range(5), "all")
    assert 4 in subset
    assert 5 not in subset
    assert subset == sample(range(5), "all")
