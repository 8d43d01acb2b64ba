import re

import numpy as np
import pytest

from outbreak_phylodynamics.errors import ExhaustedRetries, InvalidParameter
from outbreak_phylodynamics.simulate.outbreak import (
    EpidemicState,
    Individual,
    SimulationParameters,
    simulate_attempt,
    simulate_outbreak,
)


SMALL = SimulationParameters(
    R0=2.0, k=0.5, recovery_rate=0.2, population=300, initial_susceptible=299,
    step_size=0.1, step_count=600, min_epidemic_size=10, max_attempts=50,
)


@pytest.fixture(scope="module")
def scenario():
    """N=5000 outbreak used for the end-to-end checks"""
    params = SimulationParameters(
        R0=2.0, k=0.5, recovery_rate=0.2, population=5000, initial_susceptible=4999,
        step_size=0.1, step_count=1500, min_epidemic_size=20, max_attempts=100,
    )
    return params, simulate_outbreak(params, seed=20240601)


def check_invariants(outbreak):
    params = outbreak.parameters
    for state in outbreak.states:
        assert state.susceptible >= 0 and state.infected >= 0 and state.removed >= 0
        assert state.susceptible + state.infected + state.removed == params.population
    assert len(outbreak.states) == params.step_count + 1

    by_id = {ind.id: ind for ind in outbreak.individuals}
    assert [ind.id for ind in outbreak.individuals] == list(range(outbreak.total_infected))
    for ind in outbreak.individuals:
        if ind.infector_id is not None:
            assert ind.infector_id < ind.id
            assert ind.infection_time >= by_id[ind.infector_id].infection_time
        if ind.recovery_time is not None:
            assert ind.recovery_time > ind.infection_time

    roots = len(outbreak.roots)
    assert sum(ind.offspring_count for ind in outbreak.individuals) == outbreak.total_infected - roots

    final = outbreak.states[-1]
    assert outbreak.total_infected == params.population - final.susceptible
    assert final.removed == sum(1 for ind in outbreak.individuals if ind.recovery_time is not None)
    assert final.infected == sum(1 for ind in outbreak.individuals if ind.recovery_time is None)


def test_invariants_hold_across_seeds():
    for seed in range(5):
        outbreak = simulate_attempt(SMALL, np.random.default_rng(seed))
        check_invariants(outbreak)


def test_transmission_happens_at_infector_removal():
    outbreak = simulate_attempt(SMALL, np.random.default_rng(11))
    by_id = {ind.id: ind for ind in outbreak.individuals}
    for ind in outbreak.individuals:
        if ind.infector_id is not None:
            assert by_id[ind.infector_id].recovery_time == pytest.approx(ind.infection_time)


def test_index_cases_seeded_at_time_zero():
    params = SimulationParameters(population=100, initial_susceptible=96, step_count=10,
                                  min_epidemic_size=0, max_attempts=1)
    outbreak = simulate_attempt(params, np.random.default_rng(3))
    roots = outbreak.roots
    assert [r.id for r in roots] == [0, 1, 2, 3]
    assert all(r.infection_time == 0.0 for r in roots)
    assert outbreak.states[0].infected == 4


def test_invalid_parameters_rejected_before_simulating():
    bad = [
        dict(R0=0.0),
        dict(k=-1.0),
        dict(step_size=0.0),
        dict(recovery_rate=20.0),
        dict(initial_susceptible=6000),
        dict(max_attempts=0),
    ]
    for kwargs in bad:
        params = SimulationParameters(**kwargs)
        with pytest.raises(InvalidParameter):
            simulate_outbreak(params, seed=1)


def test_exhausted_retries_is_an_explicit_rejection():
    params = SimulationParameters(R0=0.01, k=0.5, population=1000, initial_susceptible=999,
                                  step_count=200, min_epidemic_size=50, max_attempts=3)
    result = simulate_outbreak(params, seed=5)
    assert not result.accepted
    assert result.status == "rejected"
    assert result.outbreak is None
    assert result.attempts == 3
    with pytest.raises(ExhaustedRetries):
        result.unwrap()


def test_zero_threshold_accepts_first_attempt():
    params = SimulationParameters(R0=0.01, population=100, initial_susceptible=99,
                                  step_count=50, min_epidemic_size=0, max_attempts=5)
    result = simulate_outbreak(params, seed=5)
    assert result.accepted
    assert result.attempts == 1
    assert result.unwrap().total_infected >= 1


def test_retries_reproducible_and_independent_of_workers():
    sequential = simulate_outbreak(SMALL, seed=99)
    again = simulate_outbreak(SMALL, seed=99)
    threaded = simulate_outbreak(SMALL, seed=99, workers=4)

    assert sequential.accepted
    assert sequential.attempts == again.attempts == threaded.attempts
    assert sequential.outbreak.individuals == again.outbreak.individuals
    assert sequential.outbreak.individuals == threaded.outbreak.individuals


def test_frames():
    outbreak = simulate_outbreak(SMALL, seed=1).unwrap()
    states = outbreak.states_frame()
    assert list(states.columns) == ["step", "time", "S", "I", "R"]
    assert (states[["S", "I", "R"]].sum(axis=1) == SMALL.population).all()

    inds = outbreak.individuals_frame()
    assert len(inds) == outbreak.total_infected
    assert inds["infector_id"].isna().sum() == len(outbreak.roots)


def test_end_to_end_scenario_is_deterministic(scenario):
    params, result = scenario
    assert result.accepted
    outbreak = result.outbreak
    assert outbreak.total_infected >= params.min_epidemic_size
    check_invariants(outbreak)

    repeat = simulate_outbreak(params, seed=20240601).unwrap()
    assert repeat.total_infected == outbreak.total_infected
    assert repeat.individuals[:5] == outbreak.individuals[:5]

    first = outbreak.individuals[0]
    assert first.id == 0 and first.infector_id is None and first.infection_time == 0.0
    assert outbreak.end_time == pytest.approx(150.0)


class RecordingGenerator(np.random.Generator):
    """Generator that logs each draw the simulator makes, one letter per draw."""

    def __init__(self, seed):
        super().__init__(np.random.PCG64(seed))
        self.calls = []

    def binomial(self, *args, **kwargs):
        self.calls.append("B")
        return super().binomial(*args, **kwargs)

    def choice(self, *args, **kwargs):
        self.calls.append("C")
        return super().choice(*args, **kwargs)

    def negative_binomial(self, *args, **kwargs):
        self.calls.append("N")
        return super().negative_binomial(*args, **kwargs)

    def dirichlet(self, *args, **kwargs):
        self.calls.append("D")
        return super().dirichlet(*args, **kwargs)

    def multinomial(self, *args, **kwargs):
        self.calls.append("M")
        return super().multinomial(*args, **kwargs)


def test_draw_order_per_step():
    """Each step draws recoveries, then who recovers, then infections, then the split"""
    params = SimulationParameters(population=400, initial_susceptible=390, step_count=300,
                                  min_epidemic_size=0, max_attempts=1)
    rng = RecordingGenerator(123)
    outbreak = simulate_attempt(params, rng)

    trace = "".join(rng.calls)
    assert trace.startswith("B")
    assert re.fullmatch(r"(B(CN?(DM)?)?)*", trace)
    # one recovery draw per step while anyone is infectious
    active_steps = sum(1 for s in outbreak.states[:-1] if s.infected > 0)
    assert trace.count("B") == active_steps
    assert trace.count("C") == sum(1 for a, b in zip(outbreak.states, outbreak.states[1:])
                                   if b.removed > a.removed)


def test_certain_recovery_without_susceptibles_gives_literal_records():
    params = SimulationParameters(R0=2.0, k=0.5, recovery_rate=1.0, population=4,
                                  initial_susceptible=0, step_size=1.0, step_count=3,
                                  min_epidemic_size=0, max_attempts=1)
    outbreak = simulate_attempt(params, np.random.default_rng(123))

    assert outbreak.individuals == tuple(Individual(i, None, 0.0, 1.0, 0) for i in range(4))
    assert outbreak.states == (
        EpidemicState(0, 0.0, 0, 4, 0),
        EpidemicState(1, 1.0, 0, 0, 4),
        EpidemicState(2, 2.0, 0, 0, 4),
        EpidemicState(3, 3.0, 0, 0, 4),
    )
