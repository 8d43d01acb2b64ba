# src/outbreak_phylodynamics/simulate/outbreak.py
"""
Discrete-time stochastic SIR outbreak with individual-level bookkeeping.

Each step removes Binomial(I, gamma*dt) infected individuals; every removed
individual transmits at removal, the step's NegBin offspring total being split
among them. The ordered registry of Individuals is the only record of who
infected whom; trees and series are derived from it elsewhere.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Optional, Tuple
import logging

import numpy as np
import pandas as pd
from numpy.random import default_rng

from ..errors import InvalidParameter, ExhaustedRetries
from .random_process import draw_recoveries, draw_infections, allocate_offspring

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SimulationParameters:
    R0: float = 2.0
    k: float = 0.5
    recovery_rate: float = 0.2
    population: int = 5000
    initial_susceptible: int = 4999
    step_size: float = 0.1
    step_count: int = 1500
    min_epidemic_size: int = 20
    max_attempts: int = 100

    @property
    def initial_infected(self) -> int:
        return self.population - self.initial_susceptible

    @property
    def generation_time(self) -> float:
        return 1.0 / self.recovery_rate

    def validate(self) -> None:
        """Raise InvalidParameter before any simulation work is done."""
        if self.R0 <= 0:
            raise InvalidParameter("R0 must be > 0")
        if self.k <= 0:
            raise InvalidParameter("Dispersion k must be > 0")
        if self.recovery_rate <= 0:
            raise InvalidParameter("Recovery rate must be > 0")
        if self.step_size <= 0:
            raise InvalidParameter("Step size must be > 0")
        if not 0.0 <= self.recovery_rate * self.step_size <= 1.0:
            raise InvalidParameter("recovery_rate * step_size must be a probability in [0, 1]")
        if self.population < 1:
            raise InvalidParameter("Population size must be >= 1")
        if not 0 <= self.initial_susceptible <= self.population:
            raise InvalidParameter("Initial susceptible count must lie in [0, population]")
        if self.step_count < 1:
            raise InvalidParameter("Step count must be >= 1")
        if self.min_epidemic_size < 0:
            raise InvalidParameter("Minimum epidemic size must be >= 0")
        if self.max_attempts < 1:
            raise InvalidParameter("max_attempts must be >= 1")


@dataclass(frozen=True)
class EpidemicState:
    step: int
    time: float
    susceptible: int
    infected: int
    removed: int


@dataclass(frozen=True)
class Individual:
    id: int
    infector_id: Optional[int]
    infection_time: float
    recovery_time: Optional[float]
    offspring_count: int = 0

    @property
    def is_root(self) -> bool:
        return self.infector_id is None


@dataclass(frozen=True)
class Outbreak:
    parameters: SimulationParameters
    states: Tuple[EpidemicState, ...]
    individuals: Tuple[Individual, ...]
    accepted: bool
    attempt: int = 1

    @property
    def total_infected(self) -> int:
        return len(self.individuals)

    @property
    def roots(self) -> Tuple[Individual, ...]:
        return tuple(ind for ind in self.individuals if ind.is_root)

    @property
    def end_time(self) -> float:
        return self.states[-1].time

    def states_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            [(s.step, s.time, s.susceptible, s.infected, s.removed) for s in self.states],
            columns=["step", "time", "S", "I", "R"],
        )

    def individuals_frame(self) -> pd.DataFrame:
        # pandas turns the None infector of index cases into NaN; keep a nullable int column
        df = pd.DataFrame(
            [(i.id, i.infector_id, i.infection_time, i.recovery_time, i.offspring_count)
             for i in self.individuals],
            columns=["id", "infector_id", "infection_time", "recovery_time", "offspring_count"],
        )
        df["infector_id"] = df["infector_id"].astype("Int64")
        return df


@dataclass(frozen=True)
class SimulationResult:
    """Tagged result of the retry loop: accepted with an outbreak, or rejected."""
    accepted: bool
    outbreak: Optional[Outbreak]
    attempts: int
    min_epidemic_size: int = 0

    @property
    def status(self) -> str:
        return "accepted" if self.accepted else "rejected"

    def unwrap(self) -> Outbreak:
        if not self.accepted:
            raise ExhaustedRetries(self.attempts, self.min_epidemic_size)
        return self.outbreak


def simulate_attempt(params: SimulationParameters, rng: np.random.Generator, attempt: int = 1) -> Outbreak:
    """Run one full outbreak of `params.step_count` steps

    Returns an Outbreak whose `accepted` flag records whether it reached
    `params.min_epidemic_size` infections.
    """
    params.validate()

    N = params.population
    S = params.initial_susceptible
    I = params.initial_infected
    R = 0

    # Registry columns; index == individual id
    infector = [None] * I
    infection_time = [0.0] * I
    recovery_time = [None] * I
    # Currently infectious ids; stays sorted because new ids are always larger
    infectious = list(range(I))

    states = [EpidemicState(0, 0.0, S, I, R)]

    for step in range(1, params.step_count + 1):
        t = step * params.step_size

        n_rec = draw_recoveries(len(infectious), params.recovery_rate, params.step_size, rng) if infectious else 0

        if n_rec > 0:
            recovering = np.sort(rng.choice(np.asarray(infectious), size=n_rec, replace=False))
            new_cases = draw_infections(
                n_rec, params.R0, params.k, S / N, rng, susceptible=S,
            )
            offspring = allocate_offspring(new_cases, recovering, params.k, rng)

            removed = set(int(i) for i in recovering)
            infectious = [i for i in infectious if i not in removed]
            for src in recovering:
                src = int(src)
                recovery_time[src] = t
                for _ in range(offspring[src]):
                    infectious.append(len(infector))
                    infector.append(src)
                    infection_time.append(t)
                    recovery_time.append(None)

            S -= new_cases
            I += new_cases - n_rec
            R += n_rec

        states.append(EpidemicState(step, t, S, I, R))

    total = len(infector)
    counts = np.bincount(np.asarray([src for src in infector if src is not None], dtype=int), minlength=total)
    individuals = tuple(
        Individual(
            id=i,
            infector_id=infector[i],
            infection_time=infection_time[i],
            recovery_time=recovery_time[i],
            offspring_count=int(counts[i]),
        )
        for i in range(total)
    )

    accepted = total >= params.min_epidemic_size
    logger.debug("Attempt %d: %d infected (%s)", attempt, total, "accepted" if accepted else "extinct")
    return Outbreak(
        parameters=params,
        states=tuple(states),
        individuals=individuals,
        accepted=accepted,
        attempt=attempt,
    )


def _seed_sequence(seed):
    if isinstance(seed, np.random.SeedSequence):
        return seed
    return np.random.SeedSequence(seed)


def simulate_outbreak(params: SimulationParameters, seed=None, workers: int = 1) -> SimulationResult:
    """Retry `simulate_attempt` until an outbreak reaches the minimum size

    Attempt i draws from the i-th child of SeedSequence(seed), so results are
    reproducible and do not depend on `workers`. With workers > 1 attempts are
    run in batches on a thread pool; the first accepted attempt in attempt
    order is returned.
    """
    params.validate()
    children = _seed_sequence(seed).spawn(params.max_attempts)

    def run(attempt):
        return simulate_attempt(params, default_rng(children[attempt - 1]), attempt)

    attempts = range(1, params.max_attempts + 1)

    if workers <= 1:
        for attempt in attempts:
            outbreak = run(attempt)
            if outbreak.accepted:
                logger.info("Outbreak accepted on attempt %d with %d infected", attempt, outbreak.total_infected)
                return SimulationResult(True, outbreak, attempt, params.min_epidemic_size)
    else:
        with ThreadPoolExecutor(max_workers=workers) as pool:
            for start in range(0, params.max_attempts, workers):
                batch = attempts[start:start + workers]
                for outbreak in pool.map(run, batch):
                    if outbreak.accepted:
                        logger.info("Outbreak accepted on attempt %d with %d infected",
                                    outbreak.attempt, outbreak.total_infected)
                        return SimulationResult(True, outbreak, outbreak.attempt, params.min_epidemic_size)

    logger.info("No outbreak reached %d infections in %d attempts",
                params.min_epidemic_size, params.max_attempts)
    return SimulationResult(False, None, params.max_attempts, params.min_epidemic_size)
