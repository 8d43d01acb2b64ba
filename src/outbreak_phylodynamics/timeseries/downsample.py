# src/outbreak_phylodynamics/timeseries/downsample.py
# Select the infected individuals that end up in the case/sequence data.
from dataclasses import dataclass, field
from typing import Callable, Dict, FrozenSet, Optional, Sequence, Tuple

import numpy as np

from ..errors import InvalidParameter


@dataclass(frozen=True)
class SampledSubset:
    ids: Tuple[int, ...]
    strategy: str
    _members: FrozenSet[int] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "_members", frozenset(self.ids))

    @property
    def total_sampled(self) -> int:
        return len(self.ids)

    def __contains__(self, ind_id) -> bool:
        return ind_id in self._members

    def __len__(self):
        return len(self.ids)


def _check_probability(probability):
    if probability is None or not 0.0 <= probability <= 1.0:
        raise InvalidParameter(f"Sampling probability must be in [0, 1], got {probability}")


def _proportional(ids, rng, probability=None, size=None):
    _check_probability(probability)
    keep = rng.random(len(ids)) < probability
    return ids[keep]


def _fixed(ids, rng, probability=None, size=None):
    if size is None or size < 0:
        raise InvalidParameter("Fixed-count sampling needs a size >= 0")
    if size > len(ids):
        raise InvalidParameter(f"Cannot sample {size} of {len(ids)} individuals without replacement")
    return rng.choice(ids, size=size, replace=False)


def _all(ids, rng, probability=None, size=None):
    return ids


STRATEGIES: Dict[str, Callable] = {
    "proportional": _proportional,
    "fixed": _fixed,
    "all": _all,
}


def register_strategy(name: str, func: Callable) -> None:
    """Add a sampling strategy func(ids, rng, probability=..., size=...) -> ids."""
    STRATEGIES[name] = func


def sample(individuals: Sequence, strategy: str = "proportional",
           probability: Optional[float] = None, rng: Optional[np.random.Generator] = None,
           size: Optional[int] = None) -> SampledSubset:
    """Downsample infected individuals

    Args:
        individuals: Individuals (or plain ids)
        strategy: "proportional" (each kept with `probability`), "fixed"
            (`size` drawn uniformly without replacement) or "all"
        rng: seeded random source; a fresh default_rng() when omitted
    Returns:
        SampledSubset with ids in ascending order (possibly empty)
    Raises:
        InvalidParameter
    """
    if strategy not in STRATEGIES:
        raise InvalidParameter(f"Unknown sampling strategy '{strategy}'; choose from {sorted(STRATEGIES)}")
    if strategy == "proportional":
        _check_probability(probability)
    if rng is None:
        rng = np.random.default_rng()

    ids = np.array([getattr(ind, "id", ind) for ind in individuals], dtype=np.int64)
    chosen = STRATEGIES[strategy](ids, rng, probability=probability, size=size)
    return SampledSubset(tuple(int(i) for i in np.sort(chosen)), strategy)


def subset_individuals(individuals: Sequence, subset: SampledSubset):
    return [ind for ind in individuals if ind.id in subset]
