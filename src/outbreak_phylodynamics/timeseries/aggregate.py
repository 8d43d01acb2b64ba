# src/outbreak_phylodynamics/timeseries/aggregate.py
# Bucket event times into fixed-width bins -> incidence series.
from dataclasses import dataclass
from typing import Iterable

import numpy as np
import pandas as pd

from ..errors import InvalidParameter

# Times such as 7 * 0.1 land a hair below the bin edge in floating point
_EDGE_TOL = 1e-9


def bin_index(times, step_size):
    """Bin index floor(t / step_size) of each time, shared by every series."""
    if step_size <= 0:
        raise InvalidParameter("Step size must be > 0")
    t = np.asarray(times, dtype=float)
    return np.floor(t / step_size + _EDGE_TOL).astype(np.int64)


@dataclass(frozen=True)
class TimeSeries:
    bin_index: np.ndarray
    counts: np.ndarray
    step_size: float

    @property
    def bin_start(self) -> np.ndarray:
        return self.bin_index * self.step_size

    @property
    def total(self) -> int:
        return int(self.counts.sum())

    def __len__(self):
        return len(self.counts)

    def pairs(self):
        """(bin start, count) pairs in time order."""
        return list(zip(self.bin_start.tolist(), self.counts.tolist()))

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({"bin": self.bin_index, "time": self.bin_start, "count": self.counts})


def aggregate(times: Iterable[float], step_size: float) -> TimeSeries:
    """Count events per bin

    Args:
        times: event timestamps (any order)
        step_size (float): bin width, > 0
    Returns:
        TimeSeries covering every bin from the earliest to the latest event,
        zero-count bins included; counts sum to len(times)
    Raises:
        InvalidParameter
    """
    if step_size <= 0:
        raise InvalidParameter("Step size must be > 0")
    t = np.asarray(list(times), dtype=float)
    if t.size == 0:
        return TimeSeries(np.zeros(0, dtype=np.int64), np.zeros(0, dtype=np.int64), float(step_size))
    if not np.all(np.isfinite(t)):
        raise InvalidParameter("Event times must be finite")

    idx = bin_index(t, step_size)
    lo, hi = int(idx.min()), int(idx.max())
    counts = np.bincount(idx - lo, minlength=hi - lo + 1).astype(np.int64)
    return TimeSeries(np.arange(lo, hi + 1, dtype=np.int64), counts, float(step_size))


def recovery_times(individuals):
    """Removal (report) times of individuals that recovered during the run."""
    return [ind.recovery_time for ind in individuals if ind.recovery_time is not None]


def infection_times(individuals):
    return [ind.infection_time for ind in individuals]
