# src/outbreak_phylodynamics/phylogeny/coalescent.py
"""
Coalescent intervals of a dated phylogeny.

Heights are measured backward from the most recent tip (height 0). Walking
from the present toward the root, every tip adds a lineage and every internal
node merges two lineages into one, so a single tree ends with exactly one
lineage at its root.
"""

from dataclasses import dataclass
from typing import List, Tuple

import numpy as np
import pandas as pd

from ..errors import DataInconsistency
from ..timeseries.aggregate import bin_index
from .phylogeny import Phylogeny


@dataclass(frozen=True)
class CoalescentIntervals:
    """Events ordered from the present to the root.

    Attributes:
        heights: event heights, non-decreasing
        is_coalescent: True for internal nodes, False for sampled tips
        lineages: lineage count just past each event (walking backward)
        last_tip_time: clock time of the most recent tip
    """
    heights: np.ndarray
    is_coalescent: np.ndarray
    lineages: np.ndarray
    last_tip_time: float

    @property
    def lengths(self) -> np.ndarray:
        """Length of the interval between each pair of consecutive events."""
        return np.diff(self.heights)

    @property
    def interval_lineages(self) -> np.ndarray:
        return self.lineages[:-1]

    @property
    def tmrca_height(self) -> float:
        return float(self.heights[-1])

    @property
    def tmrca(self) -> float:
        """Root time on the simulation clock."""
        return self.last_tip_time - self.tmrca_height

    @property
    def coalescent_heights(self) -> np.ndarray:
        return self.heights[self.is_coalescent]

    @property
    def sampling_heights(self) -> np.ndarray:
        return self.heights[~self.is_coalescent]

    def intervals(self) -> List[Tuple[float, int]]:
        """(interval length, lineage count) pairs from the present to the root."""
        return list(zip(self.lengths.tolist(), self.interval_lineages.tolist()))

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({
            "height": self.heights,
            "event": np.where(self.is_coalescent, "coalescent", "sample"),
            "lineages": self.lineages,
        })


@dataclass(frozen=True)
class DiscretizedCoalescent:
    """Coalescent and sampling events per bin, bin 0 holding the most recent tip.

    `lineages[j]` is the number of lineages at the start of bin j.
    """
    bin_index: np.ndarray
    coalescent_events: np.ndarray
    sampled: np.ndarray
    lineages: np.ndarray
    step_size: float

    @property
    def bin_start(self) -> np.ndarray:
        return self.bin_index * self.step_size

    def __len__(self):
        return len(self.bin_index)

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({
            "bin": self.bin_index,
            "time": self.bin_start,
            "coalescent_events": self.coalescent_events,
            "sampled": self.sampled,
            "lineages": self.lineages,
        })


def extract_intervals(phylogeny: Phylogeny) -> CoalescentIntervals:
    """Walk the dated phylogeny from the most recent tip to the root

    Raises:
        DataInconsistency: empty phylogeny or a forest
    """
    if phylogeny.is_empty:
        raise DataInconsistency("Cannot extract coalescent intervals from an empty phylogeny")
    if phylogeny.is_forest:
        raise DataInconsistency(
            f"Phylogeny has {len(phylogeny.roots)} roots; coalescent intervals need a single tree"
        )

    last = phylogeny.last_tip_time
    # At equal heights tips go first, so the lineage count never drops below one
    events = sorted((last - node.time, not node.is_tip) for node in phylogeny.nodes)
    heights = np.array([h for h, _ in events], dtype=float)
    is_coal = np.array([c for _, c in events], dtype=bool)
    lineages = np.cumsum(np.where(is_coal, -1, 1)).astype(np.int64)

    if lineages[-1] != 1:
        raise DataInconsistency(f"Phylogeny does not coalesce to a single root ({lineages[-1]} lineages left)")

    return CoalescentIntervals(heights, is_coal, lineages, float(last))


def discretize(intervals: CoalescentIntervals, step_size: float) -> DiscretizedCoalescent:
    """Map coalescent and sampling events onto bins of width `step_size`

    Events are binned on the same absolute grid as `aggregate` and numbered
    relative to the bin of the most recent tip, so adding that bin's index
    back (see `align`) recovers the absolute bins exactly.
    """
    anchor = int(bin_index(intervals.last_tip_time, step_size))
    idx = bin_index(intervals.last_tip_time - intervals.heights, step_size) - anchor
    lo = int(idx.min())
    width = -lo + 1
    coal = np.bincount(idx[intervals.is_coalescent] - lo, minlength=width).astype(np.int64)
    sampled = np.bincount(idx[~intervals.is_coalescent] - lo, minlength=width).astype(np.int64)

    # Forward in time a coalescent event splits one lineage into two and a
    # sample ends one; the earliest bin starts on the root lineage alone
    lineages = np.empty(width, dtype=np.int64)
    lineages[0] = 1
    lineages[1:] = 1 + np.cumsum(coal - sampled)[:-1]

    return DiscretizedCoalescent(
        np.arange(lo, 1, dtype=np.int64), coal, sampled, lineages, float(step_size),
    )


def lineages_through_time(intervals: CoalescentIntervals, heights) -> np.ndarray:
    """Number of lineages at each requested height (backward from the last tip)."""
    h = np.asarray(heights, dtype=float)
    n_samples = np.searchsorted(np.sort(intervals.sampling_heights), h, side="right")
    n_coal = np.searchsorted(np.sort(intervals.coalescent_heights), h, side="right")
    return (n_samples - n_coal).astype(np.int64)
