# src/outbreak_phylodynamics/timeseries/align.py
# Put the incidence series and the discretized coalescent series on one time axis.
from dataclasses import dataclass
import logging
import math

import numpy as np
import pandas as pd

from ..errors import DataInconsistency, InvalidParameter
from ..phylogeny.coalescent import DiscretizedCoalescent
from .aggregate import TimeSeries, bin_index

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AlignedData:
    """Epi and genetic series sharing the absolute bin axis `bin_index`.

    Padded genetic bins carry zero events and an undefined (NaN) lineage count.
    """
    bin_index: np.ndarray
    incidence: np.ndarray
    coalescent_events: np.ndarray
    sampled: np.ndarray
    lineages: np.ndarray
    step_size: float
    last_tip_time: float

    @property
    def bin_start(self) -> np.ndarray:
        return self.bin_index * self.step_size

    @property
    def epi(self) -> TimeSeries:
        return TimeSeries(self.bin_index, self.incidence, self.step_size)

    @property
    def gen(self) -> DiscretizedCoalescent:
        return DiscretizedCoalescent(self.bin_index, self.coalescent_events, self.sampled,
                                     self.lineages, self.step_size)

    def __len__(self):
        return len(self.bin_index)

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({
            "time": self.bin_start,
            "incidence": self.incidence,
            "coalescent_events": self.coalescent_events,
            "sampled": self.sampled,
            "lineages": self.lineages,
        })


def align(epi: TimeSeries, gen: DiscretizedCoalescent, last_tip_time: float, step_size: float) -> AlignedData:
    """Align incidence and coalescent series

    Args:
        epi: incidence series on the absolute grid (bins of the epidemic clock)
        gen: discretized coalescent series, bin 0 holding the most recent tip
        last_tip_time (float): time of the most recent genetic sample since the
            epidemic start
        step_size (float): shared bin width
    Returns:
        AlignedData from the first epi bin to the later of the two last bins
    Raises:
        InvalidParameter, DataInconsistency
    """
    if step_size <= 0:
        raise InvalidParameter("Step size must be > 0")
    for name, series in (("epidemiological", epi), ("genetic", gen)):
        if not math.isclose(series.step_size, step_size):
            raise DataInconsistency(
                f"The {name} series uses step {series.step_size}, expected {step_size}"
            )
        if len(series) == 0:
            raise DataInconsistency(f"The {name} series is empty")

    offset = int(bin_index(last_tip_time, step_size))
    gen_abs = gen.bin_index + offset

    e0, e1 = int(epi.bin_index[0]), int(epi.bin_index[-1])
    g0, g1 = int(gen_abs[0]), int(gen_abs[-1])
    # a genetic series starting after the last case report is padded, not rejected
    if g1 < e0:
        raise DataInconsistency(
            f"Genetic bins [{g0}, {g1}] all precede the epidemiological series starting at bin {e0}"
        )

    axis = np.arange(e0, max(e1, g1) + 1, dtype=np.int64)
    width = len(axis)

    incidence = np.zeros(width, dtype=np.int64)
    incidence[epi.bin_index - e0] = epi.counts

    keep = gen_abs >= e0
    if not keep.all():
        logger.warning("Trimmed %d genetic bins (%d coalescent events) preceding the epidemic series",
                       int((~keep).sum()), int(gen.coalescent_events[~keep].sum()))
    pos = gen_abs[keep] - e0
    coal = np.zeros(width, dtype=np.int64)
    sampled = np.zeros(width, dtype=np.int64)
    lineages = np.full(width, np.nan)
    coal[pos] = gen.coalescent_events[keep]
    sampled[pos] = gen.sampled[keep]
    lineages[pos] = gen.lineages[keep]

    logger.debug("Aligned %d bins starting at bin %d (genetic offset %d)", width, e0, offset)
    return AlignedData(axis, incidence, coal, sampled, lineages, float(step_size), float(last_tip_time))


def epi_only(epi: TimeSeries) -> AlignedData:
    """Incidence with an empty genetic column: zero events and NaN lineage counts."""
    if len(epi) == 0:
        raise DataInconsistency("The epidemiological series is empty")
    width = len(epi)
    return AlignedData(
        np.asarray(epi.bin_index, dtype=np.int64),
        np.asarray(epi.counts, dtype=np.int64),
        np.zeros(width, dtype=np.int64),
        np.zeros(width, dtype=np.int64),
        np.full(width, np.nan),
        float(epi.step_size),
        math.nan,
    )
