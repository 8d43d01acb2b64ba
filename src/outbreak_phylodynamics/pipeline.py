# src/outbreak_phylodynamics/pipeline.py
"""
Simulate an outbreak and turn it into aligned epidemiological/genetic data.

simulate -> downsample -> phylogeny (restricted to the sample) ->
coalescent intervals -> aggregate + discretize -> align -> engine files
"""

from dataclasses import dataclass, field, replace
from typing import Dict, Optional
import logging
import pathlib

import numpy as np
from numpy.random import default_rng

from .simulate.outbreak import SimulationParameters, Outbreak, simulate_outbreak
from .phylogeny.phylogeny import Phylogeny, build_phylogeny, restrict_to_tips
from .phylogeny.coalescent import CoalescentIntervals, DiscretizedCoalescent, extract_intervals, discretize
from .timeseries.aggregate import TimeSeries, aggregate, recovery_times
from .timeseries.downsample import SampledSubset, sample, subset_individuals
from .timeseries.align import AlignedData, align, epi_only
from . import engine_files

logger = logging.getLogger(__name__)


@dataclass
class SimConfig:
    R0: float = 2.0
    k: float = 0.5
    recovery_rate: float = 0.2
    population: int = 5000
    initial_susceptible: int = 4999
    step_size: float = 0.1
    step_count: int = 1500
    min_epidemic_size: int = 20
    max_attempts: int = 100
    seed: Optional[int] = None
    workers: int = 1
    sampling_strategy: str = "proportional"
    sampling_probability: float = 0.01
    sample_size: Optional[int] = None
    # case reports use every removal unless this is set
    downsample_epi: bool = False
    aggregation_factor: int = 10
    out_dir: str = "data/engine_input"
    options: engine_files.McmcOptions = field(default_factory=engine_files.McmcOptions)

    @property
    def aggregation_step(self) -> float:
        return self.step_size * self.aggregation_factor

    def parameters(self) -> SimulationParameters:
        return SimulationParameters(
            R0=self.R0,
            k=self.k,
            recovery_rate=self.recovery_rate,
            population=self.population,
            initial_susceptible=self.initial_susceptible,
            step_size=self.step_size,
            step_count=self.step_count,
            min_epidemic_size=self.min_epidemic_size,
            max_attempts=self.max_attempts,
        )


@dataclass
class PipelineResult:
    outbreak: Outbreak
    subset: SampledSubset
    phylogeny: Phylogeny
    sampled_phylogeny: Phylogeny
    # None when nothing was sampled
    intervals: Optional[CoalescentIntervals]
    epi: TimeSeries
    gen: Optional[DiscretizedCoalescent]
    aligned: AlignedData


def run_pipeline(cfg: SimConfig) -> PipelineResult:
    """Run every stage for one configuration

    Raises ExhaustedRetries if no attempt reaches the minimum epidemic size and
    DataInconsistency if the sample cannot be turned into aligned data.
    """
    params = cfg.parameters()
    params.validate()

    # Separate streams for the simulation attempts and for downsampling
    sim_seed, sample_seed = np.random.SeedSequence(cfg.seed).spawn(2)

    outbreak = simulate_outbreak(params, seed=sim_seed, workers=cfg.workers).unwrap()

    subset = sample(
        outbreak.individuals,
        strategy=cfg.sampling_strategy,
        probability=cfg.sampling_probability,
        rng=default_rng(sample_seed),
        size=cfg.sample_size,
    )
    logger.info("Sampled %d of %d infected individuals", subset.total_sampled, outbreak.total_infected)

    phylogeny = build_phylogeny(outbreak.individuals, end_time=outbreak.end_time)
    sampled = restrict_to_tips(phylogeny, subset.ids)

    step = cfg.aggregation_step
    reporters = subset_individuals(outbreak.individuals, subset) if cfg.downsample_epi else outbreak.individuals
    epi = aggregate(recovery_times(reporters), step)

    if sampled.is_empty:
        logger.warning("No individuals sampled; writing epidemiological data only")
        return PipelineResult(outbreak, subset, phylogeny, sampled, None, epi, None, epi_only(epi))

    intervals = extract_intervals(sampled)
    gen = discretize(intervals, step)
    aligned = align(epi, gen, intervals.last_tip_time, step)

    return PipelineResult(outbreak, subset, phylogeny, sampled, intervals, epi, gen, aligned)


def write_engine_inputs(result: PipelineResult, cfg: SimConfig) -> Dict[str, pathlib.Path]:
    """Write parameter, options, initial-state and data files into cfg.out_dir."""
    out = pathlib.Path(cfg.out_dir)
    out.mkdir(parents=True, exist_ok=True)
    params = result.outbreak.parameters
    options = cfg.options
    if result.gen is None and options.likelihood_mode != 1:
        logger.warning("No genetic data; switching the likelihood mode from %d to 1 (epi only)",
                       options.likelihood_mode)
        options = replace(options, likelihood_mode=1)

    paths = {
        "parameters": engine_files.write_parameter_file(
            engine_files.default_parameter_specs(params), out / "parameters.tsv"),
        "options": engine_files.write_options_file(options, out / "mcmc_options.tsv"),
        "initial_states": engine_files.write_initial_states(
            result.outbreak.states[0], out / "initial_states.tsv"),
        "data": engine_files.write_data_file(result.aligned, out / "data.tsv"),
    }
    logger.info("Engine inputs written to %s", out)
    return paths
