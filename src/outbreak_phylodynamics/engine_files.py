# src/outbreak_phylodynamics/engine_files.py
"""
Input files for the external particle-filter MCMC engine.

The engine reads tab-separated files:
  - parameter file: one row per parameter (value, estimated flag, transform,
    prior and proposal settings)
  - options file: key/value MCMC settings
  - initial-states file: S, I, R at the start of the simulation
  - data file: aligned incidence and coalescent series, one row per bin
and is launched with a fixed list of positional arguments (`engine_arguments`).
"""

from dataclasses import dataclass, asdict
from pathlib import Path
from typing import List, Sequence, Tuple
import logging

import numpy as np
import pandas as pd
from scipy import stats

from .errors import InvalidParameter

logger = logging.getLogger(__name__)

TRANSFORMS = ("identity", "inverse")
LIKELIHOOD_MODES = {0: "epi+genetic", 1: "epi only", 2: "genetic only"}


def _prior(family, params):
    # scipy parameterisations of the supported prior families
    if family == "uniform":
        lo, hi = params
        return stats.uniform(loc=lo, scale=hi - lo)
    if family == "normal":
        mu, sd = params
        return stats.norm(loc=mu, scale=sd)
    if family == "lognormal":
        mu, sd = params
        return stats.lognorm(s=sd, scale=np.exp(mu))
    if family == "gamma":
        shape, scale = params
        return stats.gamma(a=shape, scale=scale)
    raise InvalidParameter(f"Unknown prior family '{family}'")


@dataclass
class ParameterSpec:
    name: str
    value: float
    estimate: bool = False
    transform: str = "identity"
    prior: str = "uniform"
    prior_params: Tuple[float, float] = (0.0, 1.0)
    proposal_sd: float = 0.0
    lower: float = -np.inf
    upper: float = np.inf

    def prior_distribution(self):
        return _prior(self.prior, self.prior_params)

    def validate(self) -> None:
        if self.transform not in TRANSFORMS:
            raise InvalidParameter(f"{self.name}: transform must be one of {TRANSFORMS}")
        if self.transform == "inverse" and self.value == 0:
            raise InvalidParameter(f"{self.name}: inverse transform of zero")
        if not self.lower <= self.value <= self.upper:
            raise InvalidParameter(f"{self.name}: value {self.value} outside [{self.lower}, {self.upper}]")
        if self.proposal_sd < 0:
            raise InvalidParameter(f"{self.name}: proposal sd must be >= 0")
        if self.estimate and self.prior_distribution().pdf(self.value) <= 0:
            raise InvalidParameter(f"{self.name}: initial value has zero prior density")


@dataclass
class McmcOptions:
    particles: int = 1000
    iterations: int = 10000
    log_interval: int = 10
    resampling_interval: int = 10
    likelihood_mode: int = 0
    ess_threshold: float = 0.5
    threads: int = 1
    trace_file: str = "mcmc_trace.tsv"
    trajectory_file: str = "mcmc_trajectories.tsv"
    log_file: str = "mcmc_log.txt"

    def validate(self) -> None:
        if self.likelihood_mode not in LIKELIHOOD_MODES:
            raise InvalidParameter(f"Likelihood mode must be one of {sorted(LIKELIHOOD_MODES)}")
        for name in ("particles", "iterations", "log_interval", "resampling_interval", "threads"):
            if getattr(self, name) < 1:
                raise InvalidParameter(f"{name} must be >= 1")
        if not 0.0 <= self.ess_threshold <= 1.0:
            raise InvalidParameter("ESS threshold must be a fraction in [0, 1]")


def default_parameter_specs(params) -> List[ParameterSpec]:
    """R0, k and Tg estimated; population size fixed.

    Uniform priors on R0 and k reach at least twice the starting value.
    """
    r0_max = max(10.0, 2.0 * params.R0)
    k_max = max(5.0, 2.0 * params.k)
    return [
        ParameterSpec("R0", params.R0, estimate=True, prior="uniform",
                      prior_params=(0.0, r0_max), proposal_sd=0.1, lower=0.0, upper=r0_max),
        ParameterSpec("k", params.k, estimate=True, prior="uniform",
                      prior_params=(0.0, k_max), proposal_sd=0.05, lower=0.0, upper=k_max),
        # engine works with the rate 1/Tg
        ParameterSpec("Tg", params.generation_time, estimate=True, transform="inverse",
                      prior="gamma", prior_params=(5.0, params.generation_time / 5.0),
                      proposal_sd=0.2, lower=0.0),
        ParameterSpec("N", float(params.population), estimate=False, prior="uniform",
                      prior_params=(0.0, float(params.population) * 10), lower=0.0),
    ]


def write_parameter_file(specs: Sequence[ParameterSpec], path) -> Path:
    rows = []
    for spec in specs:
        spec.validate()
        row = asdict(spec)
        row["estimate"] = int(spec.estimate)
        row["prior_param1"], row["prior_param2"] = spec.prior_params
        del row["prior_params"]
        rows.append(row)
    df = pd.DataFrame(rows, columns=["name", "value", "estimate", "transform", "prior",
                                     "prior_param1", "prior_param2", "proposal_sd", "lower", "upper"])
    return _write(df, path)


def write_options_file(options: McmcOptions, path) -> Path:
    options.validate()
    df = pd.DataFrame(list(asdict(options).items()), columns=["option", "value"])
    return _write(df, path)


def write_initial_states(state, path) -> Path:
    """`state` is an EpidemicState (or anything with susceptible/infected/removed)."""
    df = pd.DataFrame([{"S": state.susceptible, "I": state.infected, "R": state.removed}])
    return _write(df, path)


def write_data_file(aligned, path) -> Path:
    return _write(aligned.to_frame(), path)


def _write(df: pd.DataFrame, path) -> Path:
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(out, sep="\t", index=False, na_rep="NA")
    logger.info("Wrote %s (%d rows)", out, len(df))
    return out


def engine_arguments(parameter_file, replicates, total_steps, step_size, aggregation_factor,
                     subpopulations, seed, threads, initial_states_file, output_file) -> List[str]:
    """Positional command-line arguments of the inference engine, in order."""
    if replicates < 1 or total_steps < 1 or aggregation_factor < 1 or subpopulations < 1 or threads < 1:
        raise InvalidParameter("Replicates, steps, aggregation factor, subpopulations and threads must be >= 1")
    if step_size <= 0:
        raise InvalidParameter("Step size must be > 0")
    return [
        str(parameter_file),
        str(int(replicates)),
        str(int(total_steps)),
        repr(float(step_size)),
        str(int(aggregation_factor)),
        str(int(subpopulations)),
        str(int(seed)),
        str(int(threads)),
        str(initial_states_file),
        str(output_file),
    ]
