#!/usr/bin/env python3
# src/outbreak_phylodynamics/runner.py - CLI for the simulation pipeline
#
#   python -m outbreak_phylodynamics.runner simulate --seed 42 --out-dir data/run1
#   python -m outbreak_phylodynamics.runner engine-args --out-dir data/run1 --seed 42

import argparse
import logging
import pathlib
import sys
import time

from .errors import DataInconsistency, ExhaustedRetries, InvalidParameter
from .pipeline import SimConfig, run_pipeline, write_engine_inputs
from .engine_files import McmcOptions, engine_arguments
from .timeseries.downsample import STRATEGIES


def add_model_args(p):
    p.add_argument("--R0", type=float, default=2.0, help="Basic reproduction number (default: 2.0)")
    p.add_argument("--k", type=float, default=0.5, help="Offspring dispersion (default: 0.5)")
    p.add_argument("--recovery-rate", type=float, default=0.2, help="1/Tg (default: 0.2)")
    p.add_argument("--population", type=int, default=5000, metavar="N", help="Population size (default: 5000)")
    p.add_argument("--initial-susceptible", type=int, default=None, metavar="S0",
                   help="Initial susceptibles (default: N - 1)")
    p.add_argument("--step-size", type=float, default=0.1, help="Simulation step dt (default: 0.1)")
    p.add_argument("--steps", type=int, default=1500, help="Number of steps (default: 1500)")
    p.add_argument("--aggregation-factor", type=int, default=10,
                   help="Simulation steps per data bin (default: 10)")
    p.add_argument("--seed", type=int, default=42, metavar="SEED", help="RNG seed (default: 42)")
    p.add_argument("--out-dir", default="data/engine_input", metavar="PATH",
                   help="Directory for engine input files (default: data/engine_input)")


def config_from_args(args) -> SimConfig:
    s0 = args.initial_susceptible if args.initial_susceptible is not None else args.population - 1
    return SimConfig(
        R0=args.R0,
        k=args.k,
        recovery_rate=args.recovery_rate,
        population=args.population,
        initial_susceptible=s0,
        step_size=args.step_size,
        step_count=args.steps,
        aggregation_factor=args.aggregation_factor,
        seed=args.seed,
        out_dir=args.out_dir,
        min_epidemic_size=args.min_epidemic_size,
        max_attempts=args.max_attempts,
        workers=args.workers,
        sampling_strategy=args.sampling_strategy,
        sampling_probability=args.sampling_probability,
        sample_size=args.sample_size,
        downsample_epi=args.downsample_epi,
    )


def main(argv=None):
    p = argparse.ArgumentParser(description="Outbreak simulation and phylodynamic data pipeline")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = p.add_subparsers(dest="cmd", required=True)

    # ---------- simulate ----------
    sim_p = sub.add_parser("simulate", help="Simulate an outbreak and write engine input files")
    add_model_args(sim_p)
    sim_p.add_argument("--min-epidemic-size", type=int, default=20)
    sim_p.add_argument("--max-attempts", type=int, default=100)
    sim_p.add_argument("--workers", type=int, default=1, help="Threads for retry attempts")
    sim_p.add_argument("--sampling-strategy", default="proportional", choices=sorted(STRATEGIES),
                       help="Downsampling strategy (default: proportional)")
    sim_p.add_argument("--sampling-probability", type=float, default=0.01)
    sim_p.add_argument("--sample-size", type=int, default=None, help="Sample size for the fixed strategy")
    sim_p.add_argument("--downsample-epi", action="store_true",
                       help="Build the case series from sampled individuals only")
    sim_p.add_argument("--particles", type=int, default=1000)
    sim_p.add_argument("--iterations", type=int, default=10000)
    sim_p.add_argument("--likelihood-mode", type=int, default=0, choices=(0, 1, 2),
                       help="0=epi+genetic, 1=epi only, 2=genetic only")
    sim_p.add_argument("--threads", type=int, default=1)

    # ---------- engine-args ----------
    eng_p = sub.add_parser("engine-args", help="Print the engine's positional arguments")
    add_model_args(eng_p)
    eng_p.add_argument("--replicates", type=int, default=1)
    eng_p.add_argument("--subpopulations", type=int, default=1)
    eng_p.add_argument("--threads", type=int, default=1)
    eng_p.add_argument("--output", default="engine_output.tsv")

    args = p.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format="%(levelname)s %(name)s: %(message)s")
    t0 = time.perf_counter()

    if args.cmd == "simulate":
        cfg = config_from_args(args)
        cfg.options = McmcOptions(particles=args.particles, iterations=args.iterations,
                                  likelihood_mode=args.likelihood_mode, threads=args.threads)
        try:
            result = run_pipeline(cfg)
            paths = write_engine_inputs(result, cfg)
        except (InvalidParameter, ExhaustedRetries, DataInconsistency) as exc:
            logging.getLogger(__name__).error("%s", exc)
            return 1
        print(f"Total infected: {result.outbreak.total_infected} (attempt {result.outbreak.attempt})")
        if result.intervals is not None:
            print(f"Sampled: {result.subset.total_sampled}; TMRCA: {result.intervals.tmrca:.2f}")
        else:
            print("Sampled: 0; epidemiological data only")
        for name, path in paths.items():
            print(f"{name} -> {path}")

    elif args.cmd == "engine-args":
        out = pathlib.Path(args.out_dir)
        print(" ".join(engine_arguments(
            out / "parameters.tsv",
            args.replicates,
            args.steps,
            args.step_size,
            args.aggregation_factor,
            args.subpopulations,
            args.seed,
            args.threads,
            out / "initial_states.tsv",
            args.output,
        )))

    print(f"Done in {time.perf_counter() - t0:.2f}s")
    return 0


if __name__ == "__main__":
    sys.exit(main())
