import numpy as np
import pandas as pd
import pytest

from outbreak_phylodynamics.errors import InvalidParameter
from outbreak_phylodynamics.simulate.outbreak import EpidemicState, SimulationParameters
from outbreak_phylodynamics.timeseries.align import AlignedData
from outbreak_phylodynamics.engine_files import (
    McmcOptions,
    ParameterSpec,
    default_parameter_specs,
    engine_arguments,
    write_data_file,
    write_initial_states,
    write_options_file,
    write_parameter_file,
)


def test_parameter_file_round_trip(tmp_path):
    specs = default_parameter_specs(SimulationParameters())
    path = write_parameter_file(specs, tmp_path / "params.tsv")
    df = pd.read_csv(path, sep="\t")

    assert df["name"].tolist() == ["R0", "k", "Tg", "N"]
    assert df["estimate"].tolist() == [1, 1, 1, 0]
    tg = df.set_index("name").loc["Tg"]
    assert tg["value"] == pytest.approx(5.0)
    assert tg["transform"] == "inverse"
    assert tg["prior"] == "gamma"


def test_prior_bounds_cover_large_starting_values(tmp_path):
    params = SimulationParameters(R0=12.0, k=8.0)
    specs = {s.name: s for s in default_parameter_specs(params)}
    assert specs["R0"].upper == 24.0
    assert specs["k"].upper == 16.0

    df = pd.read_csv(write_parameter_file(default_parameter_specs(params), tmp_path / "p.tsv"), sep="\t")
    assert df.loc[df["name"] == "R0", "value"].item() == 12.0


def test_parameter_validation():
    with pytest.raises(InvalidParameter):
        ParameterSpec("R0", 12.0, lower=0.0, upper=10.0).validate()
    with pytest.raises(InvalidParameter):
        ParameterSpec("R0", 2.0, transform="log").validate()
    with pytest.raises(InvalidParameter):
        ParameterSpec("R0", 20.0, estimate=True, prior="uniform", prior_params=(0.0, 10.0)).validate()
    with pytest.raises(InvalidParameter):
        ParameterSpec("R0", 2.0, prior="cauchy").prior_distribution()


def test_options_file(tmp_path):
    path = write_options_file(McmcOptions(particles=200, likelihood_mode=2), tmp_path / "opts.tsv")
    df = pd.read_csv(path, sep="\t").set_index("option")
    assert df.loc["particles", "value"] == "200"
    assert df.loc["likelihood_mode", "value"] == "2"

    with pytest.raises(InvalidParameter):
        write_options_file(McmcOptions(likelihood_mode=3), tmp_path / "bad.tsv")
    with pytest.raises(InvalidParameter):
        McmcOptions(ess_threshold=1.5).validate()


def test_initial_states_file(tmp_path):
    path = write_initial_states(EpidemicState(0, 0.0, 4999, 1, 0), tmp_path / "init.tsv")
    df = pd.read_csv(path, sep="\t")
    assert df.to_dict("records") == [{"S": 4999, "I": 1, "R": 0}]


def test_data_file_marks_undefined_lineages(tmp_path):
    aligned = AlignedData(
        bin_index=np.arange(3),
        incidence=np.array([1, 2, 3]),
        coalescent_events=np.array([0, 1, 0]),
        sampled=np.array([0, 0, 2]),
        lineages=np.array([np.nan, 1.0, 2.0]),
        step_size=1.0,
        last_tip_time=2.0,
    )
    path = write_data_file(aligned, tmp_path / "nested" / "data.tsv")
    text = path.read_text().splitlines()
    assert text[0].split("\t") == ["time", "incidence", "coalescent_events", "sampled", "lineages"]
    assert text[1].split("\t")[-1] == "NA"
    assert len(text) == 4


def test_engine_arguments_order():
    args = engine_arguments("p.tsv", 4, 1500, 0.1, 10, 1, 42, 8, "init.tsv", "out.tsv")
    assert args == ["p.tsv", "4", "1500", "0.1", "10", "1", "42", "8", "init.tsv", "out.tsv"]
    with pytest.raises(InvalidParameter):
        engine_arguments("p.tsv", 0, 1500, 0.1, 10, 1, 42, 8, "init.tsv", "out.tsv")
    with pytest.raises(InvalidParameter):
        engine_arguments("p.tsv", 1, 1500, 0.0, 10, 1, 42, 8, "init.tsv", "out.tsv")
