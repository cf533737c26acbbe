from __future__ import annotations

import json
import threading
from pathlib import Path

import numpy as np
import pytest
import yaml

from tenurebayes.analysis import (
    AnalysisConfig,
    communicate,
    load_data,
    model,
    poststratification,
)
from tenurebayes.analysis_state import AnalysisState
from tenurebayes.cli.outputs import write_outputs
from tenurebayes.errors import SamplingCancelled
from tenurebayes.load.categories import OUTCOME
from tenurebayes.platform import PlatformConfig


@pytest.fixture
def config_dict(tmp_path: Path, observations, strata, quick_fit):
    observations.to_csv(tmp_path / "survey.csv", index=False)
    strata.to_csv(tmp_path / "strata.csv", index=False)
    return {
        "data_loader": {
            "paths": {
                "observations": str(tmp_path / "survey.csv"),
                "strata": str(tmp_path / "strata.csv"),
            }
        },
        "model": {"models": [{"name": "OwnershipLogit", "config": quick_fit}]},
        "checkers": {
            "checks": [
                "r_hat",
                "divergences",
                "waic",
                {"posterior_predictive_check": {"num_samples": 50}},
            ]
        },
        "poststrat": {"num_samples": 100, "seed": 1, "by": ["province", "sex"]},
        "communicate": {"communicate": ["coefficient_table", "estimate_table"]},
        "platform": {"device_type": "cpu"},
    }


def test_analysis_config_defaults():
    cfg = AnalysisConfig.from_dict(None)
    assert cfg.poststrat.method == "probability"
    assert cfg.platform == PlatformConfig()
    assert cfg.data_loader.observations_path is None


def test_analysis_config_from_yaml(tmp_path: Path, config_dict):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(config_dict))
    cfg = AnalysisConfig.from_yaml(str(path))

    assert cfg.poststrat.by == ["province", "sex"]
    assert len(cfg.models.enabled_models) == 1
    assert len(cfg.checkers.enabled_checks) == 4
    assert len(cfg.communicate.enabled_communicators) == 2


def test_platform_config_rejects_unknown_keys():
    with pytest.raises(ValueError, match="Invalid configuration"):
        PlatformConfig.from_dict({"device": "cpu"})
    with pytest.raises(ValueError, match="Unknown device type"):
        PlatformConfig(device_type="fpga")


def test_platform_config_num_devices():
    assert PlatformConfig().num_devices >= 1
    assert PlatformConfig.from_dict({"num_devices": 2}).num_devices == 2
    with pytest.raises(ValueError, match="num_devices"):
        PlatformConfig(num_devices=0)


def test_end_to_end(tmp_path: Path, config_dict):
    cfg = AnalysisConfig.from_dict(config_dict)
    observations, strata = load_data(cfg.data_loader)
    assert OUTCOME in observations.columns

    state = model(observations, cfg.models, cfg.checkers, cfg.platform, strata=strata)
    best = state.get_best_model()
    assert best.is_fitted
    assert best.diagnostic("check_divergences") in ("pass", "fail")
    assert best.diagnostic("diagnostic_report") is not None

    state = poststratification(state, cfg.poststrat)
    estimate = state.estimates["population"]
    assert 0 < estimate.lower <= estimate.estimate <= estimate.upper < 1
    assert len(state.estimates["estimate_by_province"]) == 10
    assert len(state.estimates["estimate_by_sex"]) == 2

    state = communicate(state, cfg.communicate)
    assert "estimates" in state.communicate

    out = tmp_path / "out"
    state.save(out)
    write_outputs(state, out)

    for name in (
        "coefficients.csv",
        "diagnostics.csv",
        "ppc_draws.npy",
        "population_draws.npy",
        "estimate.json",
        "estimate_by_province.csv",
        "warnings.json",
    ):
        assert (out / name).exists(), name

    summary = json.loads((out / "estimate.json").read_text())
    assert summary["model"] == best.model_name
    assert summary["estimate"] == pytest.approx(estimate.estimate)
    assert np.load(out / "population_draws.npy").shape == (100, len(strata))

    # a reloaded state post-stratifies to the same numbers
    reloaded = poststratification(AnalysisState.load(out), cfg.poststrat)
    assert reloaded.estimates["population"].estimate == pytest.approx(estimate.estimate)
    assert reloaded.estimates["population"].reliable == estimate.reliable


def test_poststratification_needs_strata(fitted_state, observations):
    state = AnalysisState(observations=observations, models=[fitted_state])
    with pytest.raises(ValueError, match="No stratum table"):
        poststratification(state, AnalysisConfig().poststrat)


def test_model_cancelled(observations, quick_fit, config_dict):
    cfg = AnalysisConfig.from_dict({**config_dict, "checkers": {"checks": ["r_hat"]}})
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(SamplingCancelled):
        model(observations, cfg.models, cfg.checkers, cancel_event=cancel)


def test_example_config_loads():
    root = Path(__file__).parent.parent / "examples" / "ownership"
    config = yaml.safe_load((root / "config.yaml").read_text())
    config["checkers"]["custom_checks"]["path"] = str(root / "files" / "custom_checker.py")

    cfg = AnalysisConfig.from_dict(config)

    assert [m.name() for m, _ in cfg.models.enabled_models] == [
        "OwnershipLogit",
        "OwnershipLogitPooled",
    ]
    assert cfg.data_loader.label_maps["province"].mapping["48"] == "Alberta"
    assert len(cfg.checkers.get_checkers("before")) == 1
    assert len(cfg.checkers.get_checkers("after")) == 8
    assert cfg.poststrat.by == ["province", "age_group"]
