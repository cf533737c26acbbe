from __future__ import annotations

from dataclasses import FrozenInstanceError
from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import pytest

from tenurebayes.analyse import diagnose
from tenurebayes.analysis_state import AnalysisState, ModelAnalysisState
from tenurebayes.errors import NonConvergence
from tenurebayes.poststrat import poststratify


def test_fitted_model_is_read_only(fitted):
    with pytest.raises(FrozenInstanceError):
        fitted.seed = 3
    with pytest.raises(TypeError):
        fitted.coords["province"] = []


def test_posterior_samples(fitted):
    flat = fitted.posterior_samples()
    assert set(flat) == {"intercept", "beta_male", "age_effects", "province_effects"}
    assert flat["age_effects"].shape == (600, 5)

    subset = fitted.posterior_samples(num_samples=50, seed=1)
    assert subset["intercept"].shape == (50,)
    np.testing.assert_array_equal(
        subset["intercept"], fitted.posterior_samples(num_samples=50, seed=1)["intercept"]
    )


def test_draws_unknown_variable(fitted):
    with pytest.raises(KeyError, match="not a posterior variable"):
        fitted.draws("beta_urban")


def test_with_warnings_returns_new_fit(fitted_factory):
    fitted = fitted_factory(offset=1.0)
    report = diagnose(fitted)
    flagged = fitted.with_warnings(*report.warnings)

    assert fitted.warnings == ()
    assert any(w.category is NonConvergence for w in flagged.warnings)
    # duplicates are merged away
    assert flagged.with_warnings(*report.warnings).warnings == flagged.warnings


def test_model_state_roundtrip(tmp_path: Path, fitted_factory, fitted_state):
    fitted_state.fitted = fitted_factory(offset=1.0).with_warnings(
        *diagnose(fitted_factory(offset=1.0)).warnings
    )
    report = diagnose(fitted_state.fitted)
    fitted_state.add_diagnostic("diagnostic_report", report)
    fitted_state.add_diagnostic("convergence", report.table)
    fitted_state.add_diagnostic("divergences", 0)
    fitted_state.add_diagnostic("ppc_draws", np.ones((3, 4)))
    fig, ax = plt.subplots()
    ax.plot([0, 1])
    fitted_state.add_diagnostic("some_plot", fig)

    fitted_state.save(tmp_path / "model")
    loaded = ModelAnalysisState.load(tmp_path / "model")

    assert (tmp_path / "model" / "diagnostic_plots" / "some_plot.png").exists()
    assert loaded.model_name == fitted_state.model_name
    assert loaded.is_fitted
    np.testing.assert_allclose(
        loaded.fitted.draws("intercept"), fitted_state.fitted.draws("intercept")
    )
    assert loaded.fitted.coords["province_contrast"] == fitted_state.coords["province_contrast"]
    assert [w.category for w in loaded.fitted.warnings] == [
        w.category for w in fitted_state.fitted.warnings
    ]
    assert loaded.diagnostic("divergences") == 0
    assert loaded.diagnostic("diagnostic_report")["converged"] is False
    pd.testing.assert_frame_equal(loaded.diagnostic("convergence"), report.table)
    np.testing.assert_array_equal(loaded.diagnostic("ppc_draws"), np.ones((3, 4)))
    assert loaded.model_config.fit == fitted_state.model_config.fit


def test_unfitted_model_state_roundtrip(tmp_path: Path, ownership_model, observations):
    features, coords, dims = ownership_model.prepare_data(observations)
    state = ModelAnalysisState(
        model_name="OwnershipLogit",
        model_builder=ownership_model,
        observations=observations,
        features=features,
        coords=coords,
        dims=dims,
    )
    state.save(tmp_path / "unfitted")
    loaded = ModelAnalysisState.load(tmp_path / "unfitted")
    assert not loaded.is_fitted
    assert len(loaded.observations) == len(observations)


def test_analysis_state_roundtrip(tmp_path: Path, fitted_state, strata):
    state = AnalysisState(observations=fitted_state.observations, strata=strata)
    state.add_model(fitted_state)
    estimate = poststratify(fitted_state.fitted, strata, num_samples=50, seed=1)
    state.add_estimate("population", estimate)
    state.add_table(pd.DataFrame({"a": [1, 2]}), "some_table")

    state.save(tmp_path / "run")
    loaded = AnalysisState.load(tmp_path / "run")

    assert (tmp_path / "run" / "estimates.json").exists()
    assert (tmp_path / "run" / "communicate" / "some_table.csv").exists()
    assert [m.model_name for m in loaded.models] == [fitted_state.model_name]
    assert len(loaded.strata) == len(strata)
    assert loaded.get_best_model().model_name == fitted_state.model_name


def test_get_best_model(fitted_state, fitted_factory, pooled_model, observations):
    other = ModelAnalysisState(
        model_name="OwnershipLogitPooled",
        model_builder=pooled_model,
        observations=observations,
        features=dict(fitted_state.features),
        fitted=fitted_factory(pooled_model),
    )
    state = AnalysisState(observations=observations, models=[fitted_state, other])

    with pytest.raises(ValueError, match="No fitted models"):
        state.get_best_model()

    fitted_state.add_diagnostic("elpd_waic", -250.0)
    other.add_diagnostic("elpd_waic", -240.0)
    assert state.get_best_model().model_name == "OwnershipLogitPooled"
    assert state.get_best_model(minimum=True).model_name == fitted_state.model_name
    with pytest.raises(ValueError, match="not found"):
        state.get_model("Missing")
