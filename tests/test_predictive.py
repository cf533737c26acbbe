from __future__ import annotations

import numpy as np
import pytest

from tenurebayes.analysis_state import FittedModel
from tenurebayes.errors import CategoryMismatch, UndefinedPrediction
from tenurebayes.predict import impute_missing, posterior_predictive_summary, simulate_outcomes


def test_impute_missing_uses_mean_of_valid_entries():
    matrix = np.array([[1.0, np.nan], [0.0, np.inf], [1.0, 1.0]])
    imputed, n = impute_missing(matrix)

    assert n == 2
    np.testing.assert_allclose(imputed[[0, 1], [1, 1]], 0.75)
    # the input is left alone
    assert np.isnan(matrix[0, 1])


def test_impute_missing_nothing_to_do():
    matrix = np.eye(3)
    imputed, n = impute_missing(matrix)
    assert n == 0
    np.testing.assert_array_equal(imputed, matrix)


def test_impute_missing_all_undefined():
    with pytest.raises(ValueError, match="Every prediction is undefined"):
        impute_missing(np.full((2, 2), np.nan))


def test_simulate_on_observations(fitted, observations):
    draws = simulate_outcomes(fitted, num_samples=100)

    assert draws.outcomes.shape == (100, len(observations))
    assert draws.probabilities.shape == (100, len(observations))
    assert set(np.unique(draws.outcomes)) <= {0.0, 1.0}
    assert np.all((draws.probabilities > 0) & (draws.probabilities < 1))
    assert draws.n_imputed == 0
    assert draws.warnings == ()
    assert draws.row_means().shape == (len(observations),)


def test_simulate_on_strata(fitted, strata):
    draws = simulate_outcomes(fitted, strata, num_samples=50)
    assert draws.outcomes.shape == (50, len(strata))
    assert len(draws.rows) == len(strata)


def test_simulate_seeded(fitted):
    a = simulate_outcomes(fitted, num_samples=50, seed=3)
    b = simulate_outcomes(fitted, num_samples=50, seed=3)
    c = simulate_outcomes(fitted, num_samples=50, seed=4)
    np.testing.assert_array_equal(a.outcomes, b.outcomes)
    assert not np.array_equal(a.outcomes, c.outcomes)


def test_simulate_all_samples_by_default(fitted):
    draws = simulate_outcomes(fitted)
    assert draws.num_samples == fitted.num_chains * fitted.num_draws


def test_simulate_too_many_samples(fitted):
    with pytest.raises(ValueError, match="posterior holds"):
        simulate_outcomes(fitted, num_samples=10_000)


def test_simulate_unknown_category(fitted, strata):
    table = strata.copy()
    table["sex"] = table["sex"].astype(str)
    table.loc[3, "sex"] = "Unknown"
    with pytest.raises(CategoryMismatch, match="Unknown"):
        simulate_outcomes(fitted, table)


def test_undefined_predictions_are_imputed(fitted, observations):
    idata = fitted.inference_data.copy()
    intercept = idata.posterior["intercept"].values.copy()
    intercept[0, :10] = np.nan
    idata.posterior["intercept"] = (("chain", "draw"), intercept)
    broken = FittedModel.from_inference_data(
        model_name=fitted.model_name,
        model=fitted.model,
        observations=observations,
        inference_data=idata,
    )

    draws = simulate_outcomes(broken)

    assert draws.n_imputed == 10 * len(observations)
    assert np.all(np.isfinite(draws.outcomes))
    assert np.all(np.isfinite(draws.probabilities))
    assert [w.category for w in draws.warnings] == [UndefinedPrediction]
    assert draws.warnings[0].value == draws.n_imputed


def test_posterior_predictive_summary(fitted, observations):
    summary = posterior_predictive_summary(fitted, simulate_outcomes(fitted, num_samples=200))

    assert summary["group"].iloc[0] == "overall"
    assert summary["n"].iloc[0] == len(observations)
    assert summary["n"].iloc[1:].sum() == len(observations)
    assert set(summary["group"].iloc[1:]) <= set(fitted.coords["province"])
    assert summary["p_value"].between(0, 1).all()
    assert (summary["lower"] <= summary["upper"]).all()


def test_posterior_predictive_summary_needs_observation_draws(fitted, strata):
    with pytest.raises(ValueError, match="not simulated on the observation table"):
        posterior_predictive_summary(fitted, simulate_outcomes(fitted, strata, num_samples=20))
