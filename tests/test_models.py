from __future__ import annotations

import jax
import jax.numpy as jnp
import numpy as np
import pandas as pd
import pytest
from numpyro import handlers

from tenurebayes.errors import CategoryMismatch, InvalidFactorLevel
from tenurebayes.load import levels
from tenurebayes.load.categories import OUTCOME
from tenurebayes.model import OwnershipLogit, OwnershipLogitPooled


def trace_model(model, features, seed: int = 0):
    return handlers.trace(handlers.seed(model.build_model(), jax.random.PRNGKey(seed))).get_trace(
        **features
    )


def test_prepare_data_shapes(ownership_model, observations):
    features, coords, dims = ownership_model.prepare_data(observations)

    n = len(observations)
    for key in ("sex_index", "age_index", "province_index", "obs"):
        assert features[key].shape == (n,)
    assert features["num_age_groups"] == 5
    assert features["num_provinces"] == 10
    assert coords["province_contrast"] == levels("province")[1:]
    assert dims["province_effects"] == ["province_contrast"]


def test_prepare_data_codes_follow_level_order(ownership_model):
    df = pd.DataFrame(
        {
            OUTCOME: [1, 0],
            "sex": ["Female", "Male"],
            "age_group": ["Under 20", "Over 65"],
            "province": ["Alberta", "Saskatchewan"],
        }
    )
    features, _, _ = ownership_model.prepare_data(df)
    np.testing.assert_array_equal(features["sex_index"], [0, 1])
    np.testing.assert_array_equal(features["age_index"], [0, 4])
    np.testing.assert_array_equal(features["province_index"], [0, 9])


def test_prepare_data_rejects_unknown_level(ownership_model, observations):
    df = observations.copy()
    df["province"] = df["province"].astype(str)
    df.loc[0, "province"] = "Yukon"
    with pytest.raises(InvalidFactorLevel, match="Yukon"):
        ownership_model.prepare_data(df)


def test_prepare_data_needs_outcome(ownership_model, observations):
    with pytest.raises(ValueError, match=OUTCOME):
        ownership_model.prepare_data(observations.drop(columns=OUTCOME))


def test_encode_against_fitted_coords(ownership_model, strata):
    coords = ownership_model.coords_for()
    features = ownership_model.encode(strata, coords)
    assert features["sex_index"].shape == (len(strata),)
    assert "obs" not in features


def test_encode_unknown_category(ownership_model, strata):
    table = strata.copy()
    table["province"] = table["province"].astype(str)
    table.loc[0, "province"] = "Yukon"
    with pytest.raises(CategoryMismatch, match="Yukon"):
        ownership_model.encode(table, ownership_model.coords_for())


def test_encode_missing_column(ownership_model, strata):
    with pytest.raises(CategoryMismatch, match="sex"):
        ownership_model.encode(strata.drop(columns="sex"), ownership_model.coords_for())


def test_model_sites(ownership_model, observations):
    features, _, _ = ownership_model.prepare_data(observations)
    trace = trace_model(ownership_model, features)

    assert trace["age_effects"]["value"].shape == (5,)
    # nine contrasts; Alberta is the reference
    assert trace["province_effects"]["value"].shape == (9,)
    assert trace["obs"]["is_observed"]
    probs = trace["ownership_prob"]["value"]
    assert probs.shape == (len(observations),)
    assert bool(jnp.all((probs > 0) & (probs < 1)))


def test_reference_province_is_zero(ownership_model):
    features = ownership_model.encode(
        pd.DataFrame(
            {"sex": ["Female"], "age_group": ["30-39"], "province": ["Alberta"]}
        ),
        ownership_model.coords_for(),
    )
    trace = trace_model(ownership_model, features, seed=3)
    expected = jax.nn.sigmoid(
        trace["intercept"]["value"] + trace["age_effects"]["value"][2]
    )
    np.testing.assert_allclose(trace["ownership_prob"]["value"][0], expected, rtol=1e-5)


def test_obs_sampled_without_outcome(ownership_model, strata):
    features = ownership_model.encode(strata, ownership_model.coords_for())
    trace = trace_model(ownership_model, features)
    values = np.asarray(trace["obs"]["value"])
    assert not trace["obs"]["is_observed"]
    assert set(np.unique(values)) <= {0, 1}


def test_pooled_model_sites(pooled_model, observations):
    features, _, dims = pooled_model.prepare_data(observations)
    trace = trace_model(pooled_model, features)

    assert float(trace["age_sd"]["value"]) >= 0
    np.testing.assert_allclose(
        trace["age_effects"]["value"],
        trace["age_sd"]["value"] * trace["age_z"]["value"],
        rtol=1e-6,
    )
    assert trace["age_effects"]["type"] == "deterministic"
    assert dims["age_z"] == ["age_group"]


def test_model_names():
    assert OwnershipLogit.name() == "OwnershipLogit"
    assert OwnershipLogitPooled().latent_sites == [
        "intercept",
        "beta_male",
        "age_sd",
        "age_z",
        "province_effects",
    ]
