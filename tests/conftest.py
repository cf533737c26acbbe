from __future__ import annotations

import itertools
from pathlib import Path
from typing import Callable, Dict

import arviz as az
import numpy as np
import pandas as pd
import pytest
from numpyro.infer import log_likelihood

from tenurebayes.analysis_state import FittedModel, ModelAnalysisState
from tenurebayes.load import levels, prepare_observations, prepare_strata
from tenurebayes.load.categories import COUNT, OUTCOME
from tenurebayes.model.models import BaseModel, OwnershipLogit, OwnershipLogitPooled

TRUE_INTERCEPT = -0.3
TRUE_MALE = 1.0
TRUE_AGE = {"Under 20": -1.0, "21-29": -0.5, "30-39": 0.0, "40-65": 0.5, "Over 65": 0.8}


def simulate_observations(
    n: int = 400,
    seed: int = 0,
    intercept: float = TRUE_INTERCEPT,
    male: float = TRUE_MALE,
    age: Dict[str, float] | None = None,
    province: Dict[str, float] | None = None,
) -> pd.DataFrame:
    """Respondents drawn uniformly over the cells with known logit coefficients."""
    rng = np.random.default_rng(seed)
    age = age or TRUE_AGE
    province = province or {}
    df = pd.DataFrame(
        {
            "sex": rng.choice(levels("sex"), n),
            "age_group": rng.choice(levels("age_group"), n),
            "province": rng.choice(levels("province"), n),
        }
    )
    logit = (
        intercept
        + male * (df["sex"] == "Male")
        + df["age_group"].map(age)
        + df["province"].map(lambda p: province.get(p, 0.0))
    )
    df[OUTCOME] = rng.binomial(1, 1 / (1 + np.exp(-logit.to_numpy(dtype=float))))
    return prepare_observations(df)


def make_strata(seed: int = 0) -> pd.DataFrame:
    rng = np.random.default_rng(seed)
    cells = list(
        itertools.product(levels("province"), levels("age_group"), levels("sex"))
    )
    df = pd.DataFrame(cells, columns=["province", "age_group", "sex"])
    df[COUNT] = rng.integers(1_000, 100_000, len(df))
    return prepare_strata(df)


def make_fitted(
    model: BaseModel,
    observations: pd.DataFrame,
    chains: int = 2,
    draws: int = 300,
    seed: int = 0,
    offset: float = 0.0,
    sd: float = 0.1,
) -> FittedModel:
    """
    A FittedModel from synthetic posterior draws around the true coefficients,
    no sampling involved. `offset` shifts every coefficient of the last chain.
    """
    rng = np.random.default_rng(seed)

    def normal(center, *shape):
        return center + sd * rng.standard_normal((chains, draws, *shape))

    posterior = {
        "intercept": normal(TRUE_INTERCEPT),
        "beta_male": normal(TRUE_MALE),
        "age_effects": normal(np.array(list(TRUE_AGE.values())), 5),
        "province_effects": normal(0.0, 9),
    }
    if isinstance(model, OwnershipLogitPooled):
        posterior["age_sd"] = np.abs(normal(0.7))
        posterior["age_z"] = posterior["age_effects"] / posterior["age_sd"][..., None]
    for name in posterior:
        posterior[name][-1] += offset

    features, _, _ = model.prepare_data(observations)
    loglik = log_likelihood(
        model.build_model(),
        {k: posterior[k] for k in model.latent_sites},
        batch_ndims=2,
        **features,
    )

    idata = az.from_dict(
        posterior=posterior,
        log_likelihood={"obs": np.asarray(loglik["obs"])},
        observed_data={"obs": np.asarray(features["obs"])},
        sample_stats={
            "diverging": np.zeros((chains, draws), dtype=bool),
            "energy": rng.standard_normal((chains, draws)),
        },
        coords=model.coords_for(),
        dims=model.dims_for(),
    )
    return FittedModel.from_inference_data(
        model_name=model.name(),
        model=model,
        observations=observations,
        inference_data=idata,
        seed=seed,
    )


@pytest.fixture(scope="session")
def observations() -> pd.DataFrame:
    return simulate_observations()


@pytest.fixture(scope="session")
def strata() -> pd.DataFrame:
    return make_strata()


@pytest.fixture
def ownership_model() -> OwnershipLogit:
    return OwnershipLogit()


@pytest.fixture
def pooled_model() -> OwnershipLogitPooled:
    return OwnershipLogitPooled()


@pytest.fixture
def fitted(ownership_model, observations) -> FittedModel:
    return make_fitted(ownership_model, observations)


@pytest.fixture
def fitted_factory(observations) -> Callable[..., FittedModel]:
    def factory(model: BaseModel | None = None, **kwargs) -> FittedModel:
        return make_fitted(model or OwnershipLogit(), observations, **kwargs)

    return factory


@pytest.fixture
def fitted_state(fitted) -> ModelAnalysisState:
    """A ModelAnalysisState carrying the synthetic fit."""
    return ModelAnalysisState(
        model_name=fitted.model_name,
        model_builder=fitted.model,
        observations=fitted.observations,
        features=dict(fitted.features),
        coords=dict(fitted.coords),
        dims=dict(fitted.dims),
        fitted=fitted,
    )


@pytest.fixture
def quick_fit() -> Dict:
    """Fit settings small enough for unit tests."""
    return {
        "fit": {
            "samples": 60,
            "warmup": 60,
            "chains": 2,
            "block_size": 20,
            "progress_bar": False,
            "target_accept": 0.9,
            "min_ess": 10,
        }
    }


@pytest.fixture(scope="module")
def cfg_dir() -> Path:
    """tests/model_configs directory."""
    return Path(__file__).parent / "model_configs"


@pytest.fixture
def simulate() -> Callable[..., pd.DataFrame]:
    """simulate_observations, for tests that need their own data."""
    return simulate_observations
