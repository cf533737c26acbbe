from dataclasses import dataclass, field
from typing import Optional, Tuple

import jax
import numpy as np
import pandas as pd
from numpyro.infer import Predictive

from ..analysis_state import FittedModel
from ..errors import UndefinedPrediction, WarningRecord, emit
from ..load.categories import OUTCOME
from ..utils import init_logger

logger = init_logger()


@dataclass(frozen=True)
class PredictiveDraws:
    """
    Simulated outcomes for a covariate table.

    `outcomes` and `probabilities` are (sample, row) matrices; row j belongs to
    row j of `rows`. `n_imputed` counts entries replaced by `impute_missing`.
    """

    rows: pd.DataFrame
    outcomes: np.ndarray
    probabilities: np.ndarray
    n_imputed: int = 0
    warnings: Tuple[WarningRecord, ...] = field(default_factory=tuple)

    @property
    def num_samples(self) -> int:
        return self.outcomes.shape[0]

    def row_means(self) -> np.ndarray:
        """Posterior mean of the simulated outcome per row."""
        return self.outcomes.mean(axis=0)


def impute_missing(matrix: np.ndarray) -> Tuple[np.ndarray, int]:
    """
    Replace every non-finite entry with the mean of all finite entries.

    Returns the imputed copy and how many entries were replaced. A matrix with
    no finite entry at all cannot be imputed and raises ValueError.
    """
    matrix = np.array(matrix, dtype=float)
    missing = ~np.isfinite(matrix)
    n_missing = int(missing.sum())
    if n_missing == 0:
        return matrix, 0
    if n_missing == matrix.size:
        raise ValueError("Every prediction is undefined; nothing to impute from.")
    matrix[missing] = matrix[~missing].mean()
    return matrix, n_missing


def simulate_outcomes(
    fitted: FittedModel,
    table: pd.DataFrame | None = None,
    num_samples: Optional[int] = None,
    seed: Optional[int] = None,
) -> PredictiveDraws:
    """
    Draw one Bernoulli outcome per (posterior sample, row) of `table`.

    Args:
        fitted: the fitted model.
        table: covariate rows, the observations by default. Categories are
            checked against the fitted model (CategoryMismatch).
        num_samples: posterior samples to use, all of them by default.
        seed: rng seed, defaults to the fit seed + 1.
    """
    table = fitted.observations if table is None else table
    seed = fitted.seed + 1 if seed is None else seed
    features = fitted.model.encode(table, fitted.coords)

    predictive = Predictive(
        fitted.model.build_model(),
        posterior_samples=fitted.posterior_samples(num_samples=num_samples, seed=seed),
        return_sites=["ownership_prob", "obs"],
    )
    samples = predictive(jax.random.PRNGKey(seed), **features)

    probabilities = np.asarray(samples["ownership_prob"], dtype=float)
    outcomes = np.asarray(samples["obs"], dtype=float)
    # an outcome drawn from an undefined probability is itself undefined
    outcomes[~np.isfinite(probabilities)] = np.nan

    records = []
    outcomes, n_imputed = impute_missing(outcomes)
    if n_imputed:
        probabilities, _ = impute_missing(probabilities)
        records.append(
            emit(
                logger,
                UndefinedPrediction,
                f"{n_imputed} of {outcomes.size} predictions were undefined and "
                "replaced with the mean of the valid predictions",
                value=float(n_imputed),
            )
        )

    logger.debug(
        f"Simulated {outcomes.shape[0]} x {outcomes.shape[1]} outcomes for {fitted.model_name}"
    )
    return PredictiveDraws(
        rows=table.reset_index(drop=True).copy(),
        outcomes=outcomes,
        probabilities=probabilities,
        n_imputed=n_imputed,
        warnings=tuple(records),
    )


def _compare(observed: np.ndarray, simulated: np.ndarray, alpha: float) -> dict:
    observed_rate = float(observed.mean())
    simulated_rates = simulated.mean(axis=1)
    return {
        "n": int(observed.size),
        "observed": observed_rate,
        "simulated_mean": float(simulated_rates.mean()),
        "lower": float(np.quantile(simulated_rates, alpha / 2)),
        "upper": float(np.quantile(simulated_rates, 1 - alpha / 2)),
        "p_value": float(np.mean(simulated_rates >= observed_rate)),
    }


def posterior_predictive_summary(
    fitted: FittedModel,
    draws: PredictiveDraws | None = None,
    by: str = "province",
    alpha: float = 0.05,
) -> pd.DataFrame:
    """
    Observed vs simulated ownership rate, overall and per level of `by`.

    The p-value is the share of simulated datasets whose ownership rate is at
    least the observed one; values near 0 or 1 point at misfit.
    """
    if draws is None:
        draws = simulate_outcomes(fitted)
    observed = fitted.observations[OUTCOME].to_numpy(dtype=float)
    if draws.outcomes.shape[1] != observed.size:
        raise ValueError(
            "Predictive draws were not simulated on the observation table "
            f"({draws.outcomes.shape[1]} columns for {observed.size} observations)."
        )

    rows = [{"group": "overall", **_compare(observed, draws.outcomes, alpha)}]
    groups = fitted.observations[by].astype(str).to_numpy()
    for level in fitted.coords[by]:
        mask = groups == str(level)
        if not mask.any():
            continue
        rows.append(
            {
                "group": str(level),
                **_compare(observed[mask], draws.outcomes[:, mask], alpha),
            }
        )
    return pd.DataFrame(rows)
