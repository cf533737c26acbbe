"""Multilevel regression and post-stratification.

The population ownership rate is the count-weighted average of the stratum
probabilities, ``P = sum_s N_s p_s / sum_s N_s``, evaluated once per posterior
draw so the estimate comes with a posterior distribution. Strata are taken as
given: a category the model was not fitted on raises CategoryMismatch rather
than being dropped.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Literal, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import yaml

from ..analysis_state import FittedModel
from ..errors import CategoryMismatch, NonConvergence, WarningRecord, merge_warnings
from ..load.categories import COUNT, STRATUM_COLUMNS
from ..predict import PredictiveDraws, simulate_outcomes
from ..utils import init_logger

logger = init_logger()

Method = Literal["probability", "simulated"]


@dataclass
class PostStratConfig:
    """How the population estimate is computed."""

    method: Method = "probability"
    num_samples: Optional[int] = None  # posterior samples; all by default
    seed: Optional[int] = None
    credible_mass: float = 0.95
    by: list[str] = field(default_factory=list)  # extra group-level estimates

    def __post_init__(self):
        if self.method not in ("probability", "simulated"):
            raise ValueError(
                f"Unknown post-stratification method '{self.method}'. "
                "Choose 'probability' or 'simulated'."
            )
        if not 0.0 < self.credible_mass < 1.0:
            raise ValueError("credible_mass must lie strictly between 0 and 1.")
        unknown = [b for b in self.by if b not in STRATUM_COLUMNS]
        if unknown:
            raise ValueError(
                f"Cannot group estimates by {unknown}; choose from {list(STRATUM_COLUMNS)}"
            )

    @classmethod
    def from_yaml(cls, path: str) -> "PostStratConfig":
        with open(path, "r") as f:
            config: dict = yaml.safe_load(f)
        return cls.from_dict(config)

    @classmethod
    def from_dict(cls, config: dict | None) -> "PostStratConfig":
        if config is None:
            config = {}
        by = config.get("by", [])
        if isinstance(by, str):
            by = [by]
        return cls(
            method=config.get("method", "probability"),
            num_samples=config.get("num_samples", None),
            seed=config.get("seed", None),
            credible_mass=config.get("credible_mass", 0.95),
            by=list(by),
        )


@dataclass(frozen=True, eq=False)
class PostStratEstimate:
    """Post-stratified ownership rate and the material it was computed from."""

    estimate: float  # posterior mean
    lower: float
    upper: float
    draws: np.ndarray  # one population rate per posterior sample
    per_stratum: pd.DataFrame
    predictive: PredictiveDraws  # simulated outcomes and probabilities per stratum
    method: Method
    n_imputed: int = 0
    reliable: bool = True
    warnings: Tuple[WarningRecord, ...] = ()
    credible_mass: float = 0.95

    def to_dict(self) -> Dict[str, Any]:
        return {
            "estimate": self.estimate,
            "lower": self.lower,
            "upper": self.upper,
            "credible_mass": self.credible_mass,
            "method": self.method,
            "num_draws": int(self.draws.size),
            "n_imputed": self.n_imputed,
            "reliable": self.reliable,
            "warnings": [w.to_dict() for w in self.warnings],
        }

    @property
    def stratum_draws(self) -> np.ndarray:
        """(sample, stratum) matrix that was weighted."""
        return _stratum_values(self.predictive, self.method)


def _weights(strata: pd.DataFrame) -> np.ndarray:
    if COUNT not in strata.columns:
        raise ValueError(f"Stratum table has no '{COUNT}' column.")
    weights = pd.to_numeric(strata[COUNT], errors="coerce").to_numpy(dtype=float)
    if not np.all(np.isfinite(weights)) or (weights < 0).any():
        raise ValueError("Population counts must be finite and non-negative.")
    if weights.sum() <= 0:
        raise ValueError("Population counts sum to zero; nothing to weight by.")
    return weights


def _stratum_values(draws: PredictiveDraws, method: Method) -> np.ndarray:
    if method == "probability":
        return draws.probabilities
    if method == "simulated":
        return draws.outcomes
    raise ValueError(f"Unknown post-stratification method '{method}'.")


def weighted_rate(values: np.ndarray, weights: np.ndarray) -> np.ndarray:
    """Count-weighted average over the stratum axis of a (sample, stratum) matrix."""
    return values @ weights / weights.sum()


def _interval(draws: np.ndarray, credible_mass: float) -> Tuple[float, float]:
    tail = (1.0 - credible_mass) / 2
    lower, upper = np.quantile(draws, [tail, 1.0 - tail])
    return float(lower), float(upper)


def _stratum_labels(table: pd.DataFrame) -> pd.DataFrame:
    return pd.DataFrame(
        {
            c: table[c].astype(object).map(lambda v: str(getattr(v, "value", v))).values
            for c in STRATUM_COLUMNS
        }
    )


def _check_aligned(rows: pd.DataFrame, strata: pd.DataFrame) -> None:
    """Predictive draws must cover exactly the stratum rows, in the same order."""
    missing = [c for c in STRATUM_COLUMNS if c not in rows.columns]
    if missing:
        raise CategoryMismatch(f"Predictive draws have no {missing} columns.")
    if len(rows) != len(strata) or not _stratum_labels(rows).equals(_stratum_labels(strata)):
        raise CategoryMismatch(
            "Predictive draws were computed on different strata, or in a different "
            "order, than the stratum table."
        )


def poststratify(
    fitted: FittedModel,
    strata: pd.DataFrame,
    method: Method = "probability",
    num_samples: Optional[int] = None,
    seed: Optional[int] = None,
    credible_mass: float = 0.95,
    extra_warnings: Sequence[WarningRecord] = (),
    predictive: PredictiveDraws | None = None,
) -> PostStratEstimate:
    """
    Post-stratify the fitted model over `strata`.

    Args:
        fitted: the fitted model.
        strata: one row per (province, age_group, sex) with population_count.
        method: weight stratum probabilities ("probability") or simulated
            Bernoulli outcomes ("simulated").
        num_samples: posterior samples to use, all of them by default.
        seed: rng seed for the predictive draws.
        credible_mass: mass of the reported interval.
        extra_warnings: e.g. the diagnostic report's warnings. Any
            NonConvergence among them marks the estimate unreliable.
        predictive: precomputed draws on `strata`, skips simulation.

    Raises:
        CategoryMismatch: a stratum category is not part of the fitted model.
    """
    weights = _weights(strata)
    if predictive is None:
        predictive = simulate_outcomes(fitted, strata, num_samples=num_samples, seed=seed)
    else:
        fitted.model.encode(strata, fitted.coords)
        _check_aligned(predictive.rows, strata)
    values = _stratum_values(predictive, method)
    if values.shape[1] != len(strata):
        raise ValueError(
            f"Predictive draws cover {values.shape[1]} rows, strata have {len(strata)}."
        )

    draws = weighted_rate(values, weights)
    lower, upper = _interval(draws, credible_mass)

    per_stratum = strata.reset_index(drop=True).copy()
    per_stratum["weight"] = weights / weights.sum()
    per_stratum["mean"] = values.mean(axis=0)
    tail = (1.0 - credible_mass) / 2
    per_stratum["lower"] = np.quantile(values, tail, axis=0)
    per_stratum["upper"] = np.quantile(values, 1.0 - tail, axis=0)

    warnings = merge_warnings(fitted.warnings, extra_warnings, predictive.warnings)
    reliable = not any(w.category is NonConvergence for w in warnings)
    if not reliable:
        logger.warning(
            "Post-stratified estimate comes from a model that has not converged; "
            "treat it as unreliable."
        )

    estimate = PostStratEstimate(
        estimate=float(draws.mean()),
        lower=lower,
        upper=upper,
        draws=draws,
        per_stratum=per_stratum,
        predictive=predictive,
        method=method,
        n_imputed=predictive.n_imputed,
        reliable=reliable,
        warnings=warnings,
        credible_mass=credible_mass,
    )
    logger.info(
        f"Post-stratified ownership rate for {fitted.model_name}: "
        f"{estimate.estimate:.3f} [{lower:.3f}, {upper:.3f}]"
    )
    return estimate


def poststratify_by(estimate: PostStratEstimate, by: str = "province") -> pd.DataFrame:
    """
    Group-level estimates from the same posterior draws, e.g. one per province.

    Groups with no population are left out.
    """
    if by not in STRATUM_COLUMNS:
        raise ValueError(f"Cannot group by '{by}'; choose from {list(STRATUM_COLUMNS)}")

    strata = estimate.per_stratum
    values = estimate.stratum_draws
    weights = strata[COUNT].to_numpy(dtype=float)
    groups = strata[by].astype(str).to_numpy()

    rows = []
    for level in pd.unique(groups):
        mask = groups == level
        if weights[mask].sum() <= 0:
            continue
        draws = weighted_rate(values[:, mask], weights[mask])
        lower, upper = _interval(draws, estimate.credible_mass)
        rows.append(
            {
                by: level,
                COUNT: int(weights[mask].sum()),
                "estimate": float(draws.mean()),
                "lower": lower,
                "upper": upper,
            }
        )
    return pd.DataFrame(rows)
