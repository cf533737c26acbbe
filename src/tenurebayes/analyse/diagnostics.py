"""Convergence diagnostics on a FittedModel.

`gelman_rubin` is the classic potential scale reduction factor with the
Brooks-Gelman upper confidence bound. The rank-normalised split R-hat and the
effective sample sizes come from arviz.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, NamedTuple, Optional, Tuple

import arviz as az
import numpy as np
import pandas as pd
from scipy import stats

from ..analysis_state import FittedModel
from ..errors import NonConvergence, WarningRecord, emit, merge_warnings
from ..utils import init_logger

logger = init_logger()

DEFAULT_THRESHOLD = 1.05


class PSRF(NamedTuple):
    point: float
    upper: float


def gelman_rubin(draws: np.ndarray, confidence: float = 0.95) -> PSRF:
    """
    Potential scale reduction factor of one scalar parameter.

    Args:
        draws: (chain, draw) array, at least two chains.
        confidence: level of the upper bound.

    Returns:
        PSRF(point, upper). Chains drawn from the same distribution give values
        close to 1; between-chain disagreement pushes both above 1.
    """
    draws = np.asarray(draws, dtype=float)
    if draws.ndim != 2:
        raise ValueError(f"Expected a (chain, draw) array, got shape {draws.shape}")
    m, n = draws.shape
    if m < 2:
        raise ValueError("The potential scale reduction factor needs at least 2 chains.")
    if n < 2:
        raise ValueError("The potential scale reduction factor needs at least 2 draws per chain.")

    chain_means = draws.mean(axis=1)
    chain_vars = draws.var(axis=1, ddof=1)
    w = chain_vars.mean()
    b = n * chain_means.var(ddof=1)
    if w == 0:
        # constant chains: agree only if they sit on the same value
        value = 1.0 if b == 0 else np.inf
        return PSRF(value, value)

    mu = chain_means.mean()
    var_w = chain_vars.var(ddof=1) / m
    var_b = 2 * b**2 / (m - 1)
    cov_wb = (n / m) * (
        np.cov(chain_vars, chain_means**2)[0, 1]
        - 2 * mu * np.cov(chain_vars, chain_means)[0, 1]
    )

    v = (n - 1) * w / n + (1 + 1 / m) * b / n
    var_v = (
        (n - 1) ** 2 * var_w
        + (1 + 1 / m) ** 2 * var_b
        + 2 * (n - 1) * (1 + 1 / m) * cov_wb
    ) / n**2
    df_adj = 1.0 if var_v <= 0 else (2 * v**2 / var_v + 3) / (2 * v**2 / var_v + 1)

    r2_fixed = (n - 1) / n
    r2_random = (1 + 1 / m) * (1 / n) * (b / w)
    q = (1 + confidence) / 2
    if var_w == 0:
        # infinite within-chain degrees of freedom
        f_quantile = stats.chi2.ppf(q, m - 1) / (m - 1)
    else:
        f_quantile = stats.f.ppf(q, m - 1, 2 * w**2 / var_w)

    point = np.sqrt(df_adj * (r2_fixed + r2_random))
    upper = np.sqrt(df_adj * (r2_fixed + f_quantile * r2_random))
    return PSRF(float(point), float(upper))


def rhat_table(
    fitted: FittedModel,
    threshold: float = DEFAULT_THRESHOLD,
    confidence: float = 0.95,
) -> pd.DataFrame:
    """
    One row per scalar coefficient with the PSRF, its upper bound, the
    rank-normalised R-hat, bulk/tail ESS and whether the PSRF passes.
    """
    rows = []
    for label, series in fitted.parameter_draws().items():
        if series.shape[0] < 2:
            psrf = PSRF(np.nan, np.nan)
        else:
            psrf = gelman_rubin(series, confidence=confidence)
        rows.append(
            {
                "parameter": label,
                "mean": float(series.mean()),
                "sd": float(series.std()),
                "psrf": psrf.point,
                "psrf_upper": psrf.upper,
                "r_hat": float(az.rhat(series)) if series.shape[0] >= 2 else np.nan,
                "ess_bulk": float(az.ess(series, method="bulk")),
                "ess_tail": float(az.ess(series, method="tail")),
                "passed": bool(psrf.point <= threshold),
            }
        )
    return pd.DataFrame(rows)


def trace(fitted: FittedModel, name: str) -> np.ndarray:
    """
    Ordered draws of one scalar coefficient, shape (chain, draw).

    `name` is a scalar variable or a labelled level such as
    ``age_effects[30-39]``.
    """
    draws = fitted.parameter_draws()
    if name not in draws:
        raise KeyError(f"Unknown coefficient '{name}'. Available: {list(draws)}")
    return draws[name]


def autocorrelation(
    fitted: FittedModel, name: str, max_lag: Optional[int] = None
) -> np.ndarray:
    """Per-chain autocorrelation function of one coefficient, shape (chain, lag)."""
    acf = az.autocorr(trace(fitted, name), axis=-1)
    return acf if max_lag is None else acf[:, : max_lag + 1]


@dataclass(frozen=True, eq=False)
class DiagnosticReport:
    """
    Convergence report of one fit. `converged` is False whenever any
    parameter fails the threshold; the NonConvergence records say which.
    """

    table: pd.DataFrame
    converged: bool
    threshold: float = DEFAULT_THRESHOLD
    warnings: Tuple[WarningRecord, ...] = field(default_factory=tuple)

    @property
    def failed(self) -> list[str]:
        return self.table.loc[~self.table["passed"], "parameter"].tolist()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "converged": self.converged,
            "threshold": self.threshold,
            "failed": self.failed,
            "warnings": [w.to_dict() for w in self.warnings],
        }


def diagnose(fitted: FittedModel, threshold: float = DEFAULT_THRESHOLD) -> DiagnosticReport:
    """
    Run the convergence diagnostics and collect every warning of the fit.

    Non-convergence never raises; it is reported so that downstream estimates
    can carry the flag.
    """
    records = []
    if fitted.num_chains < 2:
        records.append(
            emit(
                logger,
                NonConvergence,
                f"Only {fitted.num_chains} completed chain(s); convergence cannot be assessed.",
            )
        )

    table = rhat_table(fitted, threshold=threshold)
    for row in table.itertuples(index=False):
        if fitted.num_chains >= 2 and not row.passed:
            records.append(
                emit(
                    logger,
                    NonConvergence,
                    f"PSRF of {row.parameter} is {row.psrf:.3f} (> {threshold})",
                    parameter=row.parameter,
                    value=float(row.psrf),
                )
            )

    converged = fitted.num_chains >= 2 and bool(table["passed"].all())
    if converged:
        logger.info(f"{fitted.model_name}: all PSRF values <= {threshold}")
    return DiagnosticReport(
        table=table,
        converged=converged,
        threshold=threshold,
        warnings=merge_warnings(fitted.warnings, records),
    )
