from __future__ import annotations

from typing import Tuple

import numpy as np
import pandas as pd
from scipy.special import expit

from ...analyse.diagnostics import rhat_table
from ...analysis_state import AnalysisState, FittedModel
from ...load.categories import reference_level
from ...ui import ModellingDisplay, print_table
from .._communicate import CommunicateResult, communicate, models_to_report

# contrasts are differences from these levels; age effects are level effects
REFERENCES = {
    "beta_male": reference_level("sex"),
    "province_effects": reference_level("province"),
}


def build_coefficient_table(
    fitted: FittedModel, credible_mass: float = 0.95
) -> pd.DataFrame:
    """
    One row per coefficient level, on the logit scale and after the inverse
    logit. `reference` names the level a contrast is measured against.
    """
    tail = (1.0 - credible_mass) / 2
    rows = []
    for label, series in fitted.parameter_draws().items():
        flat = series.reshape(-1)
        prob = expit(flat)
        variable = label.split("[", 1)[0]
        rows.append(
            {
                "parameter": label,
                "reference": REFERENCES.get(variable, ""),
                "logit_mean": float(flat.mean()),
                "logit_lower": float(np.quantile(flat, tail)),
                "logit_upper": float(np.quantile(flat, 1 - tail)),
                "point_estimate": float(prob.mean()),
                "lower_bound": float(np.quantile(prob, tail)),
                "upper_bound": float(np.quantile(prob, 1 - tail)),
            }
        )
    return pd.DataFrame(rows)


@communicate
def coefficient_table(best_model: bool = True, credible_mass: float = 0.95):
    """Coefficient table with 95% intervals on the logit and probability scale."""

    def communicate(
        state: AnalysisState,
        display: ModellingDisplay | None = None,
    ) -> Tuple[AnalysisState, CommunicateResult]:
        for model_analysis in models_to_report(state, best_model):
            table = build_coefficient_table(model_analysis.fitted, credible_mass)
            state.add_table(table, f"model_{model_analysis.model_name}_coefficients")
            if display is None:
                print_table(table, title=f"{model_analysis.model_name} coefficients")
        return state, "pass"

    return communicate


@communicate
def diagnostic_table(best_model: bool = True, threshold: float = 1.05):
    """Per-parameter convergence statistics with pass/fail flags."""

    def communicate(
        state: AnalysisState,
        display: ModellingDisplay | None = None,
    ) -> Tuple[AnalysisState, CommunicateResult]:
        result: CommunicateResult = "pass"
        for model_analysis in models_to_report(state, best_model):
            table = model_analysis.diagnostic("convergence")
            if table is None:
                table = rhat_table(model_analysis.fitted, threshold=threshold)
            state.add_table(table, f"model_{model_analysis.model_name}_diagnostics")
            if not table["passed"].all():
                result = "fail"
        return state, result

    return communicate


@communicate
def estimate_table():
    """Every post-stratified estimate of the run in one table."""

    def communicate(
        state: AnalysisState,
        display: ModellingDisplay | None = None,
    ) -> Tuple[AnalysisState, CommunicateResult]:
        rows = []
        for name, estimate in state.estimates.items():
            if isinstance(estimate, pd.DataFrame):
                state.add_table(estimate, name)
                continue
            rows.append(
                {
                    "name": name,
                    "estimate": estimate.estimate,
                    "lower": estimate.lower,
                    "upper": estimate.upper,
                    "n_imputed": estimate.n_imputed,
                    "reliable": estimate.reliable,
                }
            )
        if not rows:
            return state, "NA"
        table = pd.DataFrame(rows)
        state.add_table(table, "estimates")
        if display is None:
            print_table(table, title="Post-stratified ownership rate")
        return state, "pass"

    return communicate
