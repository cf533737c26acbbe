from typing import Tuple

import arviz as az
import matplotlib.pyplot as plt

from ...analysis_state import AnalysisState
from ...ui import ModellingDisplay
from .._communicate import CommunicateResult, communicate, models_to_report


@communicate
def trace_plot(
    vars: list[str] | None = None,
    best_model: bool = True,
    figsize: tuple[int, int] = (10, 8),
    **kwargs,
):
    """Trace plots of the linear predictor coefficients, one line per chain."""

    def communicate(
        state: AnalysisState,
        display: ModellingDisplay | None = None,
    ) -> Tuple[AnalysisState, CommunicateResult]:
        for model_analysis in models_to_report(state, best_model):
            az.plot_trace(
                model_analysis.inference_data,
                var_names=vars or model_analysis.fitted.coefficient_names,
                figsize=figsize,
                **kwargs,
            )
            fig = plt.gcf()
            state.add_plot(fig, f"model_{model_analysis.model_name}_trace")
        return state, "pass"

    return communicate


@communicate
def forest_plot(
    vars: list[str] | None = None,
    best_model: bool = True,
    figsize: tuple[int, int] = (8, 8),
    **kwargs,
):
    """Forest plot of the coefficient posteriors across chains."""

    def communicate(
        state: AnalysisState,
        display: ModellingDisplay | None = None,
    ) -> Tuple[AnalysisState, CommunicateResult]:
        for model_analysis in models_to_report(state, best_model):
            az.plot_forest(
                model_analysis.inference_data,
                var_names=vars or model_analysis.fitted.coefficient_names,
                combined=True,
                hdi_prob=0.95,
                figsize=figsize,
                **kwargs,
            )
            fig = plt.gcf()
            state.add_plot(fig, f"model_{model_analysis.model_name}_forest")
        return state, "pass"

    return communicate


@communicate
def province_estimate_plot(figsize: tuple[int, int] = (8, 5)):
    """Post-stratified ownership rate per province with its interval."""

    def communicate(
        state: AnalysisState,
        display: ModellingDisplay | None = None,
    ) -> Tuple[AnalysisState, CommunicateResult]:
        table = state.estimates.get("estimate_by_province")
        if table is None:
            return state, "NA"
        table = table.sort_values("estimate")
        fig, ax = plt.subplots(figsize=figsize)
        ax.errorbar(
            table["estimate"],
            table["province"],
            xerr=[
                table["estimate"] - table["lower"],
                table["upper"] - table["estimate"],
            ],
            fmt="o",
        )
        ax.set_xlabel("ownership rate")
        ax.set_title("Post-stratified ownership rate by province")
        state.add_plot(fig, "estimate_by_province_plot")
        return state, "pass"

    return communicate
