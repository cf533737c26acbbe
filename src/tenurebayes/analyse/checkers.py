from typing import Tuple

import arviz as az
import jax
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from numpyro.infer import Predictive

from ..analysis_state import ModelAnalysisState
from ..load.categories import OUTCOME
from ..predict import posterior_predictive_summary, simulate_outcomes
from ..ui import ModellingDisplay
from ._check import Checker, CheckerResult, checker
from .diagnostics import DEFAULT_THRESHOLD, diagnose


def _convergence_table(
    state: ModelAnalysisState, threshold: float | None = None
) -> pd.DataFrame:
    """
    Diagnose once per state; later checkers reuse the table. Only r_hat passes
    a threshold, so the stored report keeps the one it was configured with.
    """
    report = state.diagnostic("diagnostic_report")
    if report is None or (
        threshold is not None and getattr(report, "threshold", None) != threshold
    ):
        report = diagnose(
            state.fitted, threshold=DEFAULT_THRESHOLD if threshold is None else threshold
        )
        state.add_diagnostic("diagnostic_report", report)
        state.add_diagnostic("convergence", report.table)
    return state.diagnostic("convergence")


@checker(when="before")
def prior_predictive_check(
    num_samples: int = 500,
    mass: float = 0.99,
    figsize: Tuple[int, int] = (8, 5),
) -> Checker:
    """
    Check that the priors can produce the observed ownership rate.

    Args:
        num_samples: prior predictive datasets to simulate.
        mass: central mass of the prior predictive rate that must contain the
            observed rate.
        figsize: figure size of the stored plot.
    """

    def check(
        state: ModelAnalysisState, display: ModellingDisplay | None = None
    ) -> Tuple[ModelAnalysisState, CheckerResult]:
        rng_key = jax.random.PRNGKey(state.model_config.fit.seed)
        predictive = Predictive(state.model, num_samples=num_samples)
        samples = predictive(rng_key, **state.prior_features)
        prior_obs = np.asarray(samples["obs"])
        if "prior_predictive" not in state.inference_data.groups():
            state.inference_data.add_groups(
                {"prior_predictive": {"obs": prior_obs[None, ...]}}
            )

        rates = prior_obs.mean(axis=1)
        observed = float(state.observations[OUTCOME].mean())
        lower, upper = np.quantile(rates, [(1 - mass) / 2, (1 + mass) / 2])
        state.add_diagnostic(
            "prior_predictive_rate",
            {"observed": observed, "lower": float(lower), "upper": float(upper)},
        )

        fig, ax = plt.subplots(figsize=figsize)
        ax.hist(rates, bins=30, alpha=0.7, label="prior predictive")
        ax.axvline(observed, color="black", linestyle="--", label="observed")
        ax.set_xlabel("ownership rate")
        ax.set_title("Prior predictive ownership rate")
        ax.legend()
        state.add_diagnostic("prior_predictive_plot", fig)

        if lower <= observed <= upper:
            return state, "pass"
        if display:
            display.logger.info(
                f"Observed rate {observed:.3f} outside prior predictive [{lower:.3f}, {upper:.3f}]"
            )
        return state, "fail"

    return check


@checker
def r_hat(threshold: float = DEFAULT_THRESHOLD):
    def check(state: ModelAnalysisState, display: ModellingDisplay | None = None):
        table = _convergence_table(state, threshold)
        if state.diagnostic("diagnostic_report").converged:
            return state, "pass"
        if display:
            display.logger.info(
                f"PSRF above {threshold}: {table.loc[~table.passed, 'parameter'].tolist()}"
            )
        return state, "fail"

    return check


@checker
def ess_bulk(threshold: float = 400):
    def check(state: ModelAnalysisState, display: ModellingDisplay | None = None):
        ess = _convergence_table(state).ess_bulk.values
        if np.all(ess > threshold):
            return state, "pass"
        if display:
            display.logger.info(f"Low ESS-bulk: {ess.min():.0f}")
        return state, "fail"

    return check


@checker
def ess_tail(threshold: float = 400):
    def check(state: ModelAnalysisState, display: ModellingDisplay | None = None):
        ess = _convergence_table(state).ess_tail.values
        if np.all(ess > threshold):
            return state, "pass"
        if display:
            display.logger.info(f"Low ESS-tail: {ess.min():.0f}")
        return state, "fail"

    return check


@checker
def divergences(threshold: int = 0):
    """
    Check the number of divergent transitions.

    Args:
        threshold: largest acceptable number of divergences over all chains.
    """

    def check(state: ModelAnalysisState, display: ModellingDisplay | None = None):
        divs = int(state.inference_data.sample_stats["diverging"].values.sum())
        state.add_diagnostic("divergences", divs)

        if divs <= threshold:
            return state, "pass"
        if display:
            display.logger.info(f"{divs} divergences detected.")
        return state, "fail"

    return check


@checker
def bfmi(threshold: float = 0.20):
    def check(state: ModelAnalysisState, display: ModellingDisplay | None = None):
        if "energy" not in state.inference_data.sample_stats:
            if display:
                display.logger.info("BFMI skipped: no energy in sample_stats")
            return state, "NA"

        values = np.asarray(az.bfmi(state.inference_data))
        state.add_diagnostic("bfmi", values.tolist())
        if np.all(values >= threshold):
            return state, "pass"
        if display:
            chains = np.where(values < threshold)[0].tolist()
            display.logger.warning(f"Low BFMI in chains: {chains}")
        return state, "fail"

    return check


@checker
def waic(scale: str = "log") -> Checker:
    """
    Compute WAIC and record elpd_waic, which is used to pick the best model.

    Args:
        scale: "log" (default), "negative_log" or "deviance".
    """

    def check(state: ModelAnalysisState, display: ModellingDisplay | None = None):
        waic_res = az.waic(state.inference_data, scale=scale)
        state.add_diagnostic("elpd_waic", float(waic_res["elpd_waic"]))
        state.add_diagnostic("p_waic", float(waic_res["p_waic"]))

        if display:
            display.logger.info(
                f"elpd_waic: {waic_res['elpd_waic']:.2f} ± {waic_res['se']:.2f}, "
                f"p_waic: {waic_res['p_waic']:.2f}"
            )
        return state, "NA"

    return check


@checker
def loo(k_threshold: float = 0.7):
    """
    Pareto-smoothed importance sampling LOO; fails when any observation has a
    Pareto k above `k_threshold`.
    """

    def check(state: ModelAnalysisState, display: ModellingDisplay | None = None):
        loo_res = az.loo(state.inference_data, pointwise=True)
        state.add_diagnostic("elpd_loo", float(loo_res["elpd_loo"]))
        bad = int((loo_res.pareto_k.values > k_threshold).sum())
        state.add_diagnostic("pareto_k_bad", bad)
        if bad == 0:
            return state, "pass"
        if display:
            display.logger.warning(f"{bad} points with Pareto k > {k_threshold}")
        return state, "fail"

    return check


@checker
def posterior_predictive_check(
    num_samples: int | None = 500,
    alpha: float = 0.05,
    figsize: Tuple[int, int] = (8, 5),
) -> Checker:
    """
    Compare simulated with observed ownership rates on the training table.

    Fails when the Bayesian p-value of the overall rate lies outside
    [alpha / 2, 1 - alpha / 2].
    """

    def check(
        state: ModelAnalysisState, display: ModellingDisplay | None = None
    ) -> Tuple[ModelAnalysisState, CheckerResult]:
        fitted = state.fitted
        total = fitted.num_chains * fitted.num_draws
        draws = simulate_outcomes(
            fitted, num_samples=None if num_samples is None else min(num_samples, total)
        )
        summary = posterior_predictive_summary(fitted, draws, alpha=alpha)
        state.add_diagnostic("ppc_draws", draws.outcomes)
        state.add_diagnostic("posterior_predictive_summary", summary)

        overall = summary.iloc[0]
        fig, ax = plt.subplots(figsize=figsize)
        ax.hist(draws.outcomes.mean(axis=1), bins=30, alpha=0.7, label="posterior predictive")
        ax.axvline(overall.observed, color="black", linestyle="--", label="observed")
        ax.set_xlabel("ownership rate")
        ax.set_title("Posterior predictive vs observed ownership rate")
        ax.legend()
        state.add_diagnostic("posterior_predictive_plot", fig)

        if alpha / 2 <= overall.p_value <= 1 - alpha / 2:
            return state, "pass"
        if display:
            display.logger.info(
                f"Observed rate {overall.observed:.3f} is extreme under the "
                f"posterior predictive (p = {overall.p_value:.3f})"
            )
        return state, "fail"

    return check
