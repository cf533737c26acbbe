import threading
from dataclasses import dataclass, field
from typing import Optional

import pandas as pd
import yaml

from .analyse import CheckerConfig, DiagnosticReport, diagnose
from .analysis_state import AnalysisState, ModelAnalysisState
from .communicate import CommunicateConfig
from .load import DataLoaderConfig, load_tables
from .model import ModelsToRunConfig, fit
from .platform import PlatformConfig, configure_computation_platform
from .poststrat import PostStratConfig, poststratify, poststratify_by
from .registry import registry_info
from .ui import ModellingDisplay
from .utils import init_logger

logger = init_logger()


@dataclass
class AnalysisConfig:
    """Configuration of a whole run: data, models, checks, post-stratification and outputs."""

    data_loader: DataLoaderConfig = field(default_factory=DataLoaderConfig)
    models: ModelsToRunConfig = field(default_factory=ModelsToRunConfig)
    checkers: CheckerConfig = field(default_factory=CheckerConfig)
    poststrat: PostStratConfig = field(default_factory=PostStratConfig)
    communicate: CommunicateConfig = field(default_factory=CommunicateConfig)
    platform: PlatformConfig = field(default_factory=PlatformConfig)

    @classmethod
    def from_yaml(cls, path: str) -> "AnalysisConfig":
        with open(path, "r") as f:
            config: dict = yaml.safe_load(f)

        return cls.from_dict(config)

    @classmethod
    def from_dict(cls, config: dict | None) -> "AnalysisConfig":
        config = config or {}
        return cls(
            data_loader=DataLoaderConfig.from_dict(config.get("data_loader", {})),
            models=ModelsToRunConfig.from_dict(config.get("model", {})),
            checkers=CheckerConfig.from_dict(config.get("checkers", {})),
            poststrat=PostStratConfig.from_dict(config.get("poststrat", {})),
            communicate=CommunicateConfig.from_dict(config.get("communicate", {})),
            platform=PlatformConfig.from_dict(config.get("platform", {})),
        )


def load_data(
    config: DataLoaderConfig,
    display: ModellingDisplay | None = None,
) -> tuple[pd.DataFrame, pd.DataFrame | None]:
    observations, strata = load_tables(config)
    if display is not None:
        display.update_stats(
            {
                "Observations": len(observations),
                "Strata": 0 if strata is None else len(strata),
            }
        )
    return observations, strata


def model(
    observations: pd.DataFrame,
    model_config: ModelsToRunConfig,
    checker_config: CheckerConfig,
    platform_config: PlatformConfig | None = None,
    display: ModellingDisplay | None = None,
    strata: pd.DataFrame | None = None,
    cancel_event: Optional[threading.Event] = None,
) -> AnalysisState:
    """Check, fit and re-check every configured model."""
    analysis_state = AnalysisState(observations=observations, strata=strata)
    configure_computation_platform(platform_config or PlatformConfig(), display)

    if display is not None and not display.is_live:
        display.start()

    for model_analysis_state in model_config.build_models(observations):
        # checks before fitting e.g. prior predictive checks
        model_checks(model_analysis_state, checker_config, display)

        fit(
            model_analysis_state=model_analysis_state,
            display=display,
            cancel_event=cancel_event,
        )

        # checks after fitting e.g. convergence and posterior predictive checks
        model_checks(model_analysis_state, checker_config, display)
        if model_analysis_state.diagnostic("diagnostic_report") is None:
            report = diagnose(model_analysis_state.fitted)
            model_analysis_state.add_diagnostic("diagnostic_report", report)
            model_analysis_state.add_diagnostic("convergence", report.table)

        analysis_state.add_model(model_analysis_state)

    if display is not None and display.is_live:
        display.stop()

    return analysis_state


def model_checks(
    model_analysis_state: ModelAnalysisState,
    checker_config: CheckerConfig,
    display: ModellingDisplay | None = None,
) -> ModelAnalysisState:
    """Run the checks due at this stage: "before" for unfitted models, "after" otherwise."""
    when = "after" if model_analysis_state.is_fitted else "before"
    checkers = checker_config.get_checkers(when=when)
    if display is not None:
        display.update_header(f"Running checks for {model_analysis_state.model_name}")
        display.update_logs(
            f"Enabled checks: {[registry_info(check).name for check in checkers]}"
        )

    for checker in checkers:
        name = registry_info(checker).name
        model_analysis_state, outcome = checker(model_analysis_state, display=display)
        logger.info(
            f"Checker {name} for model {model_analysis_state.model_name} returned: {outcome}"
        )
        model_analysis_state.add_diagnostic(f"check_{name}", outcome)
        if display is not None:
            display.add_check(name, outcome)

    return model_analysis_state


def poststratification(
    analysis_state: AnalysisState,
    config: PostStratConfig,
    display: ModellingDisplay | None = None,
) -> AnalysisState:
    """Post-stratify the best fitted model over the stratum table."""
    if analysis_state.strata is None:
        raise ValueError("No stratum table loaded; set data_loader.paths.strata.")

    best = analysis_state.get_best_model()
    if display is not None:
        display.update_header(f"Post-stratifying {best.model_name}")

    report = best.diagnostic("diagnostic_report")
    if not isinstance(report, DiagnosticReport):
        # reloaded states keep only the report summary
        report = diagnose(best.fitted)
    estimate = poststratify(
        best.fitted,
        analysis_state.strata,
        method=config.method,
        num_samples=config.num_samples,
        seed=config.seed,
        credible_mass=config.credible_mass,
        extra_warnings=report.warnings,
    )
    analysis_state.add_estimate("population", estimate)
    for by in config.by:
        analysis_state.add_estimate(f"estimate_by_{by}", poststratify_by(estimate, by=by))

    if display is not None:
        display.update_stat(
            "Ownership rate", f"{estimate.estimate:.3f} [{estimate.lower:.3f}, {estimate.upper:.3f}]"
        )
    return analysis_state


def communicate(
    analysis_state: AnalysisState,
    communicate_config: CommunicateConfig,
    display: ModellingDisplay | None = None,
) -> AnalysisState:
    """Build the configured tables and plots."""
    for communicator in communicate_config.enabled_communicators:
        name = registry_info(communicator).name
        if display is not None:
            display.update_header(f"Running communicator {name}")
        analysis_state, outcome = communicator(analysis_state, display=display)
        logger.info(f"Communicator {name} returned: {outcome}")

    return analysis_state
