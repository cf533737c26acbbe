import argparse
import pathlib

from ..analysis import AnalysisConfig, communicate, load_data, model, poststratification
from ..ui import ModellingDisplay
from ..utils import init_logger
from .outputs import write_outputs

logger = init_logger()


def run_full(args):
    config = AnalysisConfig.from_yaml(args.config)
    display = ModellingDisplay()
    out = pathlib.Path(args.out)
    out.mkdir(parents=True, exist_ok=True)

    observations, strata = load_data(config.data_loader, display)

    with display.capture_logs():
        analysis_state = model(
            observations=observations,
            model_config=config.models,
            checker_config=config.checkers,
            platform_config=config.platform,
            display=display,
            strata=strata,
        )
    if strata is not None:
        analysis_state = poststratification(analysis_state, config.poststrat)
    else:
        logger.warning("No stratum table configured; skipping post-stratification.")

    analysis_state = communicate(
        analysis_state=analysis_state,
        communicate_config=config.communicate,
    )
    analysis_state.save(path=out)
    write_outputs(analysis_state, out)


def main():
    parser = argparse.ArgumentParser(
        description="Load data, fit, check, post-stratify and report with tenurebayes."
    )
    parser.add_argument(
        "--config",
        required=True,
        help="Path to the configuration file (YAML format).",
    )
    parser.add_argument("--out", required=True, help="Directory to write results to.")

    args = parser.parse_args()
    run_full(args)


if __name__ == "__main__":
    main()
