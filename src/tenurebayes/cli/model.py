import argparse
import pathlib

from ..analysis import AnalysisConfig, model
from ..load import prepare_observations, read_table
from ..ui import ModellingDisplay
from .outputs import write_outputs


def run_model(args):
    config = AnalysisConfig.from_yaml(args.config)
    display = ModellingDisplay()
    out = pathlib.Path(args.out)

    out.mkdir(parents=True, exist_ok=True)
    observations = prepare_observations(
        read_table(pathlib.Path(args.data)),
        column_map=config.data_loader.column_map,
        label_maps=config.data_loader.label_maps,
        unknown_outcomes=config.data_loader.unknown_outcomes,
    )

    with display.capture_logs():
        analysis_state = model(
            observations=observations,
            model_config=config.models,
            checker_config=config.checkers,
            platform_config=config.platform,
            display=display,
        )
    analysis_state.save(path=out)
    write_outputs(analysis_state, out)


def main():
    parser = argparse.ArgumentParser(
        description="Fit dwelling ownership models and run quality checks using tenurebayes."
    )
    parser.add_argument(
        "--config",
        required=True,
        help="Path to the configuration file (YAML format).",
    )
    parser.add_argument(
        "--data",
        required=True,
        help="Path to the cleaned observation table (parquet, csv or jsonl).",
    )
    parser.add_argument("--out", required=True, help="Directory to write results to.")

    args = parser.parse_args()
    run_model(args)


if __name__ == "__main__":
    main()
