import argparse
import pathlib

from ..analysis import AnalysisConfig, AnalysisState, communicate, poststratification
from ..load import prepare_strata, read_table
from .outputs import write_outputs


def run_poststrat(args):
    analysis_state = AnalysisState.load(path=pathlib.Path(args.analysis_state))
    config = AnalysisConfig.from_yaml(args.config)
    out = pathlib.Path(args.out)
    out.mkdir(parents=True, exist_ok=True)

    if args.strata is not None:
        analysis_state.strata = prepare_strata(
            read_table(pathlib.Path(args.strata)),
            column_map=config.data_loader.column_map,
            label_maps=config.data_loader.label_maps,
        )

    analysis_state = poststratification(analysis_state, config.poststrat)
    analysis_state = communicate(
        analysis_state=analysis_state,
        communicate_config=config.communicate,
    )
    analysis_state.save(path=out)
    write_outputs(analysis_state, out)


def main():
    parser = argparse.ArgumentParser(
        description="Post-stratify a saved analysis over census strata."
    )
    parser.add_argument(
        "--config",
        required=True,
        help="Path to the configuration file (YAML format).",
    )
    parser.add_argument(
        "--analysis_state", required=True, help="Path to the saved analysis state dir"
    )
    parser.add_argument(
        "--strata",
        default=None,
        help="Stratum table; defaults to the one saved with the analysis state.",
    )
    parser.add_argument("--out", required=True, help="Directory to write results to.")

    args = parser.parse_args()
    run_poststrat(args)


if __name__ == "__main__":
    main()
