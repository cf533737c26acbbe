import json
import pathlib

import numpy as np

from ..analysis_state import AnalysisState
from ..communicate import build_coefficient_table
from ..errors import merge_warnings
from ..utils import init_logger

logger = init_logger()


def write_outputs(analysis_state: AnalysisState, out: pathlib.Path) -> None:
    """
    Write the flat result files of the best model next to the saved state:

        coefficients.csv, diagnostics.csv, warnings.json, ppc_draws.npy,
        population_draws.npy, estimate.json, estimate_by_<group>.csv
    """
    out.mkdir(parents=True, exist_ok=True)
    best = analysis_state.get_best_model()
    fitted = best.fitted

    build_coefficient_table(fitted).to_csv(out / "coefficients.csv", index=False)

    convergence = best.diagnostic("convergence")
    if convergence is not None:
        convergence.to_csv(out / "diagnostics.csv", index=False)

    ppc_draws = best.diagnostic("ppc_draws")
    if ppc_draws is not None:
        np.save(out / "ppc_draws.npy", np.asarray(ppc_draws))

    report = best.diagnostic("diagnostic_report")
    groups = [fitted.warnings, getattr(report, "warnings", ())]

    estimate = analysis_state.estimates.get("population")
    if estimate is not None:
        groups.append(estimate.warnings)
        np.save(out / "population_draws.npy", estimate.predictive.outcomes)
        with (out / "estimate.json").open("w", encoding="utf-8") as fp:
            json.dump({"model": best.model_name, **estimate.to_dict()}, fp, indent=2)
    for name, table in analysis_state.estimates.items():
        if name.startswith("estimate_by_"):
            table.to_csv(out / f"{name}.csv", index=False)

    with (out / "warnings.json").open("w", encoding="utf-8") as fp:
        json.dump([w.to_dict() for w in merge_warnings(*groups)], fp, indent=2)

    logger.info(f"Wrote results of {best.model_name} to {out}")
