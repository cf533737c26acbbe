from typing import Tuple

import numpy as np

from tenurebayes.analyse import Checker, CheckerResult, checker
from tenurebayes.analysis_state import ModelAnalysisState
from tenurebayes.ui import ModellingDisplay


@checker
def male_effect_sign(
    expected: int = 1,
    mass: float = 0.95,
) -> Checker:
    """
    Passes if the central `mass` interval of beta_male lies entirely on the
    `expected` side of zero (1: men more likely to own, -1: less likely).
    """

    def check(
        state: ModelAnalysisState,
        display: ModellingDisplay | None = None,
    ) -> Tuple[ModelAnalysisState, CheckerResult]:
        draws = state.fitted.draws("beta_male").reshape(-1)
        lower, upper = np.quantile(draws, [(1 - mass) / 2, (1 + mass) / 2])
        state.add_diagnostic("beta_male_interval", [float(lower), float(upper)])

        if (expected > 0 and lower > 0) or (expected < 0 and upper < 0):
            return state, "pass"

        msg = f"beta_male interval [{lower:.3f}, {upper:.3f}] does not exclude zero on the expected side."
        if display:
            display.logger.info(msg)
        else:
            print(msg)
        return state, "fail"

    return check
