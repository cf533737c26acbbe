from ._check import Checker, CheckerResult, checker
from .checker_config import CheckerConfig
from .checkers import (
    bfmi,
    divergences,
    ess_bulk,
    ess_tail,
    loo,
    posterior_predictive_check,
    prior_predictive_check,
    r_hat,
    waic,
)
from .diagnostics import (
    PSRF,
    DiagnosticReport,
    autocorrelation,
    diagnose,
    gelman_rubin,
    rhat_table,
    trace,
)

__all__ = [
    "PSRF",
    "Checker",
    "CheckerConfig",
    "CheckerResult",
    "DiagnosticReport",
    "autocorrelation",
    "bfmi",
    "checker",
    "diagnose",
    "divergences",
    "ess_bulk",
    "ess_tail",
    "gelman_rubin",
    "loo",
    "posterior_predictive_check",
    "prior_predictive_check",
    "r_hat",
    "rhat_table",
    "trace",
    "waic",
]
