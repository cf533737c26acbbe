from .predict import (
    PredictiveDraws,
    impute_missing,
    posterior_predictive_summary,
    simulate_outcomes,
)

__all__ = [
    "PredictiveDraws",
    "impute_missing",
    "posterior_predictive_summary",
    "simulate_outcomes",
]
