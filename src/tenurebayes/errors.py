"""Exceptions and warning records raised or collected by the pipeline.

Category and alignment problems are exceptions and propagate immediately.
Sampler quality problems are collected as :class:`WarningRecord` values and
attached to the returned results so that an analyst sees them in the final
output, not only in the logs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple, Type


class TenureBayesError(Exception):
    """Base class for all tenurebayes exceptions."""


class InvalidFactorLevel(TenureBayesError, ValueError):
    """A row references a category outside the fixed category sets."""

    def __init__(self, factor: str, values: Iterable[Any], allowed: Iterable[Any]):
        self.factor = factor
        self.values = sorted({str(v) for v in values})
        self.allowed = [str(a) for a in allowed]
        super().__init__(
            f"Invalid level(s) {self.values} for factor '{factor}'. "
            f"Allowed levels are: {self.allowed}"
        )


class SamplerInitializationFailure(TenureBayesError, RuntimeError):
    """A chain could not find valid starting values."""


class SamplingCancelled(TenureBayesError, RuntimeError):
    """Every chain was cancelled before completing, so there is nothing to pool."""


class CategoryMismatch(TenureBayesError, ValueError):
    """The stratum table does not line up with the fitted model's categories."""


class AnalysisWarning(UserWarning):
    """Base category for non-fatal conditions surfaced in results."""


class DivergentTransition(AnalysisWarning):
    pass


class LowEffectiveSampleSize(AnalysisWarning):
    pass


class NonConvergence(AnalysisWarning):
    pass


class UndefinedPrediction(AnalysisWarning):
    pass


@dataclass(frozen=True)
class WarningRecord:
    """A non-fatal condition attached to a fit, diagnostic report or estimate."""

    category: Type[AnalysisWarning]
    message: str
    parameter: Optional[str] = None
    chain: Optional[int] = None
    value: Optional[float] = None

    @property
    def kind(self) -> str:
        return self.category.__name__

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "message": self.message,
            "parameter": self.parameter,
            "chain": self.chain,
            "value": self.value,
        }


def emit(
    logger: logging.Logger,
    category: Type[AnalysisWarning],
    message: str,
    **details: Any,
) -> WarningRecord:
    """Log a warning and return the record so the caller can attach it."""
    record = WarningRecord(category=category, message=message, **details)
    logger.warning(f"{record.kind}: {message}")
    return record


def merge_warnings(*groups: Iterable[WarningRecord]) -> Tuple[WarningRecord, ...]:
    """Concatenate warning groups, dropping exact duplicates but keeping order."""
    seen: List[WarningRecord] = []
    for group in groups:
        for record in group:
            if record not in seen:
                seen.append(record)
    return tuple(seen)
