from .poststrat import (
    PostStratConfig,
    PostStratEstimate,
    poststratify,
    poststratify_by,
    weighted_rate,
)

__all__ = [
    "PostStratConfig",
    "PostStratEstimate",
    "poststratify",
    "poststratify_by",
    "weighted_rate",
]
