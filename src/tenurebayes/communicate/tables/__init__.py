from .tables import (
    build_coefficient_table,
    coefficient_table,
    diagnostic_table,
    estimate_table,
)

__all__ = [
    "build_coefficient_table",
    "coefficient_table",
    "diagnostic_table",
    "estimate_table",
]
