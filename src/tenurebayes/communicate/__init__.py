from ._communicate import CommunicateResult, Communicator, communicate
from .communicate_config import CommunicateConfig
from .plots import forest_plot, province_estimate_plot, trace_plot
from .tables import (
    build_coefficient_table,
    coefficient_table,
    diagnostic_table,
    estimate_table,
)

__all__ = [
    "Communicator",
    "CommunicateResult",
    "communicate",
    "CommunicateConfig",
    "build_coefficient_table",
    "coefficient_table",
    "diagnostic_table",
    "estimate_table",
    "forest_plot",
    "province_estimate_plot",
    "trace_plot",
]
