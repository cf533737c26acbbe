from .plots import forest_plot, province_estimate_plot, trace_plot

__all__ = ["forest_plot", "province_estimate_plot", "trace_plot"]
