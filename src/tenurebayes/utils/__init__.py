from .draws import flatten_draws
from .logger import init_logger

__all__ = ["flatten_draws", "init_logger"]
