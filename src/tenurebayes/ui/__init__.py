from .display import ModellingDisplay, print_table
from .logger import LogCaptureHandler

__all__ = ["ModellingDisplay", "LogCaptureHandler", "print_table"]
