from .config import PlatformConfig
from .setup import configure_computation_platform

__all__ = [
    "PlatformConfig",
    "configure_computation_platform",
]
