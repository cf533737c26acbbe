import jax
import numpyro

from ..ui import ModellingDisplay
from ..utils import init_logger
from .config import PlatformConfig

logger = init_logger()


def configure_computation_platform(
    platform_config: PlatformConfig,
    display: ModellingDisplay | None = None,
) -> None:
    """
    Select the jax backend and precision, and on cpu split the host into
    `num_devices` devices so chains with chain_method "parallel" each get one.
    Call once, before any model code runs.
    """
    message = (
        f"Using {platform_config.device_type} "
        f"({'64' if platform_config.enable_x64 else '32'}-bit)"
    )
    if display is not None:
        display.update_logs(message)
    logger.debug(message)

    numpyro.set_platform(platform_config.device_type)
    numpyro.enable_x64(platform_config.enable_x64)

    if platform_config.device_type != "cpu":
        return
    numpyro.set_host_device_count(platform_config.num_devices)
    available = jax.local_device_count()
    if available != platform_config.num_devices:
        # jax was initialised before the device count could take effect
        message = (
            f"Asked for {platform_config.num_devices} host devices, jax has {available}; "
            "parallel chains will run sequentially."
        )
        if display is not None:
            display.update_logs(message)
        logger.warning(message)
