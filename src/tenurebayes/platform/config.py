import os
from dataclasses import dataclass
from typing import Any, Dict

import yaml


@dataclass
class PlatformConfig:
    device_type: str = "cpu"  # cpu, gpu or tpu
    num_devices: int | None = None  # host devices for parallel chains, None = cpu count
    enable_x64: bool = False  # double precision for the sampler

    def __post_init__(self):
        if self.device_type not in ("cpu", "gpu", "tpu"):
            raise ValueError(
                f"Unknown device type '{self.device_type}'. Choose cpu, gpu or tpu."
            )
        if self.num_devices is None and self.device_type == "cpu":
            self.num_devices = os.cpu_count() or 1
        if self.num_devices is not None and self.num_devices < 1:
            raise ValueError(f"num_devices must be >= 1, got {self.num_devices}.")

    @classmethod
    def from_yaml(cls, path: str) -> "PlatformConfig":
        with open(path, "r") as f:
            config: dict = yaml.safe_load(f)

        return cls.from_dict(config)

    @classmethod
    def from_dict(cls, config: Dict[str, Any] | None) -> "PlatformConfig":
        if config is None:
            return cls()
        unknown = set(config) - {"device_type", "num_devices", "enable_x64"}
        if unknown:
            raise ValueError(f"Invalid configuration for PlatformConfig keys: {sorted(unknown)}")
        return cls(
            device_type=config.get("device_type", "cpu"),
            num_devices=config.get("num_devices", None),
            enable_x64=config.get("enable_x64", False),
        )
