from dataclasses import dataclass, field
from typing import ClassVar, List

import yaml

from ..registry import RegistryInfo, _import_path, registry_get
from ..utils import init_logger
from ._communicate import Communicator

logger = init_logger()


def _build(name: str, kwargs: dict | None = None) -> Communicator:
    return registry_get(RegistryInfo(type="communicate", name=name))(**(kwargs or {}))


@dataclass
class CommunicateConfig:
    """Which tables and plots are produced from the analysis."""

    DEFAULT_COMMUNICATE: ClassVar[List[str]] = [
        "coefficient_table",
        "diagnostic_table",
        "estimate_table",
        "trace_plot",
        "forest_plot",
    ]

    enabled_communicators: List[Communicator] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.enabled_communicators:
            self.enabled_communicators = [
                _build(name) for name in self.DEFAULT_COMMUNICATE
            ]

    @classmethod
    def from_yaml(cls, path: str) -> "CommunicateConfig":
        with open(path, "r") as f:
            config: dict = yaml.safe_load(f)

        return cls.from_dict(config)

    @classmethod
    def from_dict(cls, config: dict | None) -> "CommunicateConfig":
        if config is None:
            config = {}

        enabled_communicators = []
        if custom_config := config.get("custom_communicate", None):
            enabled_communicators.extend(cls._load_custom_communicate(custom_config))

        communicate_config = config.get("communicate", None)
        if isinstance(communicate_config, list):
            for entry in communicate_config:
                if isinstance(entry, dict):
                    name, kwargs = next(iter(entry.items()))
                    enabled_communicators.append(_build(name, kwargs))
                else:
                    enabled_communicators.append(_build(entry))
        elif isinstance(communicate_config, dict):
            for name, kwargs in communicate_config.items():
                enabled_communicators.append(_build(name, kwargs))

        return cls(enabled_communicators=enabled_communicators)

    @classmethod
    def _load_custom_communicate(cls, config: list | dict) -> List[Communicator]:
        """Each entry has a `path` and optionally the `communicate` names to build."""
        entries = config if isinstance(config, list) else [config]
        loaded: List[Communicator] = []

        for entry in entries:
            _import_path(entry["path"])
            communicators = entry.get("communicate", None)
            if communicators is None:
                continue
            if not isinstance(communicators, list):
                communicators = [communicators]
            for communicator in communicators:
                if isinstance(communicator, str):
                    name, kwargs = communicator, {}
                elif isinstance(communicator, dict) and len(communicator) == 1:
                    name, kwargs = next(iter(communicator.items()))
                else:
                    raise ValueError(
                        "Each communicator must be either a string or a dict with kwargs, "
                        "e.g. coefficient_table: {credible_mass: 0.9}"
                    )
                try:
                    builder = registry_get(RegistryInfo(type="communicate", name=name))
                except KeyError:
                    logger.warning(f"Communicator {name} not found in registry. Skipping.")
                    continue
                loaded.append(builder(**kwargs))
        return loaded
