from dataclasses import dataclass, field
from typing import ClassVar, List

import yaml

from ..registry import RegistryInfo, _import_path, registry_get, registry_info
from ..utils import init_logger
from ._check import Checker, When

logger = init_logger()


def _build(name: str, kwargs: dict | None = None) -> Checker:
    return registry_get(RegistryInfo(type="checker", name=name))(**(kwargs or {}))


@dataclass
class CheckerConfig:
    """Which checks run before and after fitting."""

    DEFAULT_CHECKS: ClassVar[List[str]] = [
        "prior_predictive_check",
        "r_hat",
        "divergences",
        "ess_bulk",
        "ess_tail",
        "bfmi",
        "waic",
        "posterior_predictive_check",
    ]

    enabled_checks: List[Checker] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.enabled_checks:
            self.enabled_checks = [_build(check) for check in self.DEFAULT_CHECKS]

    @classmethod
    def from_yaml(cls, path: str) -> "CheckerConfig":
        with open(path, "r") as f:
            config: dict = yaml.safe_load(f)

        return cls.from_dict(config)

    @classmethod
    def from_dict(cls, config: dict | None) -> "CheckerConfig":
        """
        Checks are given as a list of names or single-key mappings, or as one
        mapping of name to keyword arguments::

            checks:
              - r_hat: {threshold: 1.1}
              - divergences
            custom_checks:
              - path: my_checks.py
                checks: [my_check]
        """
        if config is None:
            config = {}
        enabled_checks = []

        if custom_checks_config := config.get("custom_checks", None):
            enabled_checks.extend(cls._load_custom_checks(custom_checks_config))

        checks_config = config.get("checks", None)
        if isinstance(checks_config, list):
            for check in checks_config:
                if isinstance(check, dict):
                    check_name, check_config = next(iter(check.items()))
                    enabled_checks.append(_build(check_name, check_config))
                else:
                    enabled_checks.append(_build(check))
        elif isinstance(checks_config, dict):
            for check_name, check_config in checks_config.items():
                enabled_checks.append(_build(check_name, check_config))

        return cls(enabled_checks=enabled_checks)

    @staticmethod
    def _load_custom_checks(config: list | dict) -> list[Checker]:
        """Import user files so their @checker builders register, then build the named ones."""
        entries = config if isinstance(config, list) else [config]
        loaded: list[Checker] = []

        for entry in entries:
            _import_path(entry["path"])
            checks = entry.get("checks")
            if checks is None:
                continue
            checks = checks if isinstance(checks, list) else [checks]
            for check in checks:
                if isinstance(check, str):
                    name, kwargs = check, {}
                elif isinstance(check, dict) and len(check) == 1:
                    name, kwargs = next(iter(check.items()))
                else:
                    raise ValueError(
                        "Each checker must be either a string or a dict with a single key-value pair, "
                        "e.g. my_check: {threshold: 0.1}"
                    )
                try:
                    builder = registry_get(RegistryInfo(type="checker", name=name))
                except KeyError as e:
                    logger.warning(f"Could not find custom checker '{name}': {e}")
                    continue
                loaded.append(builder(**kwargs))

        return loaded

    def get_checkers(self, when: When = "after") -> List[Checker]:
        if when not in ("before", "after"):
            raise ValueError("Only 'after' and 'before' is supported.")
        return [
            check
            for check in self.enabled_checks
            if registry_info(check).metadata.get("when") == when
        ]
