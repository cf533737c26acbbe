from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import yaml

from tenurebayes.utils import init_logger

from ..categories import FACTORS, LabelMap

logger = init_logger()


@dataclass
class DataLoaderConfig:
    """Where the cleaned tables live and how their columns/labels translate."""

    observations_path: Optional[str] = None
    strata_path: Optional[str] = None
    # rename raw columns onto dwelling_owned/sex/age_group/age/province/population_count
    column_map: Dict[str, str] = field(default_factory=dict)
    label_maps: Dict[str, LabelMap] = field(default_factory=dict)
    # labels in the outcome column which mean "did not answer"
    unknown_outcomes: tuple = ("Don't know", "Refusal", "Not stated")

    @classmethod
    def from_yaml(cls, yaml_path: str) -> "DataLoaderConfig":
        """
        Create a DataLoaderConfig from a YAML file

        The YAML should have this structure:
        ```yaml
        paths:
          observations: data/survey_clean.parquet
          strata: data/census_strata.csv
        column_map:
          PRV: province
          owned: dwelling_owned
        label_maps:
          province:
            "48": Alberta
            "59": British Columbia
        ```
        """
        with open(yaml_path) as f:
            config_dict = yaml.safe_load(f)

        return cls.from_dict(config_dict)

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any] | None) -> "DataLoaderConfig":
        if config_dict is None:
            config_dict = {}

        paths = config_dict.get("paths", {}) or {}

        label_maps = {}
        for factor, mapping in (config_dict.get("label_maps", {}) or {}).items():
            if factor not in FACTORS:
                raise ValueError(
                    f"Label map given for unknown factor '{factor}'. "
                    f"Known factors: {list(FACTORS)}"
                )
            # targets are checked here so that a bad map fails before any data is read
            label_maps[factor] = LabelMap.from_dict(factor, mapping)
            logger.debug(f"Loaded label map for {factor}: {len(mapping or {})} codes")

        kwargs = {}
        if "unknown_outcomes" in config_dict:
            kwargs["unknown_outcomes"] = tuple(config_dict["unknown_outcomes"])

        return cls(
            observations_path=paths.get("observations"),
            strata_path=paths.get("strata"),
            column_map=dict(config_dict.get("column_map", {}) or {}),
            label_maps=label_maps,
            **kwargs,
        )
