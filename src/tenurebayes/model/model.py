from __future__ import annotations

from dataclasses import dataclass, field
from typing import (
    Any,
    ClassVar,
    Dict,
    Iterator,
    List,
    Optional,
    Type,
    Union,
)

import pandas as pd
import yaml

from tenurebayes.utils import init_logger

from ..analysis_state import ModelAnalysisState
from .models import BaseModel, ModelConfig, OwnershipLogit, OwnershipLogitPooled

logger = init_logger()


@dataclass
class ModelsToRunConfig:
    """Configuration for the models to be fitted in the analysis."""

    DEFAULT_MODELS: ClassVar[List[str]] = ["OwnershipLogit"]
    AVAILABLE_MODELS: ClassVar[Dict[str, Type[BaseModel]]] = {
        "OwnershipLogit": OwnershipLogit,
        "OwnershipLogitPooled": OwnershipLogitPooled,
    }

    # (model_class, model_config) pairs
    enabled_models: List[
        tuple[Type[BaseModel], Optional[Union[Dict[str, Any], ModelConfig]]]
    ] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.enabled_models:
            self.enabled_models = [
                (self.AVAILABLE_MODELS[model], None) for model in self.DEFAULT_MODELS
            ]

    @classmethod
    def from_yaml(cls, yaml_path: str) -> "ModelsToRunConfig":
        with open(yaml_path, "r") as f:
            config: dict = yaml.safe_load(f)

        return cls.from_dict(config)

    @classmethod
    def from_dict(cls, config: dict | None) -> "ModelsToRunConfig":
        """
        Accepts either names or name/config mappings::

            models:
              - OwnershipLogit
              - name: OwnershipLogitPooled
                config:
                  tag: pooled
                  fit: {samples: 2000, seed: 3}
        """
        if config is None:
            config = {}

        models_config = config.get("models", None)
        if models_config is None:
            models_config = []
        elif not isinstance(models_config, list):
            models_config = [models_config]

        enabled_models = []
        for model in models_config:
            if isinstance(model, str):
                model_name, model_config = model, None
            elif isinstance(model, dict):
                model_name = model.get("name", None)
                model_config = model.get("config", None)
            else:
                raise ValueError(f"Cannot read model entry {model!r}")

            if model_name in cls.AVAILABLE_MODELS:
                enabled_models.append((cls.AVAILABLE_MODELS[model_name], model_config))
            else:
                logger.warning(
                    f"Model {model_name} not available. Choose from {list(cls.AVAILABLE_MODELS)}"
                )

        if not enabled_models:
            logger.info("No valid models specified, using defaults.")

        return cls(enabled_models=enabled_models)

    def build_models(self, observations: pd.DataFrame) -> Iterator[ModelAnalysisState]:
        """
        Instantiate every enabled model and encode the observations for it.

        Yields:
            ModelAnalysisState ready for checks and fitting.
        """
        for model_builder_cls, model_config in self.enabled_models:
            tag = None
            if isinstance(model_config, dict):
                tag = model_config.get("tag", None)
            elif isinstance(model_config, ModelConfig):
                tag = model_config.tag
            model_name = model_builder_cls.name() + (f"_{tag}" if tag else "")

            model_builder = model_builder_cls(config=model_config)
            logger.info(f"Instantiated model: {model_name}")

            features, coords, dims = model_builder.prepare_data(observations)
            logger.debug(f"Encoded {len(observations)} observations for {model_name}")

            yield ModelAnalysisState(
                model_name=model_name,
                model_builder=model_builder,
                observations=observations.copy(),
                features=features,
                coords=coords,
                dims=dims,
            )
