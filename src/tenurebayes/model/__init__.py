from .fit import fit
from .model import ModelsToRunConfig
from .models import (
    BaseModel,
    FitConfig,
    ModelConfig,
    OwnershipLogit,
    OwnershipLogitPooled,
    ParameterConfig,
    PriorConfig,
)

__all__ = [
    "BaseModel",
    "FitConfig",
    "ModelConfig",
    "ModelsToRunConfig",
    "OwnershipLogit",
    "OwnershipLogitPooled",
    "ParameterConfig",
    "PriorConfig",
    "fit",
]
