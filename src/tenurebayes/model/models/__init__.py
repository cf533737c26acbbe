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
    "OwnershipLogit",
    "OwnershipLogitPooled",
    "ParameterConfig",
    "PriorConfig",
]
