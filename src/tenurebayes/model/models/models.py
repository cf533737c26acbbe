from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import (
    Any,
    Callable,
    ClassVar,
    Dict,
    List,
    Literal,
    Optional,
    Tuple,
    Union,
)

import jax
import jax.numpy as jnp
import numpy as np
import numpyro
import numpyro.distributions as dist
import pandas as pd

from tenurebayes.utils import init_logger

from ...errors import CategoryMismatch
from ...load.categories import FACTORS, OUTCOME, as_factor, levels
from .utils import half_student_t

logger = init_logger()

Features = Dict[str, int | jnp.ndarray | np.ndarray | None]
Coords = Dict[str, List[Any]]  # arviz coords: dim name -> labels
Dims = Dict[str, List[str]]  # arviz dims: variable -> dim names
Method = Literal["NUTS", "HMC"]
ChainMethod = Literal["parallel", "sequential", "vectorized"]


@dataclass(frozen=True, slots=True)
class FitConfig:
    method: Method = "NUTS"
    samples: int = 1000
    warmup: int = 1000
    chains: int = 4
    seed: int = 0
    progress_bar: bool = False  # numpyro's own bar, one per sampling block
    chain_method: ChainMethod = "parallel"
    target_accept: float = 0.99
    max_tree_depth: int = 10
    block_size: int = 100  # draws between cancellation checks
    timeout: Optional[float] = None  # seconds, whole run
    min_ess: float = 400.0  # below this a LowEffectiveSampleSize warning is raised

    def __post_init__(self):
        if self.chains < 2:
            raise ValueError(
                f"At least 2 chains are needed to assess convergence, got {self.chains}."
            )
        if self.samples < 1 or self.warmup < 0 or self.block_size < 1:
            raise ValueError("samples and block_size must be >= 1 and warmup >= 0.")
        if not 0.0 < self.target_accept < 1.0:
            raise ValueError("target_accept must lie strictly between 0 and 1.")
        if self.chain_method not in ("parallel", "sequential", "vectorized"):
            raise ValueError(f"Unknown chain_method '{self.chain_method}'.")

    def merged(self, **updates: Any) -> "FitConfig":
        """Return a *new* FitConfig with `updates` applied."""
        return replace(self, **updates)


@dataclass(frozen=True, slots=True)
class PriorConfig:
    distribution: Callable[..., dist.Distribution]
    distribution_args: Dict[str, Any] | None = None

    DISTRIBUTION_MAP: ClassVar[Dict[str, Callable[..., dist.Distribution]]] = {
        "normal": dist.Normal,
        "student_t": dist.StudentT,
        "half_student_t": half_student_t,
        "half_normal": dist.HalfNormal,
        "half_cauchy": dist.HalfCauchy,
        "exponential": dist.Exponential,
        "uniform": dist.Uniform,
    }

    def get_distribution(self) -> dist.Distribution:
        if self.distribution_args is None:
            return self.distribution()
        return self.distribution(**self.distribution_args)

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> "PriorConfig":
        distribution_name = config_dict.get("distribution", None)
        if distribution_name not in cls.DISTRIBUTION_MAP:
            raise ValueError(
                f"Invalid distribution name '{distribution_name}'. Valid options are: {list(cls.DISTRIBUTION_MAP.keys())}"
            )
        return cls(
            distribution=cls.DISTRIBUTION_MAP[distribution_name],
            distribution_args=config_dict.get("distribution_args", None),
        )


@dataclass(frozen=True, slots=True)
class ParameterConfig:
    name: str  # numpyro sample site name
    prior: PriorConfig
    main_effect: bool = False  # reported in the coefficient table

    def merge_in_dict(self, config_dict: Dict[str, Any]) -> "ParameterConfig":
        updates = dict(config_dict)
        new_param_name = updates.get("name")
        if new_param_name != self.name:
            raise ValueError(
                f"Parameter name mismatch: '{new_param_name}' does not match '{self.name}'. Parameter names are fixed by the model."
            )
        if new_prior := updates.get("prior", None):
            updates["prior"] = PriorConfig.from_dict(new_prior)
        return replace(self, **updates)


@dataclass
class ModelConfig:
    configurable_parameters: List[ParameterConfig] = field(default_factory=list)
    fit: FitConfig = field(default_factory=FitConfig)
    # parameters reported in the coefficient table; defaults to main_effect params
    main_effect_params: List[str] = field(default_factory=list)
    tag: Optional[str] = None

    def __post_init__(self):
        names = [param.name for param in self.configurable_parameters]
        if len(set(names)) != len(names):
            raise ValueError("Duplicate parameter names found in model configuration")

        self.main_effect_params = [
            p.name
            for p in self.configurable_parameters
            if p.main_effect and p.name not in self.main_effect_params
        ] + list(self.main_effect_params)

    def get_params(self) -> List[str]:
        return [param.name for param in self.configurable_parameters]

    def get_param(self, param: str) -> ParameterConfig | None:
        for parameter in self.configurable_parameters:
            if parameter.name == param:
                return parameter
        return None

    def parameter_to_numpyro(self, param: str) -> Dict[str, Any]:
        parameter = self.get_param(param)
        if parameter is None:
            raise ValueError(f"Parameter '{param}' not found in model configuration")
        return {"name": parameter.name, "fn": parameter.prior.get_distribution()}

    def merge_in_dict(self, config_dict: Dict[str, Any]) -> "ModelConfig":
        """
        Return a config with a merge of default and user specified values.

        fit: modify
        configurable_parameters: modify priors of existing parameters
        main_effect_params: override
        tag: override
        """
        new_fit = self.fit.merged(**config_dict.get("fit", {}))
        new_params = self.configurable_parameters

        if "configurable_parameters" in config_dict:
            updates = config_dict["configurable_parameters"]
            if isinstance(updates, dict):
                updates = [updates]
            if not isinstance(updates, list) or not all(
                isinstance(u, dict) for u in updates
            ):
                raise ValueError(
                    "configurable_parameters must be a dict or a list of dicts, each naming the parameter to update."
                )
            param_map = {param.name: param for param in self.configurable_parameters}
            for update in updates:
                name = update.get("name", None)
                if name not in param_map:
                    raise ValueError(
                        f"Parameter name '{name}' not found in model configuration"
                    )
                param_map[name] = param_map[name].merge_in_dict(update)
            new_params = list(param_map.values())

        return ModelConfig(
            configurable_parameters=new_params,
            fit=new_fit,
            main_effect_params=config_dict.get(
                "main_effect_params", self.main_effect_params
            ),
            tag=config_dict.get("tag", self.tag),
        )


def _normal(loc: float = 0.0, scale: float = 2.0) -> PriorConfig:
    return PriorConfig(
        distribution=dist.Normal, distribution_args={"loc": loc, "scale": scale}
    )


class BaseModel(ABC):
    """Base class for ownership models over the sex/age group/province factors."""

    FACTOR_ORDER: ClassVar[Tuple[str, ...]] = ("sex", "age_group", "province")

    def __init__(
        self,
        config: Optional[Union[Dict[str, Any], ModelConfig]] = None,
    ) -> None:
        default_config = self.get_default_config()
        if isinstance(config, dict):
            self.config = default_config.merge_in_dict(config)
        elif isinstance(config, ModelConfig):
            self.config = config
        else:
            self.config = default_config

    @classmethod
    @abstractmethod
    def get_default_config(cls) -> ModelConfig:
        return ModelConfig()

    @classmethod
    def name(cls) -> str:
        return cls.__name__

    @property
    def coefficient_names(self) -> List[str]:
        """Posterior variables making up the linear predictor."""
        return ["intercept", "beta_male", "age_effects", "province_effects"]

    @property
    def latent_sites(self) -> List[str]:
        """Sample sites, i.e. everything Predictive needs to replay the model."""
        return self.config.get_params()

    def coords_for(self) -> Coords:
        coords: Coords = {factor: levels(factor) for factor in FACTORS}
        # province effects are contrasts against the first (reference) province
        coords["province_contrast"] = levels("province")[1:]
        return coords

    def dims_for(self) -> Dims:
        return {
            "age_effects": ["age_group"],
            "province_effects": ["province_contrast"],
        }

    def prepare_data(self, data: pd.DataFrame) -> Tuple[Features, Coords, Dims]:
        """
        Encode an observation table into numpyro ready arrays.

        Raises InvalidFactorLevel if a respondent falls outside the fixed
        category sets.
        """
        if OUTCOME not in data.columns:
            raise ValueError(f"The observation table needs a '{OUTCOME}' column.")
        encoded = {f: as_factor(data[f], f) for f in self.FACTOR_ORDER}
        features = self._features_from_codes(
            {f: np.asarray(cat.codes) for f, cat in encoded.items()}
        )
        features["obs"] = jnp.asarray(data[OUTCOME].to_numpy(), dtype=jnp.int32)
        return features, self.coords_for(), self.dims_for()

    def encode(self, table: pd.DataFrame, coords: Coords) -> Features:
        """
        Encode any covariate table (e.g. census strata) against the categories
        a model was fitted with.

        Raises CategoryMismatch if a column is missing or holds a category the
        fitted model does not know.
        """
        codes = {}
        for factor in self.FACTOR_ORDER:
            if factor not in table.columns:
                raise CategoryMismatch(f"Covariate table has no '{factor}' column.")
            fitted_levels = [str(level) for level in coords[factor]]
            labels = table[factor].astype(object).map(
                lambda v: getattr(v, "value", v)
            )
            unknown = ~labels.isin(fitted_levels)
            if unknown.any():
                raise CategoryMismatch(
                    f"Categories {sorted(set(map(str, labels[unknown])))} of '{factor}' "
                    f"were not part of the fitted model ({fitted_levels})."
                )
            codes[factor] = pd.Categorical(labels, categories=fitted_levels).codes
        return self._features_from_codes(codes)

    def _features_from_codes(self, codes: Dict[str, np.ndarray]) -> Features:
        return {
            "sex_index": jnp.asarray(codes["sex"], dtype=jnp.int32),
            "age_index": jnp.asarray(codes["age_group"], dtype=jnp.int32),
            "province_index": jnp.asarray(codes["province"], dtype=jnp.int32),
            "num_age_groups": len(levels("age_group")),
            "num_provinces": len(levels("province")),
        }

    def sample_param(self, name: str) -> jnp.ndarray:
        return numpyro.sample(**self.config.parameter_to_numpyro(name))

    def sample_plate(self, *, plate_name: str, size: int, param_name: str) -> jnp.ndarray:
        with numpyro.plate(plate_name, size):
            return self.sample_param(param_name)

    @abstractmethod
    def age_effects(self, num_age_groups: int) -> jnp.ndarray:
        """Age group intercepts, one per level."""

    def province_effects(self, num_provinces: int) -> jnp.ndarray:
        """Province effects with the reference province pinned to zero."""
        contrasts = self.sample_plate(
            plate_name="province_plate",
            size=num_provinces - 1,
            param_name="province_effects",
        )
        return jnp.concatenate([jnp.zeros(1), contrasts])

    def linear_component(self, **features) -> jnp.ndarray:
        """logit P(own) = intercept + male + age group + province."""
        intercept = self.sample_param("intercept")
        beta_male = self.sample_param("beta_male")
        age = self.age_effects(features["num_age_groups"])
        province = self.province_effects(features["num_provinces"])

        return (
            intercept
            + beta_male * features["sex_index"]  # Female = 0, Male = 1
            + age[features["age_index"]]
            + province[features["province_index"]]
        )

    def build_model(self) -> Callable[..., Any]:
        """
        Build the numpyro model. The callable takes the encoded features as
        keyword arguments; leaving out `obs` gives prior/posterior predictive draws.
        """

        def model(**features):
            linear = self.linear_component(**features)
            numpyro.deterministic("ownership_prob", jax.nn.sigmoid(linear))

            with numpyro.plate("respondents", features["sex_index"].shape[0]):
                numpyro.sample(
                    "obs", dist.Bernoulli(logits=linear), obs=features.get("obs")
                )

        return model


class OwnershipLogit(BaseModel):
    """Bernoulli-logit model with Normal(0, 2) priors throughout.

    Age group intercepts are exchangeable draws from a shared Normal(0, 2).
    """

    @classmethod
    def get_default_config(cls) -> ModelConfig:
        params = [
            ParameterConfig(name="intercept", prior=_normal(), main_effect=True),
            ParameterConfig(name="beta_male", prior=_normal(), main_effect=True),
            ParameterConfig(name="age_effects", prior=_normal(), main_effect=True),
            ParameterConfig(
                name="province_effects", prior=_normal(), main_effect=True
            ),
        ]
        return ModelConfig(configurable_parameters=params)

    def age_effects(self, num_age_groups: int) -> jnp.ndarray:
        return self.sample_plate(
            plate_name="age_plate", size=num_age_groups, param_name="age_effects"
        )


class OwnershipLogitPooled(BaseModel):
    """
    Same linear predictor, but the spread of the age group intercepts is learned:
    age_effects = age_sd * age_z with age_sd ~ HalfStudentT(3, 2.5) and
    age_z ~ Normal(0, 1) (non-centred).
    """

    @classmethod
    def get_default_config(cls) -> ModelConfig:
        params = [
            ParameterConfig(name="intercept", prior=_normal(), main_effect=True),
            ParameterConfig(name="beta_male", prior=_normal(), main_effect=True),
            ParameterConfig(
                name="age_sd",
                prior=PriorConfig(
                    distribution=half_student_t,
                    distribution_args={"df": 3.0, "scale": 2.5},
                ),
            ),
            ParameterConfig(name="age_z", prior=_normal(0.0, 1.0)),
            ParameterConfig(
                name="province_effects", prior=_normal(), main_effect=True
            ),
        ]
        return ModelConfig(
            configurable_parameters=params, main_effect_params=["age_effects"]
        )

    def dims_for(self) -> Dims:
        dims = super().dims_for()
        dims["age_z"] = ["age_group"]
        return dims

    def age_effects(self, num_age_groups: int) -> jnp.ndarray:
        age_sd = self.sample_param("age_sd")
        age_z = self.sample_plate(
            plate_name="age_plate", size=num_age_groups, param_name="age_z"
        )
        return numpyro.deterministic("age_effects", age_sd * age_z)
