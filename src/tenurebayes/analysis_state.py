import json
import pickle
from dataclasses import asdict, dataclass, is_dataclass, replace
from pathlib import Path
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Sequence, Tuple

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from arviz import InferenceData

from . import errors
from .errors import WarningRecord
from .utils import flatten_draws, init_logger

if TYPE_CHECKING:
    from .model.models import BaseModel, ModelConfig

logger = init_logger()


def _ensure_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def _dump_json(obj: Any, fname: Path) -> None:
    if is_dataclass(obj):
        obj = asdict(obj)
    with fname.open("w", encoding="utf-8") as fp:
        json.dump(obj, fp, indent=2, default=str)


def _load_json(fname: Path) -> Any:
    with fname.open("r", encoding="utf-8") as fp:
        return json.load(fp)


def _warnings_from_json(records: Sequence[Dict[str, Any]]) -> Tuple[WarningRecord, ...]:
    out = []
    for rec in records:
        category = getattr(errors, rec.pop("kind"), errors.AnalysisWarning)
        out.append(WarningRecord(category=category, **rec))
    return tuple(out)


@dataclass(frozen=True)
class ChainReport:
    """How one chain ended."""

    chain: int
    status: str  # "completed" or "cancelled"
    draws: int
    divergences: int = 0
    elapsed: float = 0.0


@dataclass(frozen=True, eq=False)
class FittedModel:
    """
    Immutable result of sampling one model.

    Diagnostics, prediction and post-stratification all take this object;
    nothing downstream mutates it. Only completed chains are present in
    `inference_data`.
    """

    model_name: str
    model: "BaseModel"
    observations: pd.DataFrame
    features: Mapping[str, Any]
    coords: Mapping[str, List[Any]]
    dims: Mapping[str, List[str]]
    inference_data: InferenceData
    chains: Tuple[ChainReport, ...] = ()
    warnings: Tuple[WarningRecord, ...] = ()
    seed: int = 0

    def __post_init__(self):
        object.__setattr__(self, "features", MappingProxyType(dict(self.features)))
        object.__setattr__(self, "coords", MappingProxyType(dict(self.coords)))
        object.__setattr__(self, "dims", MappingProxyType(dict(self.dims)))

    @classmethod
    def from_inference_data(
        cls,
        model_name: str,
        model: "BaseModel",
        observations: pd.DataFrame,
        inference_data: InferenceData,
        **kwargs: Any,
    ) -> "FittedModel":
        """Wrap an existing posterior (e.g. reloaded from disk)."""
        features, coords, dims = model.prepare_data(observations)
        return cls(
            model_name=model_name,
            model=model,
            observations=observations.copy(),
            features=features,
            coords=coords,
            dims=dims,
            inference_data=inference_data,
            **kwargs,
        )

    @property
    def num_chains(self) -> int:
        return int(self.inference_data.posterior.sizes["chain"])

    @property
    def num_draws(self) -> int:
        return int(self.inference_data.posterior.sizes["draw"])

    @property
    def coefficient_names(self) -> List[str]:
        return self.model.coefficient_names

    def draws(self, name: str) -> np.ndarray:
        """Posterior draws of one variable, shape (chain, draw, ...)."""
        if name not in self.inference_data.posterior:
            raise KeyError(
                f"'{name}' is not a posterior variable of {self.model_name}. "
                f"Available: {list(self.inference_data.posterior.data_vars)}"
            )
        return self.inference_data.posterior[name].values

    def parameter_draws(self) -> Dict[str, np.ndarray]:
        """Every scalar coefficient as a (chain, draw) array, labelled by level."""
        return flatten_draws(self.inference_data, self.coefficient_names)

    def posterior_samples(
        self,
        names: Optional[Sequence[str]] = None,
        num_samples: Optional[int] = None,
        seed: Optional[int] = None,
    ) -> Dict[str, np.ndarray]:
        """
        Pool chains into flat (sample, ...) arrays, the layout numpyro's
        Predictive expects. With `num_samples` a reproducible subset of
        draws is taken without replacement.
        """
        names = list(names) if names is not None else self.model.latent_sites
        total = self.num_chains * self.num_draws
        index = np.arange(total)
        if num_samples is not None:
            if num_samples > total:
                raise ValueError(
                    f"Requested {num_samples} samples but the posterior holds {total}."
                )
            rng = np.random.default_rng(self.seed if seed is None else seed)
            index = np.sort(rng.choice(total, size=num_samples, replace=False))

        out = {}
        for name in names:
            arr = self.draws(name)
            out[name] = arr.reshape(total, *arr.shape[2:])[index]
        return out

    def with_warnings(self, *records: WarningRecord) -> "FittedModel":
        return replace(self, warnings=errors.merge_warnings(self.warnings, records))


class ModelAnalysisState:
    """State of one model through the pipeline: built, checked, fitted."""

    def __init__(
        self,
        model_name: str,
        model_builder: "BaseModel",
        observations: pd.DataFrame,
        features: Dict[str, Any],
        coords: Dict[str, list] | None = None,
        dims: Dict[str, list] | None = None,
        fitted: FittedModel | None = None,
        diagnostics: Dict[str, Any] | None = None,
    ) -> None:
        self._model_name = model_name
        self._model_builder = model_builder
        self._observations = observations
        self._features = features
        self._coords = coords or {}
        self._dims = dims or {}
        self._fitted = fitted
        # prior checks run before a posterior exists
        self._prior_data = InferenceData()
        self._diagnostics: Dict[str, Any] = diagnostics or {}

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def model(self):
        """The numpyro model callable."""
        return self._model_builder.build_model()

    @property
    def model_builder(self) -> "BaseModel":
        return self._model_builder

    @property
    def model_config(self) -> "ModelConfig":
        return self._model_builder.config

    @property
    def observations(self) -> pd.DataFrame:
        return self._observations

    @property
    def features(self) -> Dict[str, Any]:
        return self._features

    @property
    def prior_features(self) -> Dict[str, Any]:
        """All features bar the observed outcome."""
        return {k: v for k, v in self._features.items() if k != "obs"}

    @property
    def coords(self) -> Dict[str, list]:
        return self._coords

    @property
    def dims(self) -> Dict[str, list]:
        return self._dims

    @property
    def fitted(self) -> FittedModel | None:
        return self._fitted

    @fitted.setter
    def fitted(self, fitted: FittedModel) -> None:
        self._fitted = fitted

    @property
    def is_fitted(self) -> bool:
        return self._fitted is not None

    @property
    def prior_data(self) -> InferenceData:
        """Groups added by the checks run before fitting."""
        return self._prior_data

    @property
    def inference_data(self) -> InferenceData:
        """Posterior if fitted, otherwise whatever prior checks produced."""
        if self._fitted is not None:
            return self._fitted.inference_data
        return self._prior_data

    @property
    def diagnostics(self) -> Dict[str, Any]:
        return self._diagnostics

    def add_diagnostic(self, name: str, diagnostic: Any) -> None:
        self._diagnostics[name] = diagnostic

    def diagnostic(self, var: str) -> Any:
        return self._diagnostics.get(var, None)

    def save(self, path: Path) -> None:
        """
        Save the model state.

        Folder layout:

            <path>/
              ├── metadata.json
              ├── model_builder.pkl
              ├── observations.parquet
              ├── warnings.json
              ├── diagnostics.json          scalars and dicts
              ├── diagnostics/<name>.parquet|.npy tables and arrays
              ├── diagnostic_plots/<name>.png
              └── inference_data.nc
        """
        _ensure_dir(path)
        fitted = self._fitted

        _dump_json(
            {
                "model_name": self.model_name,
                "is_fitted": self.is_fitted,
                "seed": fitted.seed if fitted else None,
                "chains": [asdict(c) for c in fitted.chains] if fitted else [],
            },
            path / "metadata.json",
        )
        with (path / "model_builder.pkl").open("wb") as fp:
            pickle.dump(self.model_builder, fp)

        self.observations.to_parquet(
            path / "observations.parquet", engine="pyarrow", compression="snappy"
        )

        if fitted is not None:
            _dump_json(
                [w.to_dict() for w in fitted.warnings], path / "warnings.json"
            )

        scalars = {}
        for name, obj in self._diagnostics.items():
            if isinstance(obj, plt.Figure):
                _ensure_dir(path / "diagnostic_plots")
                obj.savefig(
                    path / "diagnostic_plots" / f"{name}.png",
                    dpi=300,
                    bbox_inches="tight",
                )
                plt.close(obj)
            elif isinstance(obj, pd.DataFrame):
                _ensure_dir(path / "diagnostics")
                obj.to_parquet(path / "diagnostics" / f"{name}.parquet")
            elif isinstance(obj, np.ndarray):
                _ensure_dir(path / "diagnostics")
                np.save(path / "diagnostics" / f"{name}.npy", obj)
            elif hasattr(obj, "to_dict"):
                scalars[name] = obj.to_dict()
            else:
                scalars[name] = obj
        if scalars:
            _dump_json(scalars, path / "diagnostics.json")

        if fitted is not None:
            target = path / "inference_data.nc"
            tmp = target.with_suffix(".tmp.nc")
            fitted.inference_data.to_netcdf(str(tmp))
            tmp.replace(target)

    @classmethod
    def load(cls, path: Path) -> "ModelAnalysisState":
        """Recreate a ModelAnalysisState, including its FittedModel, from path."""
        if not path.exists():
            raise FileNotFoundError(path)

        meta = _load_json(path / "metadata.json")
        with (path / "model_builder.pkl").open("rb") as fp:
            model_builder: "BaseModel" = pickle.load(fp)
        observations = pd.read_parquet(path / "observations.parquet")
        features, coords, dims = model_builder.prepare_data(observations)

        diagnostics = {}
        if (path / "diagnostics.json").exists():
            diagnostics.update(_load_json(path / "diagnostics.json"))
        if (path / "diagnostics").exists():
            for p in (path / "diagnostics").glob("*.parquet"):
                diagnostics[p.stem] = pd.read_parquet(p)
            for p in (path / "diagnostics").glob("*.npy"):
                diagnostics[p.stem] = np.load(p)

        fitted = None
        if (path / "inference_data.nc").exists():
            warnings = ()
            if (path / "warnings.json").exists():
                warnings = _warnings_from_json(_load_json(path / "warnings.json"))
            fitted = FittedModel(
                model_name=meta["model_name"],
                model=model_builder,
                observations=observations,
                features=features,
                coords=coords,
                dims=dims,
                inference_data=InferenceData.from_netcdf(
                    str(path / "inference_data.nc")
                ),
                chains=tuple(ChainReport(**c) for c in meta.get("chains", [])),
                warnings=warnings,
                seed=meta.get("seed") or 0,
            )

        return cls(
            model_name=meta["model_name"],
            model_builder=model_builder,
            observations=observations,
            features=features,
            coords=coords,
            dims=dims,
            fitted=fitted,
            diagnostics=diagnostics,
        )


class AnalysisState:
    """Everything one analysis run produced: data, fitted models, estimates and outputs."""

    def __init__(
        self,
        observations: pd.DataFrame,
        strata: pd.DataFrame | None = None,
        models: List[ModelAnalysisState] | None = None,
        communicate: Dict[str, plt.Figure | pd.DataFrame] | None = None,
        estimates: Dict[str, Any] | None = None,
    ) -> None:
        self._observations = observations
        self._strata = strata
        self._models: List[ModelAnalysisState] = models or []
        self._communicate: Dict[str, plt.Figure | pd.DataFrame] = communicate or {}
        self._estimates: Dict[str, Any] = estimates or {}

    @property
    def observations(self) -> pd.DataFrame:
        return self._observations

    @property
    def strata(self) -> pd.DataFrame | None:
        return self._strata

    @strata.setter
    def strata(self, strata: pd.DataFrame) -> None:
        self._strata = strata

    @property
    def communicate(self) -> Dict[str, plt.Figure | pd.DataFrame]:
        return self._communicate

    def add_plot(self, plot: plt.Figure, plot_name: str) -> None:
        self._communicate[plot_name] = plot

    def add_table(self, table: pd.DataFrame, table_name: str) -> None:
        self._communicate[table_name] = table

    @property
    def estimates(self) -> Dict[str, Any]:
        return self._estimates

    def add_estimate(self, name: str, estimate: Any) -> None:
        self._estimates[name] = estimate

    @property
    def models(self) -> List[ModelAnalysisState]:
        return self._models

    def add_model(self, model: ModelAnalysisState) -> None:
        self._models.append(model)

    def get_model(self, model_name: str) -> ModelAnalysisState:
        for model in self.models:
            if model.model_name == model_name:
                return model
        raise ValueError(f"Model {model_name} not found in analysis state.")

    def get_best_model(
        self, with_respect_to: str = "elpd_waic", minimum: bool = False
    ) -> ModelAnalysisState:
        """
        Best fitted model by a diagnostic recorded by the checkers (higher is
        better unless `minimum`). A single fitted model is returned as is.
        """
        fitted = [m for m in self.models if m.is_fitted]
        if len(fitted) == 1:
            return fitted[0]

        candidates: List[Tuple[float, ModelAnalysisState]] = []
        for model in fitted:
            val = model.diagnostic(with_respect_to)
            if val is not None:
                candidates.append((val, model))

        if not candidates:
            raise ValueError(f"No fitted models have diagnostic '{with_respect_to}'.")

        pick = min if minimum else max
        return pick(candidates, key=lambda x: x[0])[1]

    def save(self, path: Path) -> None:
        """
        Save the analysis state

            <path>/
              ├── observations.parquet
              ├── strata.parquet
              ├── estimates.json
              ├── communicate/<name>.png | <name>.csv
              └── models/<model_name>/   see ModelAnalysisState.save
        """
        _ensure_dir(path)

        self.observations.to_parquet(
            path / "observations.parquet", engine="pyarrow", compression="snappy"
        )
        if self.strata is not None:
            self.strata.to_parquet(
                path / "strata.parquet", engine="pyarrow", compression="snappy"
            )

        if self._estimates:
            _dump_json(
                {
                    k: v.to_dict() if hasattr(v, "to_dict") else v
                    for k, v in self._estimates.items()
                },
                path / "estimates.json",
            )

        if self._communicate:
            comm_path = path / "communicate"
            _ensure_dir(comm_path)
            for name, obj in self._communicate.items():
                if isinstance(obj, plt.Figure):
                    obj.savefig(comm_path / f"{name}.png", dpi=300, bbox_inches="tight")
                    plt.close(obj)
                elif isinstance(obj, pd.DataFrame):
                    # tables are read by the reporting layer, csv keeps them diffable
                    obj.to_csv(comm_path / f"{name}.csv", index=False)
                else:
                    raise TypeError(
                        f"Unsupported communicate object type for '{name}': {type(obj)}"
                    )

        models_root = path / "models"
        _ensure_dir(models_root)
        for model_state in self._models:
            model_state.save(models_root / model_state.model_name)

    @classmethod
    def load(cls, path: Path) -> "AnalysisState":
        if not path.exists():
            raise FileNotFoundError(path)

        observations = pd.read_parquet(path / "observations.parquet")
        strata = None
        if (path / "strata.parquet").exists():
            strata = pd.read_parquet(path / "strata.parquet")

        models: List[ModelAnalysisState] = []
        models_root = path / "models"
        if models_root.exists():
            for model_dir in sorted(models_root.iterdir()):
                if model_dir.is_dir():
                    models.append(ModelAnalysisState.load(model_dir))

        return cls(observations=observations, strata=strata, models=models)
