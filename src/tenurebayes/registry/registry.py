import importlib.util
import inspect
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, List, Literal, cast

from pydantic_core import to_jsonable_python

RegistryType = Literal["checker", "communicate"]

REGISTRY_INFO = "__registry_info__"
REGISTRY_PARAMS = "__registry_params__"
_registry: dict[str, object] = {}


@dataclass
class RegistryInfo:
    type: RegistryType
    name: str
    metadata: dict[str, Any] = field(default_factory=dict)


def registry_key(type: RegistryType, name: str) -> str:
    return f"{type}:{name}"


def registry_get(info: RegistryInfo) -> Any:
    """
    Look up a registered builder.

    Args:
        info: type and name of the builder.

    Raises:
        KeyError: nothing was registered under that type and name.
    """
    key = registry_key(info.type, info.name)
    if key not in _registry:
        raise KeyError(
            f"No {info.type} named '{info.name}' is registered. "
            f"Known {info.type}s: {registry_names(info.type)}"
        )
    return _registry[key]


def registry_names(type: RegistryType) -> List[str]:
    """Names of every builder registered under `type`."""
    prefix = f"{type}:"
    return sorted(k[len(prefix) :] for k in _registry if k.startswith(prefix))


def registry_add(o: object, info: RegistryInfo) -> None:
    """Tag `o` with `info` and make it retrievable with registry_get."""
    setattr(o, REGISTRY_INFO, info)
    _registry[registry_key(info.type, info.name)] = o


def registry_tag(
    builder: Callable[..., Any],
    o: object,
    info: RegistryInfo,
    *args: Any,
    **kwargs: Any,
) -> None:
    """Tag a built object with its registry info and the arguments it was built with.

    The object is not added to the registry. The recorded parameters are made
    JSON friendly so that they can be written next to the diagnostics.
    """
    params: dict[str, Any] = {}
    bound = inspect.signature(builder).bind(*args, **kwargs)
    for name, value in bound.arguments.items():
        if isinstance(value, tuple):
            value = list(value)
        if is_registry_object(value):
            params[name] = registry_info(value).name
        elif callable(value) and hasattr(value, "__name__"):
            params[name] = value.__name__
        elif isinstance(value, dict | list):
            params[name] = to_jsonable_python(
                value, fallback=lambda x: getattr(x, "__name__", repr(x))
            )
        elif isinstance(value, str | int | float | bool | None):
            params[name] = value
        else:
            params[name] = getattr(value, "__name__", type(value).__name__)

    setattr(o, REGISTRY_INFO, info)
    setattr(o, REGISTRY_PARAMS, params)


def is_registry_object(o: object, type: RegistryType | None = None) -> bool:
    info = getattr(o, REGISTRY_INFO, None)
    if info is None:
        return False
    if type:
        return cast(RegistryInfo, info).type == type
    return True


def registry_info(o: object) -> RegistryInfo:
    """Return the RegistryInfo of a registered or tagged object."""
    info = getattr(o, REGISTRY_INFO, None)
    if info is None:
        name = getattr(o, "__name__", "unknown")
        raise ValueError(
            f"Object '{name}' has no registry info. Was it built from a @checker "
            "or @communicate decorated function?"
        )
    return cast(RegistryInfo, info)


def registry_params(o: object) -> dict[str, Any]:
    """Arguments a tagged object was built with."""
    return dict(getattr(o, REGISTRY_PARAMS, {}))


def _import_path(path: str):
    """
    Import a user file or package once so that its decorated builders register
    themselves.
    """
    p = Path(path).expanduser().resolve()
    key = str(p)
    if key in sys.modules:
        return sys.modules[key]

    if p.is_dir():
        spec = importlib.util.spec_from_file_location(p.name, p / "__init__.py")
    else:
        spec = importlib.util.spec_from_file_location(p.stem, p)

    if spec is None or spec.loader is None:
        raise ImportError(f"Cannot import custom module at {p}")

    mod = importlib.util.module_from_spec(spec)
    sys.modules[key] = mod
    spec.loader.exec_module(mod)
    return mod
