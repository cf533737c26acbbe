from .registry import (
    RegistryInfo,
    _import_path,
    registry_add,
    registry_get,
    registry_info,
    registry_key,
    registry_names,
    registry_params,
    registry_tag,
)

__all__ = [
    "registry_add",
    "registry_get",
    "registry_key",
    "registry_names",
    "registry_params",
    "RegistryInfo",
    "registry_tag",
    "registry_info",
    "_import_path",
]
