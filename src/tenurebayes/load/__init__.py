from .categories import (
    AgeGroup,
    LabelMap,
    Province,
    Sex,
    age_to_group,
    as_factor,
    bin_ages,
    levels,
    reference_level,
)
from .configs.config import DataLoaderConfig
from .load import load_tables, prepare_observations, prepare_strata, read_table

__all__ = [
    "AgeGroup",
    "DataLoaderConfig",
    "LabelMap",
    "Province",
    "Sex",
    "age_to_group",
    "as_factor",
    "bin_ages",
    "levels",
    "load_tables",
    "prepare_observations",
    "prepare_strata",
    "read_table",
    "reference_level",
]
