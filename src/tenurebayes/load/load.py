"""Build the observation and stratum tables the model consumes.

Both tables come out with categorical columns fixed to the enumerations in
:mod:`tenurebayes.load.categories`. Anything outside those sets raises
InvalidFactorLevel rather than being coerced.
"""

import itertools
import pathlib
from typing import Dict, Mapping, Optional

import numpy as np
import pandas as pd

from tenurebayes.utils import init_logger

from ..errors import InvalidFactorLevel
from .categories import (
    COUNT,
    FACTORS,
    OUTCOME,
    STRATUM_COLUMNS,
    LabelMap,
    as_factor,
    bin_ages,
    levels,
)
from .configs.config import DataLoaderConfig

logger = init_logger()

_TRUE_LABELS = {"1", "1.0", "true", "yes", "owned", "owner"}
_FALSE_LABELS = {"0", "0.0", "false", "no", "rented", "renter"}


def read_table(path: str | pathlib.Path) -> pd.DataFrame:
    path = pathlib.Path(path)
    ext = path.suffix.lower()
    if ext == ".parquet":
        return pd.read_parquet(path)
    if ext == ".csv":
        return pd.read_csv(path)
    if ext in (".jsonl", ".json"):
        return pd.read_json(path, lines=True)
    raise ValueError(f"Unsupported file extension: {ext}")


def _encode_factors(
    df: pd.DataFrame, label_maps: Mapping[str, LabelMap]
) -> pd.DataFrame:
    for factor in FACTORS:
        if factor not in df.columns:
            continue
        if factor in label_maps:
            df[factor] = label_maps[factor].apply(df[factor])
        else:
            df[factor] = as_factor(df[factor], factor)
    return df


def _encode_outcome(values: pd.Series) -> pd.Series:
    """Map 0/1, booleans and owned/rented style labels onto 0/1 integers."""
    if pd.api.types.is_bool_dtype(values):
        return values.astype(np.int32)

    labels = values.astype(str).str.strip().str.lower()
    out = pd.Series(np.nan, index=values.index)
    out[labels.isin(_TRUE_LABELS)] = 1
    out[labels.isin(_FALSE_LABELS)] = 0
    unknown = out.isna()
    if unknown.any():
        raise InvalidFactorLevel(OUTCOME, values[unknown].tolist(), [0, 1])
    return out.astype(np.int32)


def prepare_observations(
    data: pd.DataFrame,
    column_map: Optional[Dict[str, str]] = None,
    label_maps: Optional[Mapping[str, LabelMap]] = None,
    unknown_outcomes: tuple = DataLoaderConfig.unknown_outcomes,
) -> pd.DataFrame:
    """
    Turn cleaned survey rows into the respondent-level observation table.

    Rows whose ownership answer is missing or one of `unknown_outcomes` are
    dropped; an `age` column is binned when `age_group` is absent.

    Returns:
        DataFrame with columns dwelling_owned (int 0/1), sex, age_group and
        province (fixed categoricals), indexed 0..n-1.
    """
    df = data.rename(columns=column_map) if column_map else data.copy()
    label_maps = label_maps or {}

    from_age = "age_group" not in df.columns and "age" in df.columns

    required = [OUTCOME, *FACTORS]
    missing = [
        c
        for c in required
        if c not in df.columns and not (c == "age_group" and from_age)
    ]
    if missing:
        raise ValueError(f"Observation table is missing required columns: {missing}")

    answered = df[OUTCOME].notna() & ~df[OUTCOME].astype(str).isin(unknown_outcomes)
    n_dropped = int((~answered).sum())
    if n_dropped:
        logger.info(f"Dropping {n_dropped} respondents without an ownership answer")
    df = df.loc[answered].reset_index(drop=True)
    # ages of dropped respondents are never binned
    if from_age:
        df["age_group"] = bin_ages(df["age"])
    df = df[required]

    df = _encode_factors(df, label_maps)
    df[OUTCOME] = _encode_outcome(df[OUTCOME])

    logger.info(
        f"Prepared {len(df)} observations, ownership rate {df[OUTCOME].mean():.3f}"
    )
    return df


def prepare_strata(
    data: pd.DataFrame,
    column_map: Optional[Dict[str, str]] = None,
    label_maps: Optional[Mapping[str, LabelMap]] = None,
) -> pd.DataFrame:
    """
    Validate the census post-stratification frame.

    Requires exactly one row per (province, age_group, sex) cell and a
    non-negative integer population count in each.
    """
    df = data.rename(columns=column_map) if column_map else data.copy()
    label_maps = label_maps or {}

    if "age_group" not in df.columns and "age" in df.columns:
        df["age_group"] = bin_ages(df["age"])

    required = [*STRATUM_COLUMNS, COUNT]
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise ValueError(f"Stratum table is missing required columns: {missing}")
    df = df[required].reset_index(drop=True)
    df = _encode_factors(df, label_maps)

    counts = pd.to_numeric(df[COUNT], errors="coerce")
    if counts.isna().any() or (counts < 0).any() or (counts % 1 != 0).any():
        raise ValueError("population_count must be a non-negative integer in every row")
    df[COUNT] = counts.astype(np.int64)

    duplicated = df.duplicated(list(STRATUM_COLUMNS), keep=False)
    if duplicated.any():
        cells = df.loc[duplicated, list(STRATUM_COLUMNS)].drop_duplicates()
        raise ValueError(f"Duplicate strata in census table:\n{cells}")

    expected = set(itertools.product(*(levels(c) for c in STRATUM_COLUMNS)))
    present = set(
        zip(*(df[c].astype(str) for c in STRATUM_COLUMNS))
    )
    absent = sorted(expected - present)
    if absent:
        raise ValueError(
            f"Stratum table is missing {len(absent)} cells, e.g. {absent[:3]}"
        )

    logger.info(
        f"Prepared {len(df)} strata covering a population of {df[COUNT].sum():,}"
    )
    return df.sort_values(list(STRATUM_COLUMNS)).reset_index(drop=True)


def load_tables(config: DataLoaderConfig) -> tuple[pd.DataFrame, pd.DataFrame | None]:
    """Read and prepare both tables named in the config."""
    if config.observations_path is None:
        raise ValueError("No observations path configured under data_loader.paths")

    observations = prepare_observations(
        read_table(config.observations_path),
        column_map=config.column_map,
        label_maps=config.label_maps,
        unknown_outcomes=config.unknown_outcomes,
    )
    strata = None
    if config.strata_path is not None:
        strata = prepare_strata(
            read_table(config.strata_path),
            column_map=config.column_map,
            label_maps=config.label_maps,
        )
    return observations, strata
