"""Fixed category sets for the ownership model.

Every categorical covariate is an enumeration with a fixed level order. The
first level of each factor is its reference category: ``Female`` for sex and
``Alberta`` (alphabetical order) for province. Coefficient tables report
differences from these references.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Type

import numpy as np
import pandas as pd

from ..errors import InvalidFactorLevel


class Sex(str, Enum):
    FEMALE = "Female"
    MALE = "Male"


class AgeGroup(str, Enum):
    UNDER_20 = "Under 20"
    AGE_21_29 = "21-29"
    AGE_30_39 = "30-39"
    AGE_40_65 = "40-65"
    OVER_65 = "Over 65"


class Province(str, Enum):
    ALBERTA = "Alberta"
    BRITISH_COLUMBIA = "British Columbia"
    MANITOBA = "Manitoba"
    NEW_BRUNSWICK = "New Brunswick"
    NEWFOUNDLAND_AND_LABRADOR = "Newfoundland and Labrador"
    NOVA_SCOTIA = "Nova Scotia"
    ONTARIO = "Ontario"
    PRINCE_EDWARD_ISLAND = "Prince Edward Island"
    QUEBEC = "Quebec"
    SASKATCHEWAN = "Saskatchewan"


FACTORS: Dict[str, Type[Enum]] = {
    "sex": Sex,
    "age_group": AgeGroup,
    "province": Province,
}

OUTCOME = "dwelling_owned"
COUNT = "population_count"
STRATUM_COLUMNS: Tuple[str, ...] = ("province", "age_group", "sex")


def levels(factor: str) -> List[str]:
    """Ordered labels of a factor; the first is the reference level."""
    if factor not in FACTORS:
        raise KeyError(f"Unknown factor '{factor}'. Known factors: {list(FACTORS)}")
    return [member.value for member in FACTORS[factor]]


def reference_level(factor: str) -> str:
    return levels(factor)[0]


# (upper edge, edge belongs to this bin, group). Lower edges are left-closed;
# the 40-65 bin keeps 65 itself.
AGE_BINS: Tuple[Tuple[float, bool, AgeGroup], ...] = (
    (20.0, False, AgeGroup.UNDER_20),
    (29.0, False, AgeGroup.AGE_21_29),
    (39.0, False, AgeGroup.AGE_30_39),
    (65.0, True, AgeGroup.AGE_40_65),
)


def age_to_group(age: float) -> AgeGroup:
    """Map a numeric age onto its age group.

    >>> age_to_group(20.0).value
    '21-29'
    >>> age_to_group(65.0).value
    '40-65'
    """
    if age is None or not math.isfinite(float(age)) or age < 0:
        raise InvalidFactorLevel("age", [age], ["finite ages >= 0"])
    for upper, closed, group in AGE_BINS:
        if age < upper or (closed and age == upper):
            return group
    return AgeGroup.OVER_65


def bin_ages(ages: pd.Series) -> pd.Categorical:
    """Vectorised age_to_group returning an ordered categorical."""
    values = pd.to_numeric(ages, errors="coerce").to_numpy(dtype=float)
    bad = ~np.isfinite(values) | (values < 0)
    if bad.any():
        raise InvalidFactorLevel("age", ages[bad].tolist(), ["finite ages >= 0"])

    codes = np.full(values.shape, len(AGE_BINS), dtype=int)
    # walk bins from the top so that lower bins overwrite
    for i, (upper, closed, _) in reversed(list(enumerate(AGE_BINS))):
        inside = values <= upper if closed else values < upper
        codes[inside] = i
    return pd.Categorical.from_codes(
        codes, categories=levels("age_group"), ordered=True
    )


def as_factor(values: pd.Series, factor: str) -> pd.Categorical:
    """Convert a column to the fixed categorical of `factor`.

    Raises InvalidFactorLevel for any value (including missing) outside the set.
    """
    allowed = levels(factor)
    labels = values.astype(object).map(
        lambda v: v.value if isinstance(v, Enum) else v
    )
    bad = ~labels.isin(allowed)
    if bad.any():
        raise InvalidFactorLevel(factor, values[bad].tolist(), allowed)
    return pd.Categorical(labels, categories=allowed, ordered=factor == "age_group")


@dataclass(frozen=True)
class LabelMap:
    """Total mapping from raw survey codes onto one factor's levels.

    Canonical labels map to themselves, so a map only lists the raw codes that
    differ. Targets are validated on construction; unmapped raw values raise
    InvalidFactorLevel when the map is applied.
    """

    factor: str
    mapping: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        allowed = levels(self.factor)
        bad = [target for target in self.mapping.values() if target not in allowed]
        if bad:
            raise InvalidFactorLevel(self.factor, bad, allowed)
        object.__setattr__(
            self, "mapping", {str(k): str(v) for k, v in self.mapping.items()}
        )

    @property
    def domain(self) -> List[str]:
        return sorted(set(self.mapping) | set(levels(self.factor)))

    def unmapped(self, values: Sequence) -> List[str]:
        """Raw values this map cannot translate."""
        known = set(self.domain)
        return sorted({str(v) for v in values if pd.notna(v) and str(v) not in known})

    def apply(self, values: pd.Series) -> pd.Categorical:
        missing = self.unmapped(values.dropna().unique())
        if missing:
            raise InvalidFactorLevel(self.factor, missing, self.domain)
        translated = values.map(
            lambda v: v if pd.isna(v) else self.mapping.get(str(v), str(v))
        )
        return as_factor(translated, self.factor)

    @classmethod
    def from_dict(cls, factor: str, mapping: Optional[Mapping]) -> "LabelMap":
        return cls(factor=factor, mapping=dict(mapping or {}))
