from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from tenurebayes.errors import InvalidFactorLevel
from tenurebayes.load import (
    AgeGroup,
    LabelMap,
    Province,
    age_to_group,
    as_factor,
    bin_ages,
    levels,
    reference_level,
)


@pytest.mark.parametrize(
    "age, group",
    [
        (0.0, "Under 20"),
        (19.9, "Under 20"),
        (20.0, "21-29"),
        (28.9, "21-29"),
        (29.0, "30-39"),
        (39.0, "40-65"),
        (65.0, "40-65"),
        (65.1, "Over 65"),
        (101.0, "Over 65"),
    ],
)
def test_age_to_group_boundaries(age, group):
    assert age_to_group(age).value == group


@pytest.mark.parametrize("age", [-1.0, np.nan, np.inf, None])
def test_age_to_group_rejects_invalid_ages(age):
    with pytest.raises(InvalidFactorLevel):
        age_to_group(age)


def test_bin_ages_matches_scalar_binning():
    ages = pd.Series([19.9, 20.0, 29.0, 39.0, 65.0, 65.1, 5.0, 80.0])
    binned = bin_ages(ages)

    assert list(binned.astype(str)) == [age_to_group(a).value for a in ages]
    assert binned.ordered
    assert list(binned.categories) == levels("age_group")


def test_bin_ages_rejects_missing_age():
    with pytest.raises(InvalidFactorLevel, match="age"):
        bin_ages(pd.Series([30.0, None]))


def test_levels_and_references():
    assert levels("sex") == ["Female", "Male"]
    assert len(levels("province")) == 10
    assert levels("province") == sorted(levels("province"))
    assert reference_level("province") == Province.ALBERTA.value
    assert reference_level("sex") == "Female"
    assert levels("age_group")[0] == AgeGroup.UNDER_20.value


def test_levels_unknown_factor():
    with pytest.raises(KeyError):
        levels("region")


def test_as_factor_accepts_enum_members_and_labels():
    cat = as_factor(pd.Series([Province.QUEBEC, "Ontario"]), "province")
    assert list(cat.astype(str)) == ["Quebec", "Ontario"]
    assert list(cat.categories) == levels("province")


def test_as_factor_rejects_territories():
    with pytest.raises(InvalidFactorLevel) as exc:
        as_factor(pd.Series(["Ontario", "Yukon"]), "province")

    assert exc.value.factor == "province"
    assert exc.value.values == ["Yukon"]
    assert isinstance(exc.value, ValueError)


def test_label_map_validates_targets_on_construction():
    with pytest.raises(InvalidFactorLevel):
        LabelMap.from_dict("sex", {"1": "Man"})


def test_label_map_translates_codes_and_keeps_canonical_labels():
    label_map = LabelMap.from_dict("sex", {"1": "Male", "2": "Female"})
    cat = label_map.apply(pd.Series(["1", "2", "Female", 1]))

    assert list(cat.astype(str)) == ["Male", "Female", "Female", "Male"]


def test_label_map_rejects_unmapped_codes():
    label_map = LabelMap.from_dict("province", {"48": "Alberta"})
    assert label_map.unmapped(["48", "60", "Quebec"]) == ["60"]

    with pytest.raises(InvalidFactorLevel, match="60"):
        label_map.apply(pd.Series(["48", "60"]))
