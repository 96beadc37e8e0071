"""Tests for grouping-key construction."""

import pandas as pd
import pytest

from cbassed50.doseresponse import (
    ColumnConfig,
    SchemaError,
    build_group_key,
    count_stimulus_levels,
)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def observations():
    return pd.DataFrame({
        "Site": ["KAUST", "KAUST", "Tuwal", "Tuwal", "KAUST", "Tuwal"],
        "Condition": ["Control", "Heat", "Control", "Control", "Control", "Heat"],
        "Timepoint": [420, 420, 420, 1080, 420, 420],
        "Genotype": ["G1", "G1", "G2", "G2", "G3", "G1"],
        "Temperature": [30.0, 33.0, 36.0, 39.0, 33.0, 30.0],
        "Pam_value": [0.6, 0.5, 0.2, 0.05, 0.5, 0.62],
    })


# ---------------------------------------------------------------------------
# build_group_key
# ---------------------------------------------------------------------------

class TestBuildGroupKey:
    """Composite categorical grouping key."""

    def test_keys_joined_in_order(self, observations):
        out = build_group_key(observations, ["Site", "Condition", "Timepoint"])
        assert out["GroupingProperty"].tolist()[:2] == [
            "KAUST_Control_420",
            "KAUST_Heat_420",
        ]

    def test_whole_number_floats_written_as_integers(self, observations):
        floats = observations.assign(Timepoint=observations["Timepoint"].astype(float))
        out = build_group_key(floats, ["Site", "Condition", "Timepoint"])
        expected = build_group_key(observations, ["Site", "Condition", "Timepoint"])
        assert out["GroupingProperty"].iloc[0] == "KAUST_Control_420"
        assert out["GroupingProperty"].tolist() == expected["GroupingProperty"].tolist()

    def test_fractional_floats_kept(self, observations):
        out = build_group_key(observations, ["Site", "Temperature"])
        assert out["GroupingProperty"].iloc[0] == "KAUST_30"
        depth = observations.assign(Depth=[1.5, 2.0, 1.5, 1.5, 2.0, float("nan")])
        out = build_group_key(depth, ["Site", "Depth"])
        assert out["GroupingProperty"].tolist()[:2] == ["KAUST_1.5", "KAUST_2"]
        assert out["GroupingProperty"].iloc[-1] == "Tuwal_nan"

    def test_custom_separator(self, observations):
        out = build_group_key(observations, ["Site", "Condition"], separator="|")
        assert out["GroupingProperty"].iloc[0] == "KAUST|Control"

    def test_single_attribute_as_string(self, observations):
        out = build_group_key(observations, "Site")
        assert out["GroupingProperty"].tolist() == observations["Site"].tolist()

    def test_categorical_dtype(self, observations):
        out = build_group_key(observations, ["Site"])
        assert isinstance(out["GroupingProperty"].dtype, pd.CategoricalDtype)

    def test_categories_in_order_of_appearance(self, observations):
        out = build_group_key(observations, ["Site", "Condition"])
        assert list(out["GroupingProperty"].cat.categories) == [
            "KAUST_Control", "KAUST_Heat", "Tuwal_Control", "Tuwal_Heat",
        ]

    def test_input_not_mutated(self, observations):
        before = observations.copy()
        build_group_key(observations, ["Site", "Condition"])
        pd.testing.assert_frame_equal(observations, before)
        assert "GroupingProperty" not in observations.columns

    def test_row_order_preserved(self, observations):
        out = build_group_key(observations, ["Site", "Genotype"])
        pd.testing.assert_frame_equal(out.drop(columns="GroupingProperty"), observations)

    def test_partition(self, observations):
        """Every row maps to one key and the per-key subsets rebuild the data."""
        out = build_group_key(observations, ["Site", "Condition", "Timepoint"])
        keys = out["GroupingProperty"].astype(str)
        parts = [out[keys == k] for k in keys.unique()]
        assert sum(len(p) for p in parts) == len(observations)
        rebuilt = pd.concat(parts).sort_index()
        pd.testing.assert_frame_equal(rebuilt, out)

    def test_idempotent(self, observations):
        a = build_group_key(observations, ["Site", "Genotype"])
        b = build_group_key(observations, ["Site", "Genotype"])
        pd.testing.assert_series_equal(a["GroupingProperty"], b["GroupingProperty"])

    def test_custom_key_column(self, observations):
        cfg = ColumnConfig(group_key="Cohort")
        out = build_group_key(observations, ["Site"], columns=cfg)
        assert "Cohort" in out.columns
        assert "GroupingProperty" not in out.columns

    def test_missing_attribute_named(self, observations):
        with pytest.raises(SchemaError, match="Reef") as excinfo:
            build_group_key(observations, ["Site", "Reef", "Depth"])
        assert excinfo.value.missing == ["Reef", "Depth"]

    def test_empty_attributes(self, observations):
        with pytest.raises(ValueError, match="at least one"):
            build_group_key(observations, [])

    def test_not_dataframe(self):
        with pytest.raises(TypeError, match="DataFrame"):
            build_group_key({"Site": ["A"]}, ["Site"])


class TestCountStimulusLevels:
    """Distinct stimulus levels per group."""

    def test_counts(self, observations):
        counts = count_stimulus_levels(observations, ["Site"])
        assert counts["KAUST"] == 2
        assert counts["Tuwal"] == 3

    def test_missing_stimulus_column(self, observations):
        with pytest.raises(SchemaError, match="Temperature"):
            count_stimulus_levels(observations.drop(columns="Temperature"), ["Site"])
