"""Tests for stimulus grids and curve prediction."""

import numpy as np
import pytest

from cbassed50.doseresponse import (
    ColumnConfig,
    define_stimulus_grid,
    fit_drms,
    predict_curves,
)

GROUPING = ["Site", "Condition", "Species", "Timepoint"]


class TestDefineStimulusGrid:
    """Evenly spaced grid from min to max + 1."""

    def test_reference_grid(self):
        grid = define_stimulus_grid([10, 15, 20, 25, 30], n=100)
        assert len(grid) == 100
        assert grid[0] == 10.0
        assert grid[-1] == 31.0
        assert np.all(np.diff(grid) > 0)

    def test_unsorted_input(self):
        grid = define_stimulus_grid([39, 30, 36, 33], n=10)
        assert grid[0] == 30.0
        assert grid[-1] == 40.0

    def test_default_length(self):
        assert len(define_stimulus_grid([30, 39])) == 100

    def test_empty(self):
        with pytest.raises(ValueError, match="empty"):
            define_stimulus_grid([])

    def test_n_too_small(self):
        with pytest.raises(ValueError, match="at least 2"):
            define_stimulus_grid([30, 39], n=1)


class TestPredictCurves:
    """Long-format predictions with confidence bounds."""

    @pytest.fixture
    def pooled(self, cbass_data):
        return fit_drms(cbass_data, GROUPING)

    @pytest.fixture
    def grid(self, cbass_data):
        return define_stimulus_grid(cbass_data["Temperature"], n=25)

    def test_columns(self, pooled, grid):
        preds = predict_curves(pooled, grid)
        assert list(preds.columns) == [
            "GroupingProperty", "Temperature", "PredictedPAM", "Lower", "Upper",
        ]

    def test_one_row_per_group_and_grid_point(self, pooled, grid):
        preds = predict_curves(pooled, grid)
        assert len(preds) == len(pooled) * len(grid)
        assert preds["GroupingProperty"].unique().tolist() == list(pooled)

    def test_temperature_rounded_identically(self, pooled, grid):
        preds = predict_curves(pooled, grid)
        expected = np.round(grid, 2)
        for _, sub in preds.groupby("GroupingProperty", sort=False):
            np.testing.assert_array_equal(sub["Temperature"].to_numpy(), expected)

    def test_bounds_bracket_prediction(self, pooled, grid):
        preds = predict_curves(pooled, grid)
        assert np.all(preds["Lower"] <= preds["PredictedPAM"])
        assert np.all(preds["PredictedPAM"] <= preds["Upper"])

    def test_decreasing_predictions(self, pooled, grid):
        preds = predict_curves(pooled, grid)
        for _, sub in preds.groupby("GroupingProperty", sort=False):
            assert np.all(np.diff(sub["PredictedPAM"].to_numpy()) < 0)

    def test_matches_model_predict(self, pooled, grid):
        preds = predict_curves(pooled, grid)
        key = "KAUST_Heat_Pocillopora_420"
        sub = preds[preds["GroupingProperty"] == key]
        np.testing.assert_allclose(sub["PredictedPAM"], pooled[key].predict(grid))

    def test_curve_id_rows(self, cbass_data, grid):
        models = fit_drms(cbass_data, GROUPING, curve_id=True)
        preds = predict_curves(models, grid)
        assert "Genotype" in preds.columns
        assert len(preds) == 4 * 3 * len(grid)
        assert preds["GroupingProperty"].iloc[0] == "KAUST_Control_Pocillopora_420_G1"

    def test_custom_column_names(self, pooled, grid):
        cfg = ColumnConfig(prediction="Fit", lower="Lo", upper="Hi", stimulus="Temperature")
        preds = predict_curves(pooled, grid, columns=cfg)
        assert {"Fit", "Lo", "Hi"} <= set(preds.columns)

    def test_empty_models(self, grid):
        preds = predict_curves({}, grid)
        assert preds.empty
        assert "PredictedPAM" in preds.columns


class TestEndToEndPrediction:
    """Predictions at the assay temperatures reproduce the data's shape."""

    def test_shape_at_assay_temperatures(self, two_genotypes):
        models = fit_drms(two_genotypes, GROUPING, curve_id=True)
        temps = [30.0, 33.0, 36.0, 39.0]
        preds = predict_curves(models, temps)
        observed = two_genotypes["Pam_value"]
        assert len(preds) == 2 * 4
        for _, sub in preds.groupby("Genotype"):
            values = sub["PredictedPAM"].to_numpy()
            assert np.all(np.diff(values) < 0)
            assert values.min() >= observed.min() - 0.02
            assert values.max() <= observed.max() + 0.02
