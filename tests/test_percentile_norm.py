"""Tests for percentile normalisation.

Tests cover plsdabatch.integration.percentile:
- percentile_score: midpoint percentile against control samples
- percentile_norm: per-batch normalisation and pooling
- integrate_percentile: container wrapper
"""

from __future__ import annotations

import numpy as np
import numpy.testing as npt
import polars as pl
import pytest

from plsdabatch.core.exceptions import (
    AssayNotFoundError,
    DimensionError,
    LayerNotFoundError,
    ValidationError,
)
from plsdabatch.integration.percentile import (
    integrate_percentile,
    percentile_norm,
    percentile_score,
)


class TestPercentileScore:
    """Tests for percentile_score."""

    def test_midpoint_rule(self):
        """Strict and weak percentiles are averaged."""
        data = np.array([[1.0], [2.0], [3.0], [2.5], [0.0], [5.0]])
        scores = percentile_score(data, [0, 1, 2])

        expected = [1 / 6, 3 / 6, 5 / 6, 4 / 6, 0.0, 1.0]
        npt.assert_allclose(scores.ravel(), expected)

    def test_tie_with_max_control_is_not_one(self):
        """A value equal to the largest control is scored by the midpoint rule."""
        data = np.array([[1.0], [2.0], [3.0], [3.0]])
        scores = percentile_score(data, [0, 1, 2])

        assert scores[3, 0] == pytest.approx(5 / 6)
        assert scores[3, 0] < 1.0

    def test_value_equal_to_every_control(self):
        """Ties with all controls give 0.5."""
        data = np.array([[2.0], [2.0], [2.0], [2.0]])
        scores = percentile_score(data, [0, 1, 2])
        npt.assert_allclose(scores.ravel(), 0.5)

    def test_controls_against_themselves_average_half(self):
        """Controls scored against their own distribution average 0.5."""
        rng = np.random.default_rng(3)
        controls = rng.normal(size=(17, 6))
        controls[:4, 0] = 1.0  # ties

        scores = percentile_score(controls, np.arange(17))
        npt.assert_allclose(scores.mean(axis=0), 0.5, atol=1e-12)

    def test_boolean_mask(self):
        """A boolean row mask selects the same controls as indices."""
        rng = np.random.default_rng(0)
        data = rng.normal(size=(8, 3))
        mask = np.array([True, False, True, True, False, False, True, False])

        npt.assert_array_equal(
            percentile_score(data, mask), percentile_score(data, np.flatnonzero(mask))
        )

    def test_columns_are_independent(self):
        """Each variable is ranked against its own control values."""
        data = np.array([[1.0, 30.0], [2.0, 10.0], [3.0, 20.0]])
        scores = percentile_score(data, [0, 1])

        npt.assert_allclose(scores[:, 0], [0.25, 0.75, 1.0])
        npt.assert_allclose(scores[:, 1], [0.75, 0.25, 0.5])

    def test_empty_controls_raise(self):
        """An empty control set is a precondition violation."""
        with pytest.raises(ValidationError, match="At least one control"):
            percentile_score(np.ones((3, 2)), [])

    def test_out_of_range_index_raises(self):
        """Control indices must address existing rows."""
        with pytest.raises(ValidationError, match="Control indices"):
            percentile_score(np.ones((3, 2)), [0, 5])


class TestPercentileNorm:
    """Tests for percentile_norm."""

    def test_docstring_example(self):
        """Two batches are normalised against their own controls."""
        X = np.array([[1.0], [2.0], [3.0], [10.0], [20.0], [30.0]])
        batch = ["a", "a", "a", "b", "b", "b"]
        trt = ["ctrl", "ctrl", "case", "ctrl", "ctrl", "case"]

        result = percentile_norm(X, batch, trt, ctrl_grp="ctrl")
        npt.assert_allclose(result.ravel(), [0.25, 0.75, 1.0, 0.25, 0.75, 1.0])

    def test_removes_batch_location_shift(self, batch_data):
        """A pure per-batch shift disappears after normalisation."""
        X, trt, batch = batch_data
        shifted = X.copy()
        shifted[batch == "b1"] += 100.0

        npt.assert_allclose(
            percentile_norm(shifted, batch, trt, "t0"),
            percentile_norm(X, batch, trt, "t0"),
        )

    def test_values_in_unit_interval(self, batch_data):
        """All percentiles lie in [0, 1] and the shape is preserved."""
        X, trt, batch = batch_data
        result = percentile_norm(X, batch, trt, "t0")

        assert result.shape == X.shape
        assert result.min() >= 0.0
        assert result.max() <= 1.0

    def test_row_order_preserved(self, batch_data):
        """Output rows follow the input order whatever the batch layout."""
        X, trt, batch = batch_data
        perm = np.random.default_rng(1).permutation(X.shape[0])

        expected = percentile_norm(X, batch, trt, "t0")[perm]
        result = percentile_norm(X[perm], batch[perm], trt[perm], "t0")
        npt.assert_allclose(result, expected)

    def test_deterministic(self, batch_data):
        """Identical inputs give identical outputs."""
        X, trt, batch = batch_data
        npt.assert_array_equal(
            percentile_norm(X, batch, trt, "t0"), percentile_norm(X, batch, trt, "t0")
        )

    def test_input_not_modified(self, batch_data):
        """The input matrix is left untouched."""
        X, trt, batch = batch_data
        X_before = X.copy()
        percentile_norm(X, batch, trt, "t0")
        npt.assert_array_equal(X, X_before)

    def test_polars_labels(self, batch_data):
        """Labels may be given as polars Series."""
        X, trt, batch = batch_data
        result = percentile_norm(X, pl.Series(batch), pl.Series(trt), "t0")
        npt.assert_allclose(result, percentile_norm(X, batch, trt, "t0"))

    def test_batch_without_controls_raises(self, batch_data):
        """Every batch needs at least one control sample."""
        X, trt, batch = batch_data
        trt = trt.copy()
        trt[batch == "b2"] = "t1"

        with pytest.raises(ValidationError, match="Batch 'b2' contains no control"):
            percentile_norm(X, batch, trt, "t0")

    def test_unknown_control_group_raises(self, batch_data):
        """The control label must occur in trt."""
        X, trt, batch = batch_data
        with pytest.raises(ValidationError, match="Control group 'healthy' not found"):
            percentile_norm(X, batch, trt, "healthy")

    def test_label_length_mismatch_raises(self, batch_data):
        """Labels must have one entry per sample."""
        X, trt, batch = batch_data
        with pytest.raises(DimensionError, match="Length of 'batch'"):
            percentile_norm(X, batch[:-1], trt, "t0")

    def test_missing_values_raise(self, batch_data):
        """Missing abundances are rejected."""
        X, trt, batch = batch_data
        X = X.copy()
        X[0, 0] = np.nan
        with pytest.raises(ValidationError, match="non-finite"):
            percentile_norm(X, batch, trt, "t0")


class TestIntegratePercentile:
    """Tests for integrate_percentile."""

    def test_adds_layer_and_logs(self, small_container):
        """The percentile table is stored as a new layer and logged."""
        result = integrate_percentile(small_container, batch_key="batch", trt_key="trt", ctrl_grp="t0")

        assay = result.assays["microbe"]
        assert "percentile" in assay.layers
        X_pn = assay.layers["percentile"].X
        assert X_pn.shape == assay.layers["clr"].X.shape
        assert result.history[-1].action == "integration_percentile"
        assert result.history[-1].params["ctrl_grp"] == "t0"

    def test_custom_layer_name(self, small_container):
        """A custom output layer name is honoured."""
        result = integrate_percentile(
            small_container, "batch", "trt", "t0", new_layer_name="pn"
        )
        assert "pn" in result.assays["microbe"].layers

    def test_missing_assay(self, small_container):
        """Unknown assays raise AssayNotFoundError."""
        with pytest.raises(AssayNotFoundError, match="nonexistent"):
            integrate_percentile(small_container, "batch", "trt", "t0", assay_name="nonexistent")

    def test_missing_layer(self, small_container):
        """Unknown layers raise LayerNotFoundError."""
        with pytest.raises(LayerNotFoundError, match="nonexistent"):
            integrate_percentile(small_container, "batch", "trt", "t0", base_layer="nonexistent")

    def test_missing_obs_column(self, small_container):
        """Unknown obs columns raise ValidationError."""
        with pytest.raises(ValidationError, match="Column 'site' not found"):
            integrate_percentile(small_container, "site", "trt", "t0")
