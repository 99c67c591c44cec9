"""Tests for the synthetic example dataset."""

import numpy as np
import pytest

from plsdabatch.core.exceptions import ParameterRangeError
from plsdabatch.datasets import clr_transform, load_ad_like_example
from plsdabatch.core.validation import crosstab


class TestLoadAdLikeExample:
    """Tests for load_ad_like_example."""

    def test_default_shape(self, ad_container):
        """Defaults give 75 samples, 231 variables, 5 batches and 2 treatments."""
        assay = ad_container.assays["microbe"]

        assert ad_container.n_samples == 75
        assert assay.n_features == 231
        assert set(assay.list_layers()) == {"counts", "clr"}
        assert ad_container.obs["batch"].n_unique() == 5
        assert sorted(ad_container.obs["trt"].unique().to_list()) == ["0-0.5", "1-2"]
        assert "trt_associated" in assay.var.columns

    def test_fully_crossed_and_unbalanced(self, ad_container):
        """Every batch holds both treatments, in unequal proportions."""
        _, _, table = crosstab(
            ad_container.obs["batch"].to_numpy(), ad_container.obs["trt"].to_numpy()
        )
        assert (table > 0).all()
        assert np.unique(table).size > 1

    def test_counts_and_clr(self, ad_container):
        """Counts are non-negative integers and CLR rows are centred."""
        counts = ad_container.assays["microbe"].layers["counts"].X
        clr = ad_container.assays["microbe"].layers["clr"].X

        assert (counts >= 0).all()
        np.testing.assert_array_equal(counts, np.round(counts))
        np.testing.assert_allclose(clr.sum(axis=1), 0.0, atol=1e-9)

    def test_reproducible(self):
        """The same seed gives the same data."""
        first = load_ad_like_example(n_samples=20, n_features=15, n_batches=2, seed=7)
        second = load_ad_like_example(n_samples=20, n_features=15, n_batches=2, seed=7)
        np.testing.assert_array_equal(
            first.assays["microbe"].layers["counts"].X,
            second.assays["microbe"].layers["counts"].X,
        )

    def test_custom_levels(self):
        """Treatment labels can be customised."""
        container = load_ad_like_example(
            n_samples=30, n_features=10, n_batches=3, trt_levels=("ctrl", "case", "severe")
        )
        assert sorted(container.obs["trt"].unique().to_list()) == ["case", "ctrl", "severe"]

    @pytest.mark.parametrize(
        ("kwargs", "parameter"),
        [
            ({"n_batches": 1}, "n_batches"),
            ({"n_samples": 8, "n_batches": 5}, "n_samples"),
            ({"trt_levels": ("only",)}, "n_samples"),
        ],
    )
    def test_invalid_arguments(self, kwargs, parameter):
        """Impossible designs raise ParameterRangeError."""
        with pytest.raises(ParameterRangeError) as exc_info:
            load_ad_like_example(**kwargs)
        assert exc_info.value.parameter == parameter


class TestClrTransform:
    """Tests for clr_transform."""

    def test_rows_sum_to_zero(self):
        counts = np.array([[0.0, 1.0, 9.0], [4.0, 4.0, 4.0]])
        clr = clr_transform(counts)

        np.testing.assert_allclose(clr.sum(axis=1), 0.0, atol=1e-12)
        np.testing.assert_allclose(clr[1], 0.0)

    def test_pseudo_count(self):
        counts = np.array([[0.0, 1.0]])
        expected = np.log([1.5, 2.5]) - np.log([1.5, 2.5]).mean()
        np.testing.assert_allclose(clr_transform(counts, pseudo_count=0.5), expected.reshape(1, -1))
