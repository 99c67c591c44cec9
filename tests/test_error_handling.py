"""
Error handling tests for plsdabatch.

This module checks the exception hierarchy and that the structured fields
of each exception are filled in by the public functions.
"""

import numpy as np
import pytest

from plsdabatch import (
    AssayNotFoundError,
    ConfoundedDesignError,
    DimensionError,
    LayerNotFoundError,
    ParameterRangeError,
    PlsdaBatchError,
    ValidationError,
    integrate_plsda_batch,
    linear_regres,
    percentile_norm,
    plsda_batch,
)

# =============================================================================
# Hierarchy
# =============================================================================


class TestExceptionHierarchy:
    """All library errors share one base class."""

    @pytest.mark.parametrize(
        "exc_type",
        [
            ValidationError,
            DimensionError,
            ParameterRangeError,
            ConfoundedDesignError,
            AssayNotFoundError,
            LayerNotFoundError,
        ],
    )
    def test_subclass_of_base(self, exc_type):
        assert issubclass(exc_type, PlsdaBatchError)

    def test_value_errors(self):
        """Argument problems are also ValueErrors."""
        assert issubclass(ValidationError, ValueError)
        assert issubclass(DimensionError, ValidationError)
        assert issubclass(ParameterRangeError, ValueError)

    def test_lookup_errors(self):
        """Missing assays and layers are also KeyErrors."""
        assert issubclass(AssayNotFoundError, KeyError)
        assert issubclass(LayerNotFoundError, KeyError)

    def test_not_found_message_unquoted(self):
        """str() shows the message, not the KeyError repr."""
        err = AssayNotFoundError("microbe", hint="Available assays: 'genus'.")
        assert str(err) == "Assay 'microbe' not found. Available assays: 'genus'."

        err = LayerNotFoundError("raw", "microbe")
        assert str(err) == "Layer 'raw' not found in assay 'microbe'."


# =============================================================================
# Structured fields
# =============================================================================


class TestExceptionFields:
    """Public functions fill in the structured exception fields."""

    def test_dimension_error_fields(self, batch_data):
        X, trt, batch = batch_data
        with pytest.raises(DimensionError) as exc_info:
            percentile_norm(X, batch[:10], trt, "t0")

        err = exc_info.value
        assert err.field == "batch"
        assert err.expected == X.shape[0]
        assert err.actual == 10

    def test_parameter_range_error_fields(self, batch_data):
        X, trt, batch = batch_data
        with pytest.raises(ParameterRangeError) as exc_info:
            plsda_batch(X, trt, batch, ncomp_trt=1, ncomp_bat=50)

        assert exc_info.value.parameter == "ncomp_bat"
        assert exc_info.value.value == 50

    def test_confounded_design_table(self, batch_data):
        X, _, batch = batch_data
        trt = np.where(batch == "b1", "t1", "t0")

        with pytest.raises(ConfoundedDesignError) as exc_info:
            plsda_batch(X, trt, batch, ncomp_trt=1)

        table = exc_info.value.table
        assert table.shape == (3, 2)
        assert ((table > 0).sum(axis=1) == 1).all()

    def test_validation_error_field(self, batch_data):
        X, trt, _ = batch_data
        with pytest.raises(ValidationError) as exc_info:
            linear_regres(X, trt)
        assert exc_info.value.field == "batch_fix"

    def test_layer_not_found_hint(self, small_container):
        with pytest.raises(LayerNotFoundError) as exc_info:
            integrate_plsda_batch(small_container, "batch", "trt", base_layer="counts")

        err = exc_info.value
        assert err.layer_name == "counts"
        assert err.assay_name == "microbe"
        assert "'clr'" in err.hint

    def test_caught_as_base_class(self, batch_data):
        """Callers can catch every library error at once."""
        X, trt, batch = batch_data
        with pytest.raises(PlsdaBatchError):
            plsda_batch(X, trt, batch, ncomp_bat=0)
