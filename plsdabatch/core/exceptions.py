"""Exception hierarchy for plsdabatch.

All errors are raised immediately to the caller. Nothing is retried or
recovered internally: the methods are deterministic offline analyses.
"""

from __future__ import annotations

from typing import Any


class PlsdaBatchError(Exception):
    """Base class for exceptions in plsdabatch."""

    pass


class ValidationError(PlsdaBatchError, ValueError):
    """A precondition on the inputs does not hold."""

    def __init__(self, message: str, field: str | None = None) -> None:
        self.field = field
        super().__init__(message)


class DimensionError(ValidationError):
    """Labels or layers are not aligned with the rows/columns of a matrix."""

    def __init__(
        self,
        message: str,
        expected: int | None = None,
        actual: int | None = None,
        field: str | None = None,
    ) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(message, field=field)


class ParameterRangeError(PlsdaBatchError, ValueError):
    """A numeric parameter lies outside its admissible range."""

    def __init__(self, message: str, parameter: str | None = None, value: Any = None) -> None:
        self.parameter = parameter
        self.value = value
        super().__init__(message)


class ConfoundedDesignError(PlsdaBatchError):
    """Batch and treatment cannot be separated in the study design.

    ``table`` holds the batch x treatment contingency table (rows are batch
    levels, columns treatment levels) when available.
    """

    def __init__(self, message: str, table: Any = None) -> None:
        self.table = table
        super().__init__(message)


class AssayNotFoundError(PlsdaBatchError, KeyError):
    """Requested assay is not registered in the container."""

    def __init__(self, assay_name: str, hint: str | None = None) -> None:
        self.assay_name = assay_name
        self.hint = hint
        message = f"Assay '{assay_name}' not found."
        if hint:
            message = f"{message} {hint}"
        super().__init__(message)

    def __str__(self) -> str:
        # KeyError quotes its argument otherwise
        return str(self.args[0])


class LayerNotFoundError(PlsdaBatchError, KeyError):
    """Requested layer does not exist in the assay."""

    def __init__(self, layer_name: str, assay_name: str, hint: str | None = None) -> None:
        self.layer_name = layer_name
        self.assay_name = assay_name
        self.hint = hint
        message = f"Layer '{layer_name}' not found in assay '{assay_name}'."
        if hint:
            message = f"{message} {hint}"
        super().__init__(message)

    def __str__(self) -> str:
        return str(self.args[0])
