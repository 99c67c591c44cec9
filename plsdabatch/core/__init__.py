from .exceptions import (
    AssayNotFoundError,
    ConfoundedDesignError,
    DimensionError,
    LayerNotFoundError,
    ParameterRangeError,
    PlsdaBatchError,
    ValidationError,
)
from .structures import Assay, DataMatrix, MicrobiomeContainer, ProvenanceLog

__all__ = [
    "MicrobiomeContainer",
    "Assay",
    "DataMatrix",
    "ProvenanceLog",
    "PlsdaBatchError",
    "ValidationError",
    "DimensionError",
    "ParameterRangeError",
    "ConfoundedDesignError",
    "AssayNotFoundError",
    "LayerNotFoundError",
]
