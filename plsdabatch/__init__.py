"""plsdabatch: Batch Effect Management for Microbiome Data.

A Python library to detect and correct batch effects in microbiome
compositional data, with a hierarchical data structure
(MicrobiomeContainer -> Assay -> DataMatrix).

Key Features:
    - PLSDA-batch correction: dense, sparse and weighted (unbalanced) variants
    - Percentile normalisation for case-control studies
    - Per-variable linear (mixed) model diagnostics with p-value adjustment
    - Synthetic example data

Quick Start:
    >>> from plsdabatch import load_ad_like_example, integrate_plsda_batch
    >>> container = load_ad_like_example()
    >>> container = integrate_plsda_batch(container, batch_key="batch", trt_key="trt",
    ...                                   ncomp_trt=1, ncomp_bat=4)
    >>> container.assays["microbe"].layers["plsda_batch"].X.shape
    (75, 231)
"""

from __future__ import annotations

__version__ = "0.1.0"
__author__ = "plsdabatch Team"

from plsdabatch.core import (
    Assay,
    AssayNotFoundError,
    ConfoundedDesignError,
    DataMatrix,
    DimensionError,
    LayerNotFoundError,
    MicrobiomeContainer,
    ParameterRangeError,
    PlsdaBatchError,
    ProvenanceLog,
    ValidationError,
)
from plsdabatch.datasets import clr_transform, load_ad_like_example
from plsdabatch.diagnostics import (
    LinearRegresResult,
    ModelType,
    adjust_pvalues,
    linear_regres,
    regress_batch_effects,
)
from plsdabatch.integration import (
    PLSDABatchResult,
    PLSDAResult,
    integrate_percentile,
    integrate_plsda_batch,
    percentile_norm,
    percentile_score,
    plsda,
    plsda_batch,
)

__all__ = [
    "__version__",
    # Core
    "MicrobiomeContainer",
    "Assay",
    "DataMatrix",
    "ProvenanceLog",
    # Exceptions
    "PlsdaBatchError",
    "ValidationError",
    "DimensionError",
    "ParameterRangeError",
    "ConfoundedDesignError",
    "AssayNotFoundError",
    "LayerNotFoundError",
    # Batch correction
    "plsda_batch",
    "integrate_plsda_batch",
    "PLSDABatchResult",
    "plsda",
    "PLSDAResult",
    "percentile_norm",
    "percentile_score",
    "integrate_percentile",
    # Diagnostics
    "linear_regres",
    "regress_batch_effects",
    "adjust_pvalues",
    "LinearRegresResult",
    "ModelType",
    # Datasets
    "load_ad_like_example",
    "clr_transform",
]
