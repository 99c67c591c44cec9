"""Input checks shared by the correction and diagnostic methods.

Array-level functions accept any matrix-like input plus label vectors given
as sequences, ``numpy`` arrays or ``polars.Series``; these helpers normalise
them and enforce the alignment preconditions.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import numpy as np
import polars as pl
import scipy.sparse as sp

from plsdabatch.core.exceptions import (
    AssayNotFoundError,
    DimensionError,
    LayerNotFoundError,
    ValidationError,
)
from plsdabatch.core.structures import MicrobiomeContainer

LabelLike = Sequence[Any] | np.ndarray | pl.Series


def as_abundance_matrix(X: Any, name: str = "X") -> np.ndarray:
    """Return ``X`` as a finite float64 samples x variables array."""
    if isinstance(X, pl.DataFrame):
        X = X.to_numpy()
    elif sp.issparse(X):
        X = X.toarray()

    X = np.array(X, dtype=np.float64)
    if X.ndim != 2:
        raise DimensionError(
            f"'{name}' must be a 2-D samples x variables matrix, got {X.ndim} dimension(s).",
            expected=2,
            actual=X.ndim,
            field=name,
        )
    if X.shape[0] == 0 or X.shape[1] == 0:
        raise ValidationError(f"'{name}' is empty (shape {X.shape}).", field=name)
    if not np.isfinite(X).all():
        raise ValidationError(
            f"'{name}' contains missing or non-finite values; "
            "impute or filter them before batch correction.",
            field=name,
        )
    return X


def as_labels(labels: LabelLike, n_samples: int, name: str) -> np.ndarray:
    """Return a 1-D label array aligned with ``n_samples`` rows."""
    if isinstance(labels, pl.Series):
        if labels.null_count() > 0:
            raise ValidationError(f"'{name}' contains missing labels.", field=name)
        labels = labels.to_numpy()

    arr = np.asarray(labels)
    if arr.ndim != 1:
        raise DimensionError(
            f"'{name}' must be a 1-D label vector, got {arr.ndim} dimension(s).",
            expected=1,
            actual=arr.ndim,
            field=name,
        )
    if arr.shape[0] != n_samples:
        raise DimensionError(
            f"Length of '{name}' ({arr.shape[0]}) does not match the number of "
            f"samples ({n_samples}).",
            expected=n_samples,
            actual=arr.shape[0],
            field=name,
        )
    if arr.dtype == object and any(v is None for v in arr):
        raise ValidationError(f"'{name}' contains missing labels.", field=name)
    return arr


def encode_labels(labels: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Return sorted levels and the integer code of every sample."""
    levels, codes = np.unique(labels, return_inverse=True)
    return levels, codes.reshape(-1)


def crosstab(
    batch: np.ndarray, trt: np.ndarray
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Batch x treatment contingency table.

    Returns
    -------
    batch_levels, trt_levels, table
        ``table[i, j]`` counts samples of batch level ``i`` and treatment
        level ``j``.
    """
    batch_levels, batch_codes = encode_labels(batch)
    trt_levels, trt_codes = encode_labels(trt)
    table = np.zeros((len(batch_levels), len(trt_levels)), dtype=np.int64)
    np.add.at(table, (batch_codes, trt_codes), 1)
    return batch_levels, trt_levels, table


def get_layer_matrix(
    container: MicrobiomeContainer, assay_name: str, layer_name: str
) -> np.ndarray:
    """Look up ``assay_name``/``layer_name`` and return its data matrix."""
    if assay_name not in container.assays:
        available = ", ".join(f"'{k}'" for k in container.assays)
        raise AssayNotFoundError(
            assay_name,
            hint=f"Available assays: {available}. Use container.list_assays() to see all assays.",
        )

    assay = container.assays[assay_name]
    if layer_name not in assay.layers:
        available = ", ".join(f"'{k}'" for k in assay.layers)
        raise LayerNotFoundError(
            layer_name,
            assay_name,
            hint=f"Available layers in assay '{assay_name}': {available}.",
        )
    return assay.layers[layer_name].X


def get_obs_labels(container: MicrobiomeContainer, key: str) -> pl.Series:
    """Return the ``obs`` column ``key`` or raise a ValidationError."""
    if key not in container.obs.columns:
        raise ValidationError(
            f"Column '{key}' not found in obs. Available columns: {list(container.obs.columns)}",
            field=key,
        )
    return container.obs[key]
