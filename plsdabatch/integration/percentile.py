"""Percentile normalisation for case-control microbiome studies.

Reference
---------
Gibbons SM, Duvallet C, Alm EJ. Correcting for batch effects in case-control
microbiome studies. PLoS Computational Biology (2018).
"""

from __future__ import annotations

from typing import Any

import numpy as np
from scipy.stats import percentileofscore

from plsdabatch.core.exceptions import ValidationError
from plsdabatch.core.structures import DataMatrix, MicrobiomeContainer
from plsdabatch.core.validation import (
    LabelLike,
    as_abundance_matrix,
    as_labels,
    get_layer_matrix,
    get_obs_labels,
)


def percentile_score(data: Any, control_index: Any) -> np.ndarray:
    """Convert every value to a percentile of the control samples' values.

    For each variable (column) the control values are sorted and each sample
    ``x`` receives the midpoint of its strict and weak percentile::

        (#{c < x} + (n_c - #{c > x})) / (2 * n_c)

    so ties are handled symmetrically and a value equal to every control
    scores 0.5.

    Parameters
    ----------
    data : array-like, shape (n_samples, n_variables)
        Abundances of the samples of a single batch.
    control_index : array-like
        Integer row indices (or a boolean row mask) of the control samples.

    Returns
    -------
    np.ndarray
        Percentile scores in [0, 1], same shape as ``data``.

    Raises
    ------
    ValidationError
        If no control sample is given or an index is out of range.
    """
    X = as_abundance_matrix(data, name="data")
    n_samples = X.shape[0]

    idx = np.asarray(control_index)
    if idx.dtype == bool:
        if idx.shape != (n_samples,):
            raise ValidationError(
                f"Boolean control mask has shape {idx.shape}, expected ({n_samples},).",
                field="control_index",
            )
        idx = np.flatnonzero(idx)
    idx = idx.astype(np.int64, copy=False).reshape(-1)

    if idx.size == 0:
        raise ValidationError(
            "At least one control sample is required to compute percentiles.",
            field="control_index",
        )
    if idx.min() < -n_samples or idx.max() >= n_samples:
        raise ValidationError(
            f"Control indices must lie in [0, {n_samples}).", field="control_index"
        )

    scores = np.empty_like(X)
    for j in range(X.shape[1]):
        control = np.sort(X[idx, j])
        scores[:, j] = percentileofscore(control, X[:, j], kind="mean") / 100.0

    # round-off from the percent scale
    return np.clip(scores, 0.0, 1.0)


def percentile_norm(
    data: Any,
    batch: LabelLike,
    trt: LabelLike,
    ctrl_grp: Any,
) -> np.ndarray:
    """Correct batch effects by percentile normalisation.

    Within each batch, the values of every sample are converted to
    percentiles of the equivalent variable in the control samples of that
    batch; the per-batch tables are then pooled. Pooled batches should share
    similar case and control cohort definitions.

    Parameters
    ----------
    data : array-like, shape (n_samples, n_variables)
        Abundance matrix (samples as rows).
    batch : sequence, np.ndarray or pl.Series
        Batch label of every sample.
    trt : sequence, np.ndarray or pl.Series
        Treatment label of every sample.
    ctrl_grp : Any
        The ``trt`` value identifying control samples.

    Returns
    -------
    np.ndarray
        Percentile table, same shape and row order as ``data``, values in
        [0, 1].

    Raises
    ------
    DimensionError
        If ``batch`` or ``trt`` does not have one entry per row.
    ValidationError
        If a batch contains no control sample.

    Notes
    -----
    The transform is deterministic. Callers should not treat it as
    idempotent: the output is a table of ranks against the controls, not an
    abundance matrix, and is not meant to be normalised again.

    Examples
    --------
    >>> import numpy as np
    >>> X = np.array([[1.0], [2.0], [3.0], [10.0], [20.0], [30.0]])
    >>> batch = ["a", "a", "a", "b", "b", "b"]
    >>> trt = ["ctrl", "ctrl", "case", "ctrl", "ctrl", "case"]
    >>> percentile_norm(X, batch, trt, ctrl_grp="ctrl").ravel().tolist()
    [0.25, 0.75, 1.0, 0.25, 0.75, 1.0]
    """
    X = as_abundance_matrix(data, name="data")
    n_samples = X.shape[0]
    batch = as_labels(batch, n_samples, "batch")
    trt = as_labels(trt, n_samples, "trt")

    is_control = trt == ctrl_grp
    if not is_control.any():
        raise ValidationError(
            f"Control group '{ctrl_grp}' not found in trt. Levels: {np.unique(trt).tolist()}",
            field="ctrl_grp",
        )

    X_pn = np.empty_like(X)
    for level in np.unique(batch):
        rows = np.flatnonzero(batch == level)
        controls = np.flatnonzero(is_control[rows])
        if controls.size == 0:
            raise ValidationError(
                f"Batch '{level}' contains no control samples ('{ctrl_grp}'); "
                "percentile normalisation needs at least one control per batch.",
                field="batch",
            )
        X_pn[rows] = percentile_score(X[rows], controls)

    return X_pn


def integrate_percentile(
    container: MicrobiomeContainer,
    batch_key: str,
    trt_key: str,
    ctrl_grp: Any,
    assay_name: str = "microbe",
    base_layer: str = "clr",
    new_layer_name: str | None = "percentile",
) -> MicrobiomeContainer:
    """Percentile normalisation on a container layer.

    Parameters
    ----------
    container : MicrobiomeContainer
        Input container.
    batch_key : str
        Column in obs with batch labels.
    trt_key : str
        Column in obs with treatment labels.
    ctrl_grp : Any
        Treatment label of the control samples.
    assay_name : str, default="microbe"
        Assay to process.
    base_layer : str, default="clr"
        Layer to normalise.
    new_layer_name : str, optional
        Name of the output layer (default: 'percentile').

    Returns
    -------
    MicrobiomeContainer
        The container with the percentile layer added.
    """
    X = get_layer_matrix(container, assay_name, base_layer)
    batch = get_obs_labels(container, batch_key)
    trt = get_obs_labels(container, trt_key)

    X_pn = percentile_norm(X, batch, trt, ctrl_grp)

    layer_name = new_layer_name or "percentile"
    container.assays[assay_name].add_layer(layer_name, DataMatrix(X=X_pn))
    container.log_operation(
        action="integration_percentile",
        params={
            "assay": assay_name,
            "base_layer": base_layer,
            "new_layer_name": layer_name,
            "batch_key": batch_key,
            "trt_key": trt_key,
            "ctrl_grp": ctrl_grp,
        },
        description=f"Percentile normalisation of layer '{base_layer}' -> '{layer_name}'.",
    )
    return container
