"""PLSDA-batch: batch effect correction with PLS discriminant analysis.

Treatment-related components are estimated and set aside first; batch
components are then estimated on the treatment-free data and their signal is
subtracted from the original matrix, preserving the treatment variation.

Reference
---------
Wang Y, Lê Cao K-A. PLSDA-batch: a multivariate framework to correct for
batch effects in microbiome data. Briefings in Bioinformatics (2023).
"""

from __future__ import annotations

import warnings
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from plsdabatch.core.exceptions import ConfoundedDesignError, ValidationError
from plsdabatch.core.structures import DataMatrix, MicrobiomeContainer
from plsdabatch.core.validation import (
    LabelLike,
    as_abundance_matrix,
    as_labels,
    crosstab,
    encode_labels,
    get_layer_matrix,
    get_obs_labels,
)
from plsdabatch.integration.plsda import (
    check_ncomp,
    deflate_matrix,
    dummy_matrix,
    explained_variance,
    plsda,
    resolve_keepx,
    scale_columns,
)


@dataclass(frozen=True)
class PLSDABatchResult:
    """
    Result of a PLSDA-batch correction.

    Attributes
    ----------
    X : np.ndarray
        The input matrix.
    X_nobatch : np.ndarray
        Batch-corrected matrix, same shape and units as ``X``.
    X_notrt : np.ndarray
        ``X`` with the treatment components removed (original units); equals
        ``X`` when no treatment was given.
    trt_loadings, trt_variates : np.ndarray or None
        Treatment components (None when no treatment was given).
    bat_loadings, bat_variates : np.ndarray
        Batch loadings (n_variables x ncomp_bat) and the batch variates of
        the scaled ``X`` that were subtracted.
    explained_variance_trt : dict[str, np.ndarray] or None
        Per-component proportion of the ``"X"`` block explained by the
        treatment X variates and of the ``"Y"`` (treatment outcome) block
        explained by the treatment Y variates.
    explained_variance_bat : dict[str, np.ndarray]
        Per-component proportion of the treatment-free ``"X"`` block
        explained by the batch X variates and of the ``"Y"`` (batch outcome)
        block explained by the batch Y variates. With ``K`` batch levels,
        ``K - 1`` components explain the whole outcome block.
    weights : np.ndarray or None
        Per-sample weights of the unbalanced variant.
    zero_variance : np.ndarray
        Indices of constant variables, passed through unchanged.
    trt_levels, bat_levels : np.ndarray
        Sorted label levels matching the dummy columns.
    params : dict[str, Any]
        Parameters of the fit.
    """

    X: np.ndarray
    X_nobatch: np.ndarray
    X_notrt: np.ndarray
    trt_loadings: np.ndarray | None
    trt_variates: np.ndarray | None
    bat_loadings: np.ndarray
    bat_variates: np.ndarray
    explained_variance_trt: dict[str, np.ndarray] | None
    explained_variance_bat: dict[str, np.ndarray]
    weights: np.ndarray | None
    zero_variance: np.ndarray
    trt_levels: np.ndarray | None
    bat_levels: np.ndarray
    params: dict[str, Any] = field(default_factory=dict)

    def cumulative_explained_variance(self, stage: str = "bat", block: str = "Y") -> np.ndarray:
        """Cumulative explained variance of ``block`` for the ``"bat"`` or ``"trt"`` stage.

        Y variates are not orthogonal, so components fitted beyond the rank of
        the outcome block can add a little on top of 1; the cumulative values
        are capped at 1.
        """
        if stage == "bat":
            ev = self.explained_variance_bat
        elif stage == "trt":
            if self.explained_variance_trt is None:
                raise ValidationError("No treatment components were fitted.", field="stage")
            ev = self.explained_variance_trt
        else:
            raise ValidationError(f"Unknown stage '{stage}'. Use 'bat' or 'trt'.", field="stage")

        if block not in ev:
            raise ValidationError(f"Unknown block '{block}'. Use 'X' or 'Y'.", field="block")
        return np.minimum(np.cumsum(ev[block]), 1.0)

    def select_ncomp(self, stage: str = "bat", threshold: float = 1.0, tol: float = 1e-3) -> int | None:
        """
        Smallest number of components whose cumulative explained variance of
        the outcome reaches ``threshold`` (within ``tol``).

        ``tol`` absorbs the round-off left by the NIPALS convergence
        criterion. With ``K`` levels the outcome block is fully explained by
        ``K - 1`` components. Returns None when the fitted components never
        reach the threshold; refit with more components in that case.
        """
        cum = self.cumulative_explained_variance(stage=stage, block="Y")
        hits = np.flatnonzero(cum >= threshold - tol)
        return int(hits[0]) + 1 if hits.size else None


def design_weights(y_bat: np.ndarray, y_trt: np.ndarray) -> np.ndarray:
    """
    Sample weights that give every batch x treatment cell equal total weight.

    ``w_i = n / (B * K * n_{b(i), k(i)})`` with B batch levels, K treatment
    levels and ``n_{b,k}`` the cell sizes; the weights sum to ``n``.

    Raises
    ------
    ConfoundedDesignError
        If a batch x treatment cell is empty.
    """
    _, _, table = crosstab(y_bat, y_trt)
    if (table == 0).any():
        raise ConfoundedDesignError(
            "Unbalanced correction requires every treatment level in every batch; "
            f"empty batch x treatment cells found:\n{table}",
            table=table,
        )
    _, bat_codes = encode_labels(y_bat)
    _, trt_codes = encode_labels(y_trt)
    n = y_bat.shape[0]
    n_bat, n_trt = table.shape
    return n / (n_bat * n_trt * table[bat_codes, trt_codes].astype(np.float64))


def _check_design(y_bat: np.ndarray, y_trt: np.ndarray) -> None:
    _, _, table = crosstab(y_bat, y_trt)
    trt_per_batch = (table > 0).sum(axis=1)
    if (trt_per_batch <= 1).all():
        raise ConfoundedDesignError(
            "Batch is nested within treatment (no batch contains more than one "
            "treatment level); batch and treatment effects cannot be separated:\n"
            f"{table}",
            table=table,
        )


def _project(X: np.ndarray, loadings: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Variates of ``X`` for fixed loadings, deflating after each component."""
    variates = np.zeros((X.shape[0], loadings.shape[1]))
    X_h = X
    for h in range(loadings.shape[1]):
        t = X_h @ loadings[:, h]
        variates[:, h] = t
        X_h = deflate_matrix(X_h, t)
    return variates, X_h


def plsda_batch(
    X: Any,
    y_trt: LabelLike | None,
    y_bat: LabelLike,
    ncomp_trt: int = 2,
    ncomp_bat: int = 2,
    keepx_trt: int | Sequence[int] | None = None,
    keepx_bat: int | Sequence[int] | None = None,
    balance: bool = True,
    max_iter: int = 500,
    tol: float = 1e-6,
    near_zero_var: bool = True,
) -> PLSDABatchResult:
    """
    Remove batch effects with PLSDA-batch.

    Parameters
    ----------
    X : array-like, shape (n_samples, n_variables)
        Abundance matrix (e.g. CLR transformed), samples as rows.
    y_trt : sequence, np.ndarray or pl.Series, optional
        Treatment label per sample. None skips the treatment stage.
    y_bat : sequence, np.ndarray or pl.Series
        Batch label per sample.
    ncomp_trt : int, default=2
        Number of treatment components.
    ncomp_bat : int, default=2
        Number of batch components; see ``PLSDABatchResult.select_ncomp``.
    keepx_trt, keepx_bat : int or sequence of int, optional
        Variables kept per treatment / batch component (sparse variant).
        None uses all variables.
    balance : bool, default=True
        Whether the batch x treatment design is balanced. ``False`` weights
        samples so that every batch x treatment cell counts equally.
    max_iter : int, default=500
        Maximum NIPALS iterations per component.
    tol : float, default=1e-6
        NIPALS convergence tolerance.
    near_zero_var : bool, default=True
        Pass constant variables through unchanged (with a warning) instead
        of raising.

    Returns
    -------
    PLSDABatchResult
        Corrected matrix, components and explained variance.

    Raises
    ------
    DimensionError
        If a label vector is not aligned with the rows of ``X``.
    ValidationError
        If ``X`` has missing values, a label has fewer than two levels,
        a ``keepx`` list has the wrong length, or constant variables are
        found with ``near_zero_var=False``.
    ParameterRangeError
        If a component count exceeds ``min(n_samples - 1, n_variables)``
        or a ``keepx`` value is outside ``[1, n_variables]``.
    ConfoundedDesignError
        If batch is nested within treatment, or ``balance=False`` with an
        empty batch x treatment cell.

    Examples
    --------
    >>> from plsdabatch.datasets import load_ad_like_example
    >>> container = load_ad_like_example()
    >>> X = container.assays["microbe"].layers["clr"].X
    >>> res = plsda_batch(X, container.obs["trt"], container.obs["batch"],
    ...                   ncomp_trt=1, ncomp_bat=4)
    >>> res.X_nobatch.shape == X.shape
    True
    """
    X = as_abundance_matrix(X, name="X")
    n_samples, n_variables = X.shape

    y_bat = as_labels(y_bat, n_samples, "y_bat")
    bat_levels, Y_bat = dummy_matrix(y_bat)
    if bat_levels.shape[0] < 2:
        raise ValidationError("y_bat must contain at least 2 batch levels.", field="y_bat")

    weights = None
    trt_levels = None
    Y_trt = None
    if y_trt is not None:
        y_trt = as_labels(y_trt, n_samples, "y_trt")
        trt_levels, Y_trt = dummy_matrix(y_trt)
        if trt_levels.shape[0] < 2:
            raise ValidationError("y_trt must contain at least 2 treatment levels.", field="y_trt")
        _check_design(y_bat, y_trt)
        if not balance:
            weights = design_weights(y_bat, y_trt)
    elif not balance:
        raise ValidationError(
            "balance=False weights batch x treatment cells and requires y_trt.",
            field="balance",
        )

    zero_variance = np.flatnonzero(np.ptp(X, axis=0) == 0)
    if zero_variance.size:
        if not near_zero_var:
            raise ValidationError(
                f"{zero_variance.size} variable(s) have zero variance: {zero_variance.tolist()}. "
                "Remove them or set near_zero_var=True.",
                field="X",
            )
        warnings.warn(
            f"{zero_variance.size} zero-variance variable(s) are left uncorrected: "
            f"{zero_variance.tolist()}.",
            stacklevel=2,
        )
    keep = np.setdiff1d(np.arange(n_variables), zero_variance)
    if keep.size == 0:
        raise ValidationError("No variables with non-zero variance.", field="X")
    n_kept = keep.size

    ncomp_bat = check_ncomp(ncomp_bat, n_samples, n_kept, "ncomp_bat")
    keepx_bat_arr = resolve_keepx(keepx_bat, ncomp_bat, n_kept, "keepx_bat")
    if Y_trt is not None:
        ncomp_trt = check_ncomp(ncomp_trt, n_samples, n_kept, "ncomp_trt")
        keepx_trt_arr = resolve_keepx(keepx_trt, ncomp_trt, n_kept, "keepx_trt")

    X_scale, center, scale = scale_columns(X[:, keep])

    def _full(M_kept: np.ndarray) -> np.ndarray:
        out = X.copy()
        out[:, keep] = M_kept * scale + center
        return out

    def _full_loadings(L: np.ndarray) -> np.ndarray:
        out = np.zeros((n_variables, L.shape[1]))
        out[keep] = L
        return out

    trt_loadings = trt_variates = ev_trt = None
    if Y_trt is not None:
        Y_trt_scale, _, _ = scale_columns(Y_trt, weights)
        fit_trt = plsda(
            X_scale, Y_trt_scale, ncomp_trt, keepx_trt_arr,
            max_iter=max_iter, tol=tol, weights=weights,
        )
        trt_variates, X_notrt = _project(X_scale, fit_trt.loadings)
        trt_loadings = _full_loadings(fit_trt.loadings)
        ev_trt = {
            "X": explained_variance(X_scale, trt_variates),
            "Y": fit_trt.explained_variance["Y"],
        }
    else:
        X_notrt = X_scale

    Y_bat_scale, _, _ = scale_columns(Y_bat, weights)
    fit_bat = plsda(
        X_notrt, Y_bat_scale, ncomp_bat, keepx_bat_arr,
        max_iter=max_iter, tol=tol, weights=weights,
    )
    notrt_variates, _ = _project(X_notrt, fit_bat.loadings)
    ev_bat = {
        "X": explained_variance(X_notrt, notrt_variates),
        "Y": fit_bat.explained_variance["Y"],
    }

    bat_variates, X_nobat_scale = _project(X_scale, fit_bat.loadings)

    return PLSDABatchResult(
        X=X,
        X_nobatch=_full(X_nobat_scale),
        X_notrt=_full(X_notrt),
        trt_loadings=trt_loadings,
        trt_variates=trt_variates,
        bat_loadings=_full_loadings(fit_bat.loadings),
        bat_variates=bat_variates,
        explained_variance_trt=ev_trt,
        explained_variance_bat=ev_bat,
        weights=weights,
        zero_variance=zero_variance,
        trt_levels=trt_levels,
        bat_levels=bat_levels,
        params={
            "ncomp_trt": ncomp_trt if Y_trt is not None else None,
            "ncomp_bat": ncomp_bat,
            "keepx_trt": keepx_trt_arr.tolist() if Y_trt is not None else None,
            "keepx_bat": keepx_bat_arr.tolist(),
            "balance": balance,
            "max_iter": max_iter,
            "tol": tol,
            "near_zero_var": near_zero_var,
        },
    )


def integrate_plsda_batch(
    container: MicrobiomeContainer,
    batch_key: str,
    trt_key: str | None = None,
    ncomp_trt: int = 2,
    ncomp_bat: int = 2,
    keepx_trt: int | Sequence[int] | None = None,
    keepx_bat: int | Sequence[int] | None = None,
    balance: bool = True,
    assay_name: str = "microbe",
    base_layer: str = "clr",
    new_layer_name: str | None = "plsda_batch",
    max_iter: int = 500,
    tol: float = 1e-6,
    near_zero_var: bool = True,
    return_result: bool = False,
) -> MicrobiomeContainer | tuple[MicrobiomeContainer, PLSDABatchResult]:
    """Correct batch effects of a container layer with PLSDA-batch.

    Parameters
    ----------
    container : MicrobiomeContainer
        Input container with batch (and treatment) labels in obs.
    batch_key : str
        Column name in obs containing batch labels.
    trt_key : str, optional
        Column name in obs containing treatment labels.
    ncomp_trt, ncomp_bat, keepx_trt, keepx_bat, balance, max_iter, tol, near_zero_var
        See :func:`plsda_batch`.
    assay_name : str, default="microbe"
        Assay to correct.
    base_layer : str, default="clr"
        Layer to correct.
    new_layer_name : str, optional
        Name of the corrected layer (default: 'plsda_batch').
    return_result : bool, default=False
        Also return the full :class:`PLSDABatchResult`.

    Returns
    -------
    MicrobiomeContainer or (MicrobiomeContainer, PLSDABatchResult)
        The container with the corrected layer added.
    """
    X = get_layer_matrix(container, assay_name, base_layer)
    y_bat = get_obs_labels(container, batch_key)
    y_trt = get_obs_labels(container, trt_key) if trt_key is not None else None

    result = plsda_batch(
        X,
        y_trt,
        y_bat,
        ncomp_trt=ncomp_trt,
        ncomp_bat=ncomp_bat,
        keepx_trt=keepx_trt,
        keepx_bat=keepx_bat,
        balance=balance,
        max_iter=max_iter,
        tol=tol,
        near_zero_var=near_zero_var,
    )

    layer_name = new_layer_name or "plsda_batch"
    container.assays[assay_name].add_layer(layer_name, DataMatrix(X=result.X_nobatch))
    container.log_operation(
        action="integration_plsda_batch",
        params={
            "assay": assay_name,
            "base_layer": base_layer,
            "new_layer_name": layer_name,
            "batch_key": batch_key,
            "trt_key": trt_key,
            **result.params,
            "explained_variance_bat": result.explained_variance_bat["Y"].tolist(),
        },
        description=f"PLSDA-batch correction of layer '{base_layer}' -> '{layer_name}'.",
    )

    if return_result:
        return container, result
    return container
