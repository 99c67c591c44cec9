"""(Sparse) PLS discriminant analysis used by PLSDA-batch.

Components are extracted one at a time with the NIPALS algorithm and both
blocks are deflated in regression mode. Each loading vector can be made
sparse by L1 soft-thresholding down to ``keepx`` variables.

Reference
---------
Lê Cao K-A, Boitard S, Besse P. Sparse PLS discriminant analysis:
biologically relevant feature selection and graphical displays for
multiclass problems. BMC Bioinformatics (2011).
"""

from __future__ import annotations

import warnings
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

import numpy as np
from scipy.stats import rankdata

from plsdabatch.core.exceptions import ParameterRangeError, ValidationError
from plsdabatch.core.validation import encode_labels


@dataclass(frozen=True)
class PLSDAResult:
    """
    Fitted PLS-DA components.

    Attributes
    ----------
    loadings : np.ndarray
        X loading vectors ``a_h``, shape (n_variables, ncomp), unit norm.
    variates : np.ndarray
        X variates ``t_h``, shape (n_samples, ncomp), mutually orthogonal.
    y_loadings : np.ndarray
        Y loading vectors ``b_h``, shape (n_outcomes, ncomp).
    y_variates : np.ndarray
        Y variates ``u_h = Y_h b_h``, shape (n_samples, ncomp). Not
        orthogonal in general.
    X_deflated : np.ndarray
        X after removing all fitted components.
    explained_variance : dict[str, np.ndarray]
        Proportion of the variance of the input ``"X"`` block captured by
        each X variate and of the ``"Y"`` block captured by each Y variate.
        The ``"X"`` proportions sum to at most 1. The ``"Y"`` proportions
        reach 1 once the components span the outcome block (``K - 1``
        components for ``K`` dummy-coded levels); further components can
        push their sum slightly above 1.
    n_iter : np.ndarray
        NIPALS iterations used per component.
    keepx : np.ndarray
        Number of variables allowed per component.
    """

    loadings: np.ndarray
    variates: np.ndarray
    y_loadings: np.ndarray
    y_variates: np.ndarray
    X_deflated: np.ndarray
    explained_variance: dict[str, np.ndarray]
    n_iter: np.ndarray
    keepx: np.ndarray
    params: dict[str, Any] = field(default_factory=dict)

    @property
    def ncomp(self) -> int:
        return self.loadings.shape[1]

    def selected_variables(self, comp: int) -> np.ndarray:
        """Indices of variables with a non-zero loading on component ``comp`` (0-based)."""
        return np.flatnonzero(self.loadings[:, comp])


def dummy_matrix(labels: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Indicator matrix with one column per (sorted) label level."""
    levels, codes = encode_labels(np.asarray(labels))
    Y = np.zeros((codes.shape[0], levels.shape[0]), dtype=np.float64)
    Y[np.arange(codes.shape[0]), codes] = 1.0
    return levels, Y


def scale_columns(
    M: np.ndarray, weights: np.ndarray | None = None
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Centre and scale columns to unit (sample) standard deviation.

    With ``weights`` the weighted mean and weighted standard deviation are
    used instead. Constant columns are only centred (their scale is set to 1).

    Returns
    -------
    scaled, center, scale
    """
    n = M.shape[0]
    if weights is None:
        center = M.mean(axis=0)
        scale = M.std(axis=0, ddof=1) if n > 1 else np.zeros(M.shape[1])
    else:
        w = weights / weights.sum()
        center = w @ M
        var = w @ (M - center) ** 2 * n / (n - 1)
        scale = np.sqrt(var)

    scale = np.where(scale > 0, scale, 1.0)
    return (M - center) / scale, center, scale


def soft_threshold(a: np.ndarray, keepx: int) -> np.ndarray:
    """L1 soft-thresholding that keeps the ``keepx`` largest entries of ``a``.

    The ``p - keepx`` entries of smallest magnitude are set to zero and the
    remaining ones are shrunk towards zero by the largest discarded magnitude.
    """
    n_drop = a.shape[0] - keepx
    if n_drop <= 0:
        return a

    abs_a = np.abs(a)
    ranks = rankdata(abs_a, method="max")
    drop = ranks <= n_drop
    if not drop.any():
        return a

    threshold = abs_a[drop].max()
    return np.where(drop, 0.0, np.sign(a) * (abs_a - threshold))


def deflate_matrix(X: np.ndarray, t: np.ndarray) -> np.ndarray:
    """Remove from ``X`` its projection on the variate ``t``."""
    t = t.reshape(-1, 1)
    return X - t @ (t.T @ X) / (t.T @ t)


def explained_variance(data: np.ndarray, variates: np.ndarray) -> np.ndarray:
    """Proportion of the total variance of ``data`` explained by each variate.

    For component ``h``: ``||data' v_h||^2 / (v_h' v_h) / ||data||_F^2`` where
    ``v_h`` is the X variate ``t_h`` (X block) or the Y variate ``u_h``
    (outcome block). With orthogonal variates the proportions add up to at
    most 1.
    """
    total = np.sum(data**2)
    if total == 0:
        return np.zeros(variates.shape[1])

    cross = data.T @ variates
    norms = np.sum(variates**2, axis=0)
    norms = np.where(norms > 0, norms, np.inf)
    return np.sum(cross**2, axis=0) / norms / total


def resolve_keepx(keepx: int | Sequence[int] | None, ncomp: int, n_variables: int, name: str) -> np.ndarray:
    """Per-component variable counts; ``None`` means the dense (all variables) variant."""
    if keepx is None:
        return np.full(ncomp, n_variables, dtype=np.int64)

    if np.isscalar(keepx):
        values = np.full(ncomp, int(keepx), dtype=np.int64)
    else:
        values = np.asarray(list(keepx), dtype=np.int64)
        if values.shape != (ncomp,):
            raise ValidationError(
                f"'{name}' must provide one value per component ({ncomp}), got {values.size}.",
                field=name,
            )

    if values.min() < 1 or values.max() > n_variables:
        raise ParameterRangeError(
            f"'{name}' values must lie in [1, {n_variables}], got {values.tolist()}.",
            parameter=name,
            value=values.tolist(),
        )
    return values


def check_ncomp(ncomp: int, n_samples: int, n_variables: int, name: str = "ncomp") -> int:
    """Reject component counts above the rank bound ``min(n - 1, p)``."""
    max_comp = min(n_samples - 1, n_variables)
    if isinstance(ncomp, bool) or int(ncomp) != ncomp or ncomp < 1 or ncomp > max_comp:
        raise ParameterRangeError(
            f"'{name}' must be an integer in [1, {max_comp}] "
            f"(min(n_samples - 1, n_variables)), got {ncomp}.",
            parameter=name,
            value=ncomp,
        )
    return int(ncomp)


def _unit(v: np.ndarray, what: str, comp: int) -> np.ndarray:
    norm = np.sqrt(v @ v)
    if not np.isfinite(norm) or norm <= np.finfo(np.float64).eps:
        raise ValidationError(
            f"Component {comp + 1}: {what} vanished; the outcome has no covariance "
            "left with the predictors. Reduce the number of components.",
            field="ncomp",
        )
    return v / norm


def plsda(
    X: np.ndarray,
    Y: np.ndarray,
    ncomp: int,
    keepx: int | Sequence[int] | None = None,
    max_iter: int = 500,
    tol: float = 1e-6,
    weights: np.ndarray | None = None,
) -> PLSDAResult:
    """
    Fit (sparse) PLS-DA components of ``X`` against the outcome block ``Y``.

    Parameters
    ----------
    X : np.ndarray
        Centred and scaled predictors, shape (n_samples, n_variables).
    Y : np.ndarray
        Centred and scaled outcome block (e.g. dummy-coded labels), shape
        (n_samples, n_outcomes).
    ncomp : int
        Number of components, at most ``min(n_samples - 1, n_variables)``.
    keepx : int or sequence of int, optional
        Variables kept per component. None fits the dense model.
    max_iter : int, default=500
        Maximum NIPALS iterations per component.
    tol : float, default=1e-6
        Convergence tolerance on the squared change of the X loadings.
    weights : np.ndarray, optional
        Per-sample weights; rows of both blocks are multiplied by
        ``sqrt(weights)`` before fitting.

    Returns
    -------
    PLSDAResult
        Loadings, variates, deflated X and explained variance. With weights,
        variates and the deflated matrix are those of the weighted blocks.
    """
    X = np.asarray(X, dtype=np.float64)
    Y = np.asarray(Y, dtype=np.float64)
    if Y.ndim == 1:
        Y = Y.reshape(-1, 1)
    n_samples, n_variables = X.shape
    if Y.shape[0] != n_samples:
        raise ValidationError(
            f"X has {n_samples} rows but Y has {Y.shape[0]}.", field="Y"
        )

    ncomp = check_ncomp(ncomp, n_samples, n_variables)
    keepx_arr = resolve_keepx(keepx, ncomp, n_variables, "keepx")
    if max_iter < 1:
        raise ParameterRangeError(
            f"max_iter must be positive, got {max_iter}.", parameter="max_iter", value=max_iter
        )
    if tol <= 0:
        raise ParameterRangeError(f"tol must be positive, got {tol}.", parameter="tol", value=tol)

    if weights is not None:
        sw = np.sqrt(np.asarray(weights, dtype=np.float64)).reshape(-1, 1)
        X = X * sw
        Y = Y * sw

    loadings = np.zeros((n_variables, ncomp))
    y_loadings = np.zeros((Y.shape[1], ncomp))
    variates = np.zeros((n_samples, ncomp))
    y_variates = np.zeros((n_samples, ncomp))
    n_iter = np.zeros(ncomp, dtype=np.int64)

    X_h = X.copy()
    Y_h = Y.copy()
    for h in range(ncomp):
        U, _, Vt = np.linalg.svd(X_h.T @ Y_h, full_matrices=False)
        a_old = U[:, 0]
        u = Y_h @ Vt[0]

        converged = False
        for it in range(1, max_iter + 1):
            a = X_h.T @ u
            a = soft_threshold(a, int(keepx_arr[h]))
            a = _unit(a, "X loading", h)
            t = X_h @ a
            b = _unit(Y_h.T @ t, "Y loading", h)
            u = Y_h @ b
            n_iter[h] = it
            if np.sum((a - a_old) ** 2) < tol:
                converged = True
                break
            a_old = a

        if not converged:
            warnings.warn(
                f"PLS-DA component {h + 1} did not converge within {max_iter} iterations.",
                stacklevel=2,
            )

        loadings[:, h] = a
        y_loadings[:, h] = b
        variates[:, h] = t
        y_variates[:, h] = u
        X_h = deflate_matrix(X_h, t)
        Y_h = deflate_matrix(Y_h, t)

    return PLSDAResult(
        loadings=loadings,
        variates=variates,
        y_loadings=y_loadings,
        y_variates=y_variates,
        X_deflated=X_h,
        explained_variance={
            "X": explained_variance(X, variates),
            "Y": explained_variance(Y, y_variates),
        },
        n_iter=n_iter,
        keepx=keepx_arr,
        params={"ncomp": ncomp, "max_iter": max_iter, "tol": tol, "weighted": weights is not None},
    )
