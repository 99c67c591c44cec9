"""Per-variable linear regression diagnostics for batch effects.

For every variable two nested models are fitted: treatment only, and
treatment plus batch (as fixed effects, or as a random intercept in a linear
mixed model). Comparing their fit statistics shows whether batch terms are
needed to describe the data.

Reference
---------
Lüdecke D, et al. performance: An R package for assessment, comparison and
testing of statistical models. Journal of Open Source Software (2021).
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import numpy as np
import polars as pl
import statsmodels.api as sm
from statsmodels.stats.multitest import multipletests

from plsdabatch.core.exceptions import ValidationError
from plsdabatch.core.structures import MicrobiomeContainer
from plsdabatch.core.validation import (
    LabelLike,
    as_abundance_matrix,
    as_labels,
    encode_labels,
    get_layer_matrix,
    get_obs_labels,
)

LINEAR_MODEL = "linear model"
LINEAR_MIXED_MODEL = "linear mixed model"

# R p.adjust names -> statsmodels multipletests methods
P_ADJUST_METHODS: dict[str, str | None] = {
    "holm": "holm",
    "hochberg": "simes-hochberg",
    "hommel": "hommel",
    "bonferroni": "bonferroni",
    "BH": "fdr_bh",
    "fdr": "fdr_bh",
    "BY": "fdr_by",
    "none": None,
}


class ModelType(Enum):
    """Batch terms of the full model."""

    FIXED_SINGLE_BATCH = "trt + batch_fix"
    FIXED_TWO_BATCH = "trt + batch_fix + batch_fix2"
    RANDOM_BATCH = "trt [+ batch_fix [+ batch_fix2]] + (1 | batch_random)"


@dataclass(frozen=True)
class LinearRegresResult:
    """
    Result container for per-variable regression diagnostics.

    Every goodness-of-fit table is a ``pl.DataFrame`` with columns
    ``feature``, ``trt_only`` and ``trt_batch`` (model without and with
    batch terms).

    Attributes
    ----------
    type : str
        ``"linear model"`` or ``"linear mixed model"``.
    model_type : ModelType
        Batch terms used in the full model.
    feature_ids : np.ndarray
        Variable names.
    models : list
        Fitted full model of every variable (statsmodels results).
    raw_p, adj_p : np.ndarray
        P-value of the treatment effect in the full model, raw and adjusted.
    p_adjust_method : str
        Multiple-testing correction used.
    r2, adj_r2 : pl.DataFrame or None
        R2 and adjusted R2 (linear model only).
    cond_r2, marg_r2 : pl.DataFrame or None
        Conditional and marginal R2 (linear mixed model only).
    rmse, rse, aic, bic : pl.DataFrame
        Root mean squared error, residual standard error, AIC and BIC.
    """

    type: str
    model_type: ModelType
    feature_ids: np.ndarray
    models: list
    raw_p: np.ndarray
    adj_p: np.ndarray
    p_adjust_method: str
    r2: pl.DataFrame | None
    adj_r2: pl.DataFrame | None
    cond_r2: pl.DataFrame | None
    marg_r2: pl.DataFrame | None
    rmse: pl.DataFrame
    rse: pl.DataFrame
    aic: pl.DataFrame
    bic: pl.DataFrame
    params: dict[str, Any] = field(default_factory=dict)

    def to_dataframe(self) -> pl.DataFrame:
        """
        Flatten all statistics into one table, one row per variable.

        Returns
        -------
        pl.DataFrame
            Columns ``feature``, ``raw_p``, ``adj_p`` and
            ``<stat>_trt_only`` / ``<stat>_trt_batch`` for every available
            statistic.
        """
        df = pl.DataFrame(
            {"feature": self.feature_ids, "raw_p": self.raw_p, "adj_p": self.adj_p}
        )
        tables = {
            "r2": self.r2,
            "adj_r2": self.adj_r2,
            "cond_r2": self.cond_r2,
            "marg_r2": self.marg_r2,
            "rmse": self.rmse,
            "rse": self.rse,
            "aic": self.aic,
            "bic": self.bic,
        }
        for name, table in tables.items():
            if table is None:
                continue
            df = df.with_columns(
                table["trt_only"].alias(f"{name}_trt_only"),
                table["trt_batch"].alias(f"{name}_trt_batch"),
            )
        return df

    def better_with_batch(self, criterion: str = "aic") -> np.ndarray:
        """Boolean mask of variables whose full model has the lower AIC/BIC."""
        if criterion not in ("aic", "bic"):
            raise ValidationError(
                f"Unknown criterion '{criterion}'. Use 'aic' or 'bic'.", field="criterion"
            )
        table = getattr(self, criterion)
        return (table["trt_batch"] < table["trt_only"]).to_numpy()


def adjust_pvalues(p_values: np.ndarray, method: str = "fdr") -> np.ndarray:
    """
    Adjust p-values for multiple comparisons.

    Parameters
    ----------
    p_values : np.ndarray
        Raw p-values; NaN entries are kept as NaN and not counted.
    method : str, default="fdr"
        One of "holm", "hochberg", "hommel", "bonferroni", "BH", "BY",
        "fdr" (same as "BH") or "none".

    Returns
    -------
    np.ndarray
        Adjusted p-values.
    """
    if method not in P_ADJUST_METHODS:
        raise ValidationError(
            f"Unknown p-value adjustment method: {method}. "
            f"Use one of {list(P_ADJUST_METHODS)}.",
            field="p_adjust_method",
        )

    p_values = np.asarray(p_values, dtype=np.float64)
    sm_method = P_ADJUST_METHODS[method]
    if sm_method is None:
        return p_values.copy()

    result = np.full_like(p_values, np.nan)
    valid = ~np.isnan(p_values)
    if valid.any():
        result[valid] = multipletests(p_values[valid], method=sm_method)[1]
    return result


def _dummies(labels: np.ndarray) -> np.ndarray:
    """Treatment contrasts: indicator columns of every level but the first."""
    levels, codes = encode_labels(labels)
    D = np.zeros((codes.shape[0], levels.shape[0] - 1))
    rows = np.flatnonzero(codes > 0)
    D[rows, codes[rows] - 1] = 1.0
    return D


def _information_criteria(llf: float, n_params: int, n_obs: int) -> tuple[float, float]:
    # n_params includes the residual variance, as R's logLik does
    aic = -2.0 * llf + 2.0 * n_params
    bic = -2.0 * llf + np.log(n_obs) * n_params
    return aic, bic


def _resolve_model_type(
    model_type: str,
    batch_fix: np.ndarray | None,
    batch_fix2: np.ndarray | None,
    batch_random: np.ndarray | None,
) -> ModelType:
    if model_type == LINEAR_MODEL:
        if batch_fix is None:
            raise ValidationError("'batch_fix' should be provided.", field="batch_fix")
        return ModelType.FIXED_TWO_BATCH if batch_fix2 is not None else ModelType.FIXED_SINGLE_BATCH
    if model_type == LINEAR_MIXED_MODEL:
        if batch_random is None:
            raise ValidationError("'batch_random' should be provided.", field="batch_random")
        return ModelType.RANDOM_BATCH
    raise ValidationError(
        f"Unknown model type '{model_type}'. Use '{LINEAR_MODEL}' or '{LINEAR_MIXED_MODEL}'.",
        field="model_type",
    )


def linear_regres(
    data: Any,
    trt: LabelLike,
    batch_fix: LabelLike | None = None,
    batch_fix2: LabelLike | None = None,
    batch_random: LabelLike | None = None,
    model_type: str = LINEAR_MODEL,
    p_adjust_method: str = "fdr",
    feature_names: Sequence[str] | None = None,
) -> LinearRegresResult:
    """
    Fit per-variable linear (mixed) models with treatment and batch effects.

    Parameters
    ----------
    data : array-like or pl.DataFrame, shape (n_samples, n_variables)
        Response variables, samples as rows.
    trt : sequence, np.ndarray or pl.Series
        Treatment label per sample.
    batch_fix : sequence, optional
        Batch label treated as a fixed effect. Required for the linear model.
    batch_fix2 : sequence, optional
        Second batch label treated as a fixed effect.
    batch_random : sequence, optional
        Batch label treated as a random intercept. Required for the linear
        mixed model.
    model_type : str, default="linear model"
        ``"linear model"`` or ``"linear mixed model"``.
    p_adjust_method : str, default="fdr"
        Multiple-testing correction, see :func:`adjust_pvalues`.
    feature_names : sequence of str, optional
        Variable names. Taken from the columns of a ``pl.DataFrame`` input,
        ``var_<j>`` otherwise.

    Returns
    -------
    LinearRegresResult
        Fitted models, p-values and goodness-of-fit tables.

    Raises
    ------
    ValidationError
        If a required batch vector is missing, or ``model_type`` /
        ``p_adjust_method`` is unknown.
    DimensionError
        If a label vector is not aligned with the rows of ``data``.

    Notes
    -----
    The mixed model is fitted by REML (statsmodels ``MixedLM``) and the
    treatment p-value comes from its Wald z statistic, which assumes a
    normal reference distribution. lmerTest uses a Satterthwaite t test
    instead, so on small designs (few batches or samples) the mixed-model
    p-values here are smaller than lmerTest's and will not match them.
    Linear model p-values are exact t tests and agree with ``lm``.
    Conditional and marginal R2 follow Nakagawa & Schielzeth (2013).
    """
    if feature_names is None and isinstance(data, pl.DataFrame):
        feature_names = data.columns
    X = as_abundance_matrix(data, name="data")
    n_samples, n_variables = X.shape

    if feature_names is None:
        feature_ids = np.array([f"var_{j}" for j in range(n_variables)])
    else:
        feature_ids = np.asarray(list(feature_names))
        if feature_ids.shape[0] != n_variables:
            raise ValidationError(
                f"Got {feature_ids.shape[0]} feature names for {n_variables} variables.",
                field="feature_names",
            )

    trt = as_labels(trt, n_samples, "trt")
    batch_fix = as_labels(batch_fix, n_samples, "batch_fix") if batch_fix is not None else None
    batch_fix2 = as_labels(batch_fix2, n_samples, "batch_fix2") if batch_fix2 is not None else None
    batch_random = (
        as_labels(batch_random, n_samples, "batch_random") if batch_random is not None else None
    )
    kind = _resolve_model_type(model_type, batch_fix, batch_fix2, batch_random)
    if p_adjust_method not in P_ADJUST_METHODS:
        raise ValidationError(
            f"Unknown p-value adjustment method: {p_adjust_method}. "
            f"Use one of {list(P_ADJUST_METHODS)}.",
            field="p_adjust_method",
        )

    if encode_labels(trt)[0].shape[0] < 2:
        raise ValidationError("trt must contain at least 2 treatment levels.", field="trt")

    intercept = np.ones((n_samples, 1))
    exog_trt = np.hstack([intercept, _dummies(trt)])
    blocks = [exog_trt]
    if batch_fix is not None:
        blocks.append(_dummies(batch_fix))
        if batch_fix2 is not None:
            blocks.append(_dummies(batch_fix2))
    exog_full = np.hstack(blocks)

    models: list = []
    raw_p = np.full(n_variables, np.nan)
    stats = {
        name: np.full((n_variables, 2), np.nan)
        for name in ("r2", "adj_r2", "cond_r2", "marg_r2", "rmse", "rse", "aic", "bic")
    }

    for j in range(n_variables):
        y = X[:, j]
        fit0 = sm.OLS(y, exog_trt).fit()
        aic0, bic0 = _information_criteria(fit0.llf, exog_trt.shape[1] + 1, n_samples)
        stats["rmse"][j, 0] = np.sqrt(np.mean(fit0.resid**2))
        stats["rse"][j, 0] = np.sqrt(fit0.mse_resid)
        stats["aic"][j, 0] = aic0
        stats["bic"][j, 0] = bic0

        if kind is ModelType.RANDOM_BATCH:
            fit = sm.MixedLM(y, exog_full, groups=batch_random).fit(reml=True)
            fe = np.asarray(fit.fe_params)
            var_fixed = np.var(exog_full @ fe, ddof=1)
            var_random = float(np.asarray(fit.cov_re).ravel()[0])
            var_resid = float(fit.scale)
            total = var_fixed + var_random + var_resid

            stats["cond_r2"][j] = (fit0.rsquared, (var_fixed + var_random) / total)
            stats["marg_r2"][j] = (fit0.rsquared, var_fixed / total)
            stats["rse"][j, 1] = np.sqrt(var_resid)
            n_params = exog_full.shape[1] + 2
        else:
            fit = sm.OLS(y, exog_full).fit()
            stats["r2"][j] = (fit0.rsquared, fit.rsquared)
            stats["adj_r2"][j] = (fit0.rsquared_adj, fit.rsquared_adj)
            stats["rse"][j, 1] = np.sqrt(fit.mse_resid)
            n_params = exog_full.shape[1] + 1

        raw_p[j] = np.asarray(fit.pvalues)[1]
        stats["rmse"][j, 1] = np.sqrt(np.mean(np.asarray(fit.resid) ** 2))
        stats["aic"][j, 1], stats["bic"][j, 1] = _information_criteria(
            fit.llf, n_params, n_samples
        )
        models.append(fit)

    def _table(name: str) -> pl.DataFrame:
        return pl.DataFrame(
            {
                "feature": feature_ids,
                "trt_only": stats[name][:, 0],
                "trt_batch": stats[name][:, 1],
            }
        )

    is_lm = kind is not ModelType.RANDOM_BATCH
    return LinearRegresResult(
        type=model_type,
        model_type=kind,
        feature_ids=feature_ids,
        models=models,
        raw_p=raw_p,
        adj_p=adjust_pvalues(raw_p, method=p_adjust_method),
        p_adjust_method=p_adjust_method,
        r2=_table("r2") if is_lm else None,
        adj_r2=_table("adj_r2") if is_lm else None,
        cond_r2=None if is_lm else _table("cond_r2"),
        marg_r2=None if is_lm else _table("marg_r2"),
        rmse=_table("rmse"),
        rse=_table("rse"),
        aic=_table("aic"),
        bic=_table("bic"),
        params={
            "n_samples": n_samples,
            "n_variables": n_variables,
            "batch_fix2": batch_fix2 is not None,
        },
    )


def regress_batch_effects(
    container: MicrobiomeContainer,
    trt_key: str,
    batch_fix_key: str | None = None,
    batch_fix2_key: str | None = None,
    batch_random_key: str | None = None,
    model_type: str = LINEAR_MODEL,
    p_adjust_method: str = "fdr",
    assay_name: str = "microbe",
    layer_name: str = "clr",
) -> LinearRegresResult:
    """
    Run :func:`linear_regres` on a container layer.

    Parameters
    ----------
    container : MicrobiomeContainer
        Input container.
    trt_key : str
        Column name in obs containing treatment labels.
    batch_fix_key, batch_fix2_key, batch_random_key : str, optional
        Columns in obs with the fixed / second fixed / random batch labels.
    model_type : str, default="linear model"
        ``"linear model"`` or ``"linear mixed model"``.
    p_adjust_method : str, default="fdr"
        Multiple-testing correction.
    assay_name : str, default="microbe"
        Assay to analyse.
    layer_name : str, default="clr"
        Layer to analyse.

    Returns
    -------
    LinearRegresResult
        Per-variable statistics, with the assay's feature IDs.
    """
    X = get_layer_matrix(container, assay_name, layer_name)
    assay = container.assays[assay_name]

    def _labels(key: str | None):
        return get_obs_labels(container, key) if key is not None else None

    result = linear_regres(
        X,
        get_obs_labels(container, trt_key),
        batch_fix=_labels(batch_fix_key),
        batch_fix2=_labels(batch_fix2_key),
        batch_random=_labels(batch_random_key),
        model_type=model_type,
        p_adjust_method=p_adjust_method,
        feature_names=assay.feature_ids.cast(pl.String).to_list(),
    )

    container.log_operation(
        action="diagnostics_linear_regres",
        params={
            "assay": assay_name,
            "layer": layer_name,
            "trt_key": trt_key,
            "batch_fix_key": batch_fix_key,
            "batch_fix2_key": batch_fix2_key,
            "batch_random_key": batch_random_key,
            "model_type": model_type,
            "p_adjust_method": p_adjust_method,
        },
        description=f"Per-variable {model_type} on layer '{layer_name}'.",
    )
    return result
