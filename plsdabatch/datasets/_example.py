"""Synthetic example datasets for plsdabatch.

The generator mimics a case-control microbiome study processed in several
batches: counts are drawn from a log-normal Poisson model with treatment and
batch shifts on separate subsets of variables, then CLR transformed.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
import polars as pl

from plsdabatch.core.exceptions import ParameterRangeError
from plsdabatch.core.structures import Assay, DataMatrix, MicrobiomeContainer

if TYPE_CHECKING:
    from collections.abc import Sequence

# Constants for data generation
_BASE_LOG_MEAN = 3.0
_BASE_LOG_STD = 1.5
_NOISE_STD = 0.4
_TRT_SHIFT = 1.5
_BATCH_SHIFT_STD = 1.2
_PSEUDO_COUNT = 1.0


def clr_transform(counts: np.ndarray, pseudo_count: float = _PSEUDO_COUNT) -> np.ndarray:
    """Centred log-ratio transform of a samples x variables count matrix."""
    log_x = np.log(counts + pseudo_count)
    return log_x - log_x.mean(axis=1, keepdims=True)


def load_ad_like_example(
    n_samples: int = 75,
    n_features: int = 231,
    n_batches: int = 5,
    trt_levels: Sequence[str] = ("0-0.5", "1-2"),
    trt_fraction: float = 0.6,
    batch_fraction: float = 0.5,
    seed: int = 42,
) -> MicrobiomeContainer:
    """
    Generate a synthetic case-control dataset shaped like the anaerobic
    digestion example (75 samples, 231 filtered variables, 5 batches,
    2 treatments).

    Parameters
    ----------
    n_samples : int, default=75
        Number of samples.
    n_features : int, default=231
        Number of microbial variables.
    n_batches : int, default=5
        Number of processing batches (equal sizes up to rounding).
    trt_levels : sequence of str, default=("0-0.5", "1-2")
        Treatment labels; the first one is the control group.
    trt_fraction : float, default=0.6
        Fraction of variables shifted by the treatment.
    batch_fraction : float, default=0.5
        Fraction of variables shifted by each batch.
    seed : int, default=42
        Seed of the ``numpy.random.Generator`` used for every draw.

    Returns
    -------
    MicrobiomeContainer
        Container with obs columns ``batch`` and ``trt`` and an assay
        ``"microbe"`` holding the ``"counts"`` and ``"clr"`` layers.

    Examples
    --------
    >>> container = load_ad_like_example()
    >>> container.assays["microbe"].layers["clr"].X.shape
    (75, 231)
    """
    trt_levels = list(trt_levels)
    if n_batches < 2 or n_batches > n_samples:
        raise ParameterRangeError(
            f"n_batches must lie in [2, n_samples], got {n_batches}.",
            parameter="n_batches",
            value=n_batches,
        )
    if len(trt_levels) < 2 or n_samples < n_batches * len(trt_levels):
        raise ParameterRangeError(
            "Every batch needs at least one sample of each treatment level.",
            parameter="n_samples",
            value=n_samples,
        )

    rng = np.random.default_rng(seed)

    batch_codes = np.sort(np.arange(n_samples) % n_batches)
    trt_codes = np.empty(n_samples, dtype=np.int64)
    for b in range(n_batches):
        rows = np.flatnonzero(batch_codes == b)
        # treatment proportions differ between batches, every cell non-empty
        codes = np.arange(rows.size) % len(trt_levels)
        n_extra = rng.integers(0, max(1, rows.size // 4))
        codes[rows.size - n_extra:] = 0
        codes[: len(trt_levels)] = np.arange(len(trt_levels))
        trt_codes[rows] = rng.permutation(codes)

    base = rng.normal(_BASE_LOG_MEAN, _BASE_LOG_STD, n_features)
    log_mu = np.tile(base, (n_samples, 1))

    trt_vars = rng.random(n_features) < trt_fraction
    trt_effect = rng.normal(0.0, _TRT_SHIFT, (len(trt_levels), n_features)) * trt_vars
    trt_effect[0] = 0.0
    log_mu += trt_effect[trt_codes]

    batch_effect = rng.normal(0.0, _BATCH_SHIFT_STD, (n_batches, n_features))
    batch_effect *= rng.random((n_batches, n_features)) < batch_fraction
    log_mu += batch_effect[batch_codes]

    log_mu += rng.normal(0.0, _NOISE_STD, log_mu.shape)
    counts = rng.poisson(np.exp(log_mu)).astype(np.float64)

    obs = pl.DataFrame(
        {
            "_index": [f"sample_{i}" for i in range(n_samples)],
            "batch": [f"batch_{b + 1}" for b in batch_codes],
            "trt": [trt_levels[k] for k in trt_codes],
        }
    )
    var = pl.DataFrame(
        {
            "_index": [f"OTU_{j}" for j in range(n_features)],
            "trt_associated": trt_vars,
        }
    )
    assay = Assay(
        var=var,
        layers={
            "counts": DataMatrix(X=counts),
            "clr": DataMatrix(X=clr_transform(counts)),
        },
    )
    return MicrobiomeContainer(obs=obs, assays={"microbe": assay})
