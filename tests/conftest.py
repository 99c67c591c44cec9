"""Shared pytest fixtures for plsdabatch tests.

Fixtures provide seeded abundance matrices with known batch and treatment
structure, label vectors and containers.
"""

import numpy as np
import polars as pl
import pytest

from plsdabatch.core import Assay, DataMatrix, MicrobiomeContainer
from plsdabatch.datasets import load_ad_like_example


def make_batch_data(
    n_per_cell: int = 4,
    n_batches: int = 3,
    n_trt: int = 2,
    n_features: int = 40,
    batch_shift: float = 3.0,
    trt_shift: float = 2.0,
    seed: int = 0,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Balanced design with additive batch and treatment shifts.

    Returns
    -------
    X, trt, batch
        Matrix of shape (n_per_cell * n_batches * n_trt, n_features) and
        the string labels of every row.
    """
    rng = np.random.default_rng(seed)
    batch = np.repeat([f"b{i}" for i in range(n_batches)], n_per_cell * n_trt)
    trt = np.tile(np.repeat([f"t{k}" for k in range(n_trt)], n_per_cell), n_batches)

    _, batch_codes = np.unique(batch, return_inverse=True)
    _, trt_codes = np.unique(trt, return_inverse=True)

    batch_effect = rng.normal(0.0, batch_shift, (n_batches, n_features))
    trt_effect = rng.normal(0.0, trt_shift, (n_trt, n_features))
    trt_effect[:, n_features // 2:] = 0.0

    X = rng.normal(0.0, 0.5, (batch.shape[0], n_features))
    X += batch_effect[batch_codes] + trt_effect[trt_codes]
    return X, trt, batch


@pytest.fixture
def batch_data():
    """Balanced 3 batch x 2 treatment design, 24 samples x 40 variables."""
    return make_batch_data()


@pytest.fixture
def ad_container() -> MicrobiomeContainer:
    """Synthetic AD-like container (75 x 231, 5 batches, 2 treatments)."""
    return load_ad_like_example()


@pytest.fixture
def small_container(batch_data) -> MicrobiomeContainer:
    """Container wrapping ``batch_data`` in assay 'microbe', layer 'clr'."""
    X, trt, batch = batch_data
    obs = pl.DataFrame(
        {
            "_index": [f"S{i}" for i in range(X.shape[0])],
            "batch": batch.tolist(),
            "trt": trt.tolist(),
        }
    )
    var = pl.DataFrame({"_index": [f"OTU{j}" for j in range(X.shape[1])]})
    assay = Assay(var=var, layers={"clr": DataMatrix(X=X)})
    return MicrobiomeContainer(obs=obs, assays={"microbe": assay})


@pytest.fixture
def make_data():
    """Factory fixture exposing :func:`make_batch_data`."""
    return make_batch_data
