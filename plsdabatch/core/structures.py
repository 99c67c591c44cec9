from __future__ import annotations

import copy
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

import numpy as np
import polars as pl
import scipy.sparse as sp

from plsdabatch.core.exceptions import DimensionError, ValidationError


@dataclass
class ProvenanceLog:
    """
    One entry of a container's processing history.
    """
    timestamp: str
    action: str
    params: Dict[str, Any]
    software_version: Optional[str] = None
    description: Optional[str] = None


@dataclass
class DataMatrix:
    """
    A single layer of values for one assay.

    Attributes:
        X (np.ndarray): Samples x variables matrix, e.g. raw counts, CLR
                        abundances, percentile scores or a batch-corrected
                        table. Sparse input is densified and integer input
                        is cast to float64.
    """
    X: Union[np.ndarray, sp.spmatrix]

    def __post_init__(self):
        values = self.X.toarray() if sp.issparse(self.X) else np.asarray(self.X)
        if values.ndim != 2:
            raise DimensionError(
                f"DataMatrix expects a 2-D array, got {values.ndim} dimension(s).",
                expected=2,
                actual=values.ndim,
                field="X",
            )
        if not np.issubdtype(values.dtype, np.floating):
            values = values.astype(np.float64)
        self.X = values

    @property
    def shape(self) -> tuple[int, int]:
        return self.X.shape

    def copy(self) -> DataMatrix:
        return DataMatrix(X=self.X.copy())


def _check_unique_ids(table: pl.DataFrame, id_col: str, what: str) -> None:
    if id_col not in table.columns:
        raise ValidationError(f"{what} ID column '{id_col}' not found.", field=id_col)
    if table[id_col].n_unique() != table.height:
        raise ValidationError(f"{what} ID column '{id_col}' is not unique.", field=id_col)


class Assay:
    """
    The variables of one feature space (e.g. OTUs or genera) together
    with every layer measured on them.
    """
    def __init__(
        self,
        var: pl.DataFrame,
        layers: Optional[Dict[str, DataMatrix]] = None,
        feature_id_col: str = "_index"
    ):
        """
        Args:
            var (pl.DataFrame): Variable annotations, one row per variable,
                                with unique IDs in ``feature_id_col``.
            layers (Dict[str, DataMatrix], optional): Named layers, each with
                                one column per row of ``var``.
            feature_id_col (str): ID column of ``var``. Defaults to "_index".
        """
        _check_unique_ids(var, feature_id_col, "Feature")
        self.feature_id_col = feature_id_col
        self.var: pl.DataFrame = var
        self.layers: Dict[str, DataMatrix] = {}
        for name, matrix in (layers or {}).items():
            self.add_layer(name, matrix)

    @property
    def n_features(self) -> int:
        return self.var.height

    @property
    def feature_ids(self) -> pl.Series:
        return self.var[self.feature_id_col]

    def list_layers(self) -> List[str]:
        return list(self.layers)

    def add_layer(self, name: str, matrix: DataMatrix) -> None:
        """
        Store ``matrix`` under ``name``, replacing any layer of that name.
        """
        n_cols = matrix.X.shape[1]
        if n_cols != self.n_features:
            raise DimensionError(
                f"Feature dimension mismatch in layer '{name}': "
                f"{n_cols} columns for {self.n_features} variables.",
                expected=self.n_features,
                actual=n_cols,
                field=name,
            )
        self.layers[name] = matrix

    def subset(self, feature_indices: Union[List[int], np.ndarray], copy_data: bool = True) -> Assay:
        """
        Assay restricted to the given variables.

        Args:
            feature_indices: Positions of the variables to keep.
            copy_data: Copy the layer values instead of viewing them.
        """
        idx = np.asarray(feature_indices, dtype=np.int64)
        layers = {}
        for name, matrix in self.layers.items():
            values = matrix.X[:, idx]
            layers[name] = DataMatrix(X=values.copy() if copy_data else values)
        return Assay(var=self.var[idx.tolist(), :], layers=layers, feature_id_col=self.feature_id_col)

    def __repr__(self) -> str:
        return f"<Assay n_features={self.n_features}, layers={self.list_layers()}>"


class MicrobiomeContainer:
    """
    Sample metadata (treatment, batch, ...) plus the assays measured on
    those samples and the history of operations applied to them.
    """
    def __init__(
        self,
        obs: pl.DataFrame,
        assays: Optional[Dict[str, Assay]] = None,
        history: Optional[List[ProvenanceLog]] = None,
        sample_id_col: str = "_index"
    ):
        """
        Args:
            obs (pl.DataFrame): Sample metadata, one row per sample, with
                                unique IDs in ``sample_id_col``.
            assays (Dict[str, Assay], optional): Named assays; every layer
                                must have one row per sample.
            history (List[ProvenanceLog], optional): Previous operations.
            sample_id_col (str): ID column of ``obs``. Defaults to "_index".
        """
        _check_unique_ids(obs, sample_id_col, "Sample")
        self.sample_id_col = sample_id_col
        self.obs: pl.DataFrame = obs
        self.assays: Dict[str, Assay] = {}
        self.history: List[ProvenanceLog] = list(history) if history is not None else []
        for name, assay in (assays or {}).items():
            self._check_rows(name, assay)
            self.assays[name] = assay

    @property
    def n_samples(self) -> int:
        return self.obs.height

    @property
    def sample_ids(self) -> pl.Series:
        return self.obs[self.sample_id_col]

    def _check_rows(self, assay_name: str, assay: Assay) -> None:
        for layer_name, matrix in assay.layers.items():
            n_rows = matrix.X.shape[0]
            if n_rows != self.n_samples:
                raise DimensionError(
                    f"Sample dimension mismatch in assay '{assay_name}', layer '{layer_name}': "
                    f"{n_rows} rows for {self.n_samples} samples.",
                    expected=self.n_samples,
                    actual=n_rows,
                    field=layer_name,
                )

    def list_assays(self) -> List[str]:
        return list(self.assays)

    def add_assay(self, name: str, assay: Assay) -> None:
        """
        Register ``assay`` under a new name.
        """
        if name in self.assays:
            raise ValidationError(f"Assay '{name}' already exists.", field="name")
        self._check_rows(name, assay)
        self.assays[name] = assay

    def log_operation(
        self,
        action: str,
        params: Dict[str, Any],
        description: Optional[str] = None,
        software_version: Optional[str] = None,
    ):
        """
        Append an entry to the history. The package version is recorded
        unless ``software_version`` is given.
        """
        if software_version is None:
            from plsdabatch import __version__ as software_version

        self.history.append(
            ProvenanceLog(
                timestamp=datetime.now().isoformat(),
                action=action,
                params=params,
                software_version=software_version,
                description=description,
            )
        )

    def copy(self, deep: bool = True) -> MicrobiomeContainer:
        """
        Copy the container. A shallow copy shares the assays; a deep copy
        duplicates obs, every layer and the history.
        """
        if not deep:
            return MicrobiomeContainer(
                obs=self.obs,
                assays=dict(self.assays),
                history=self.history,
                sample_id_col=self.sample_id_col,
            )

        assays = {
            name: assay.subset(np.arange(assay.n_features), copy_data=True)
            for name, assay in self.assays.items()
        }
        return MicrobiomeContainer(
            obs=self.obs.clone(),
            assays=assays,
            history=copy.deepcopy(self.history),
            sample_id_col=self.sample_id_col,
        )

    def __repr__(self) -> str:
        assays = ", ".join(f"{name}({assay.n_features})" for name, assay in self.assays.items())
        return f"<MicrobiomeContainer n_samples={self.n_samples}, assays=[{assays}]>"
