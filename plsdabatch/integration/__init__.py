"""Batch effect correction for microbiome data.

Available Methods
-----------------
- plsda_batch / integrate_plsda_batch: PLSDA-batch correction, dense or
  sparse, optionally weighted for unbalanced designs
- percentile_norm / integrate_percentile: percentile normalisation against
  the control samples of each batch
- plsda: the (sparse) PLS-DA building block

Examples
--------
>>> from plsdabatch.integration import integrate_plsda_batch, integrate_percentile
>>>
>>> container = integrate_plsda_batch(container, batch_key="batch", trt_key="trt",
...                                   ncomp_trt=1, ncomp_bat=4)
>>> container = integrate_percentile(container, batch_key="batch", trt_key="trt",
...                                  ctrl_grp="0-0.5")

References
----------
- PLSDA-batch: Wang & Lê Cao. Briefings in Bioinformatics (2023)
- Percentile normalisation: Gibbons et al. PLoS Computational Biology (2018)
"""

from plsdabatch.integration.percentile import (
    integrate_percentile,
    percentile_norm,
    percentile_score,
)
from plsdabatch.integration.plsda import (
    PLSDAResult,
    deflate_matrix,
    explained_variance,
    plsda,
)
from plsdabatch.integration.plsda_batch import (
    PLSDABatchResult,
    design_weights,
    integrate_plsda_batch,
    plsda_batch,
)

__all__ = [
    "plsda_batch",
    "integrate_plsda_batch",
    "PLSDABatchResult",
    "design_weights",
    "percentile_norm",
    "percentile_score",
    "integrate_percentile",
    "plsda",
    "PLSDAResult",
    "deflate_matrix",
    "explained_variance",
]
