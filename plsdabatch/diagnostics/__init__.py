"""Diagnostics for detecting batch effects.

Supported models:
    - linear model: treatment + one or two fixed batch effects
    - linear mixed model: treatment (+ fixed batches) + random batch intercept
"""

from plsdabatch.diagnostics.regression import (
    LINEAR_MIXED_MODEL,
    LINEAR_MODEL,
    P_ADJUST_METHODS,
    LinearRegresResult,
    ModelType,
    adjust_pvalues,
    linear_regres,
    regress_batch_effects,
)

__all__ = [
    "linear_regres",
    "regress_batch_effects",
    "adjust_pvalues",
    "LinearRegresResult",
    "ModelType",
    "LINEAR_MODEL",
    "LINEAR_MIXED_MODEL",
    "P_ADJUST_METHODS",
]
