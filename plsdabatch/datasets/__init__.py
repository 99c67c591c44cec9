"""Example datasets for plsdabatch tutorials and testing.

Available Datasets:
-------------------

1. **load_ad_like_example()** - Synthetic case-control study
   - 75 samples x 231 variables, 5 batches, 2 treatments
   - Raw counts and CLR-transformed layers
   - Unbalanced but fully crossed batch x treatment design

Example Usage:
--------------
>>> from plsdabatch.datasets import load_ad_like_example
>>> container = load_ad_like_example()
>>> print(container)
"""

from plsdabatch.datasets._example import clr_transform, load_ad_like_example

__all__ = [
    "load_ad_like_example",
    "clr_transform",
]
