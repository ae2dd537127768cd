"""Utility functions for morphnorm.

Provides statistical helpers and unit-of-work dispatch used across modules.
"""

from .stats import (
    MAD_SCALE,
    glog,
    mad,
    nan_median,
    nan_quantile,
    robust_location_spread,
    robust_zscore,
)
from .parallel import run_units

__all__ = [
    "MAD_SCALE",
    "glog",
    "mad",
    "nan_median",
    "nan_quantile",
    "robust_location_spread",
    "robust_zscore",
    "run_units",
]
