"""Statistical utilities for morphnorm.

Provides the generalized logarithm, NaN-aware quantiles and the robust
location/spread estimators used by the normalization stages.
"""

from __future__ import annotations

from typing import Iterable, Tuple, Union

import numpy as np
from scipy.stats import median_abs_deviation

ArrayLike = Union[Iterable[float], np.ndarray]

# Makes the MAD a consistent estimator of the standard deviation under normality.
MAD_SCALE = 1.4826


def _to_array(values: ArrayLike) -> np.ndarray:
    if isinstance(values, np.ndarray):
        return values.astype(float, copy=False)
    return np.asarray(list(values), dtype=float)


def _to_clean_array(values: ArrayLike) -> np.ndarray:
    """Convert input to a numpy array without missing values.

    Parameters
    ----------
    values : ArrayLike
        Input values (list, iterable, or array).

    Returns
    -------
    np.ndarray
        Array with NaNs removed.
    """
    arr = _to_array(values)
    if arr.size == 0:
        return arr
    return arr[~np.isnan(arr)]


def glog(values: ArrayLike, c: float) -> np.ndarray:
    """Generalized logarithm ``ln((x + sqrt(x^2 + c^2)) / 2)``.

    Behaves like ``ln(x)`` for ``x >> c`` and stays finite for zero and
    negative inputs. The root is computed with ``hypot`` and, for negative
    ``x``, through the conjugate ``c^2 / (sqrt(x^2 + c^2) - x)`` to avoid
    overflow and cancellation.

    Parameters
    ----------
    values : ArrayLike
        Input values. NaN propagates.
    c : float
        Shift parameter.

    Returns
    -------
    np.ndarray
        Transformed values.
    """
    x = _to_array(values)
    c = float(c)
    root = np.hypot(x, c)
    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        positive = x + root
        conjugate = (c * c) / (root - x)
        inner = np.where(x >= 0, positive, conjugate)
        return np.log(inner / 2.0)


def nan_quantile(values: ArrayLike, q: float) -> float:
    """Quantile of ``values`` ignoring NaNs.

    Returns
    -------
    float
        The quantile, or NaN when no value is present.
    """
    arr = _to_clean_array(values)
    if arr.size == 0:
        return float("nan")
    return float(np.quantile(arr, q))


def nan_median(values: ArrayLike) -> float:
    """Median ignoring NaNs; NaN when no value is present."""
    arr = _to_clean_array(values)
    if arr.size == 0:
        return float("nan")
    return float(np.median(arr))


def mad(values: ArrayLike) -> float:
    """Unscaled median absolute deviation from the median, ignoring NaNs."""
    arr = _to_clean_array(values)
    if arr.size == 0:
        return float("nan")
    return float(median_abs_deviation(arr, scale=1.0))


def robust_location_spread(
    values: ArrayLike,
    scale: float = MAD_SCALE,
) -> Tuple[float, float]:
    """Return ``(median, scale * MAD)`` of ``values`` ignoring NaNs.

    Parameters
    ----------
    values : ArrayLike
        Input values.
    scale : float
        MAD scale factor (default 1.4826).

    Returns
    -------
    Tuple[float, float]
        Median and scaled MAD; both NaN when no value is present.
    """
    arr = _to_clean_array(values)
    if arr.size == 0:
        return float("nan"), float("nan")
    return float(np.median(arr)), scale * float(median_abs_deviation(arr, scale=1.0))


def robust_zscore(
    values: ArrayLike,
    *,
    median: float,
    spread: float,
) -> np.ndarray:
    """Compute ``(x - median) / spread`` for pre-computed robust statistics.

    Unlike a self-referential z-score, the statistics typically come from a
    reference subset (e.g. control rows) and are applied to all values.

    Parameters
    ----------
    values : ArrayLike
        Input values. NaN propagates.
    median : float
        Location estimate.
    spread : float
        Spread estimate, usually ``1.4826 * MAD``. Must be nonzero.

    Returns
    -------
    np.ndarray
        Robust z-scores.

    Raises
    ------
    ValueError
        If ``spread`` is zero or not finite.
    """
    if not np.isfinite(spread) or spread == 0:
        raise ValueError(f"Spread must be finite and nonzero, got {spread}")
    arr = _to_array(values)
    return (arr - median) / spread
