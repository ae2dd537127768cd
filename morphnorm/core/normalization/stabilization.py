"""Generalized-log variance stabilization.

Each feature is transformed independently with
``glog(x, c) = ln((x + sqrt(x^2 + c^2)) / 2)``, where the shift ``c`` is a
low quantile of that feature. Unlike ``log``, the transform is defined for
zero and negative values, which are common in background-subtracted
intensity features.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np

from morphnorm.utils.parallel import run_units
from morphnorm.utils.stats import glog, nan_quantile

from .config import StabilizationConfig
from .errors import DegenerateFeature, NonFiniteResult, UnitError, UnitFailure
from .table import TableView

STAGE = "stabilize"


@dataclass
class StabilizationResult:
    """Result from stabilizing a table.

    Attributes
    ----------
    table : TableView
        Table with stabilized feature columns
    shift_params : Dict[str, float]
        Quantile shift ``c`` used per feature
    nonfinite_counts : Dict[str, int]
        Per-feature count of non-finite outputs produced from finite inputs
    failures : List[UnitFailure]
        Failed features
    """

    table: Optional[TableView] = None
    shift_params: Dict[str, float] = field(default_factory=dict)
    nonfinite_counts: Dict[str, int] = field(default_factory=dict)
    failures: List[UnitFailure] = field(default_factory=list)

    @property
    def failed_features(self) -> List[str]:
        return [f.feature for f in self.failures if f.feature is not None]


class VarianceStabilizer:
    """Per-feature generalized-log transformer.

    Parameters
    ----------
    config : StabilizationConfig, optional
        Stabilization configuration
    n_workers : int
        Worker threads for per-feature units
    logger : logging.Logger, optional
        Logger instance

    Example
    -------
    >>> stabilizer = VarianceStabilizer(StabilizationConfig(quantile=0.05))
    >>> result = stabilizer.stabilize(table)
    >>> result.shift_params["Cells_AreaShape_Area"]
    """

    def __init__(
        self,
        config: Optional[StabilizationConfig] = None,
        n_workers: int = 1,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or StabilizationConfig()
        self.n_workers = n_workers
        self.logger = logger or logging.getLogger(__name__)

    def transform_values(self, values: np.ndarray, quantile: float) -> Tuple[np.ndarray, float, int]:
        """Stabilize one feature's values.

        Parameters
        ----------
        values : np.ndarray
            Raw feature values (NaN = missing)
        quantile : float
            Quantile used as the shift parameter

        Returns
        -------
        Tuple[np.ndarray, float, int]
            Transformed values, shift parameter, and count of non-finite
            outputs whose input was finite

        Raises
        ------
        DegenerateFeature
            If every value is missing
        """
        values = np.asarray(values, dtype=float)
        c = nan_quantile(values, quantile)
        if np.isnan(c):
            raise DegenerateFeature("all values are missing; quantile is undefined")

        transformed = glog(values, c)
        finite_in = np.isfinite(values)
        n_nonfinite = int(np.sum(finite_in & ~np.isfinite(transformed)))
        return transformed, c, n_nonfinite

    def stabilize(
        self,
        table: TableView,
        features: Optional[Iterable[str]] = None,
        quantile: Optional[float] = None,
    ) -> StabilizationResult:
        """Stabilize every feature column of ``table``.

        Parameters
        ----------
        table : TableView
            Input table
        features : Iterable[str], optional
            Features to transform (default: all features of ``table``)
        quantile : float, optional
            Shift quantile (default from config)

        Returns
        -------
        StabilizationResult
            New table plus per-feature diagnostics. Failed features keep
            their input values and are listed in ``failures``.
        """
        quantile = self.config.quantile if quantile is None else quantile
        features = list(table.features if features is None else features)
        table.require_columns(features, context="feature columns")

        result = StabilizationResult()

        def process(feature: str):
            try:
                return feature, self.transform_values(table.values(feature), quantile), None
            except UnitError as e:
                return feature, None, type(e)(f"Feature '{feature}': {e}", feature=feature)

        outputs = run_units(
            process, features, self.n_workers, logger=self.logger, label="features"
        )

        columns = {}
        for feature, output, error in outputs:
            if error is not None:
                result.failures.append(error.to_failure(STAGE))
                self.logger.warning("Stabilization failed for %s: %s", feature, error)
                continue

            transformed, c, n_nonfinite = output
            columns[feature] = transformed
            result.shift_params[feature] = c
            result.nonfinite_counts[feature] = n_nonfinite
            if n_nonfinite:
                error = NonFiniteResult(
                    f"Feature '{feature}': {n_nonfinite} non-finite value(s) "
                    f"from finite input (c={c:g})",
                    feature=feature,
                )
                if self.config.fail_on_nonfinite:
                    result.failures.append(error.to_failure(STAGE))
                self.logger.warning("%s", error)

        self.logger.info(
            "Stabilized %d/%d features (quantile=%.3f)",
            len(result.shift_params),
            len(features),
            quantile,
        )
        result.table = table.with_columns(columns)
        return result
