"""Control-anchored robust scaling.

Computes robust z-scores ``(x - location) / spread`` where the location is
the median of the control rows of each batch and the spread is
``1.4826 * MAD`` of the controls, estimated either per batch or pooled over
all batches.

Strategies
----------
per_batch
    Location and spread from the controls of each batch. Adapts to
    batch-to-batch spread differences but needs enough control replicates
    in every batch.
pooled
    Location from the controls of each batch, spread from the deviations of
    all controls from their own batch median, pooled over batches. The
    spread does not move with per-batch shifts. More stable when batches
    have few controls, at the cost of ignoring batch-to-batch spread
    differences.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

import numpy as np
import pandas as pd

from morphnorm.utils.parallel import run_units
from morphnorm.utils.stats import mad, nan_median

from .config import SCALING_STRATEGIES, ScalingConfig
from .errors import (
    DegenerateFeature,
    DegenerateSpread,
    NoControlsInBatch,
    UnitError,
    UnitFailure,
)
from .table import TableView

STAGE = "scale"


@dataclass
class ScalingResult:
    """Result from control-anchored scaling.

    Attributes
    ----------
    table : TableView
        Table with scaled feature columns
    strategy : str
        Strategy used
    locations : pd.DataFrame
        Batch x feature matrix of control medians
    spreads : pd.DataFrame
        Batch x feature matrix of spreads (identical rows for ``pooled``)
    control_counts : Dict[Any, int]
        Number of control rows per batch
    failures : List[UnitFailure]
        Failed batches and features
    """

    table: Optional[TableView] = None
    strategy: str = ""
    locations: pd.DataFrame = field(default_factory=pd.DataFrame)
    spreads: pd.DataFrame = field(default_factory=pd.DataFrame)
    control_counts: Dict[Any, int] = field(default_factory=dict)
    failures: List[UnitFailure] = field(default_factory=list)

    @property
    def failed_batches(self) -> List[Any]:
        return [f.batch for f in self.failures if f.kind == "NoControlsInBatch"]

    @property
    def failed_features(self) -> List[str]:
        seen: List[str] = []
        for f in self.failures:
            if f.feature is not None and f.feature not in seen:
                seen.append(f.feature)
        return seen


class ControlAnchoredScaler:
    """Robust z-scoring against a control population.

    Parameters
    ----------
    config : ScalingConfig, optional
        Scaling configuration (``mad_scale``)
    n_workers : int
        Worker threads for per-feature units
    logger : logging.Logger, optional
        Logger instance

    Example
    -------
    >>> scaler = ControlAnchoredScaler()
    >>> result = scaler.scale(
    ...     table, batch_key="Metadata_Plate",
    ...     control_mask=table.data["is_control"].to_numpy(),
    ...     strategy="pooled",
    ... )
    """

    def __init__(
        self,
        config: Optional[ScalingConfig] = None,
        n_workers: int = 1,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or ScalingConfig()
        self.n_workers = n_workers
        self.logger = logger or logging.getLogger(__name__)

    def check_controls(
        self,
        batches: Dict[Any, np.ndarray],
        control_mask: np.ndarray,
    ) -> Tuple[Dict[Any, np.ndarray], Dict[Any, int], List[NoControlsInBatch]]:
        """Split each batch's rows into control rows, flagging empty batches.

        Returns
        -------
        Tuple
            (batch -> control row indices for valid batches,
             batch -> control count, errors for batches without controls)
        """
        controls: Dict[Any, np.ndarray] = {}
        counts: Dict[Any, int] = {}
        errors: List[NoControlsInBatch] = []
        for batch, idx in batches.items():
            ctrl_idx = idx[control_mask[idx]]
            counts[batch] = int(ctrl_idx.size)
            if ctrl_idx.size == 0:
                errors.append(
                    NoControlsInBatch(
                        f"Batch '{batch}' has no control rows; location is undefined",
                        batch=batch,
                    )
                )
            else:
                controls[batch] = ctrl_idx
        return controls, counts, errors

    def scale_values(
        self,
        values: np.ndarray,
        batches: Dict[Any, np.ndarray],
        controls: Dict[Any, np.ndarray],
        strategy: str,
        feature: str = "",
    ) -> Dict[str, Any]:
        """Scale one feature.

        Parameters
        ----------
        values : np.ndarray
            Feature values for all rows
        batches : Dict[Any, np.ndarray]
            Batch to positional row indices
        controls : Dict[Any, np.ndarray]
            Batch to control row indices, only for batches with controls
        strategy : str
            ``per_batch`` or ``pooled``
        feature : str
            Feature name for error messages

        Returns
        -------
        Dict[str, Any]
            ``values`` (NaN for batches without controls), ``locations`` and
            ``spreads`` per batch

        Raises
        ------
        DegenerateFeature
            If a batch has controls but all their values are missing
        DegenerateSpread
            If a control MAD is zero
        """
        values = np.asarray(values, dtype=float)
        scaled = np.full_like(values, np.nan)
        locations: Dict[Any, float] = {}
        spreads: Dict[Any, float] = {}

        for batch, ctrl_idx in controls.items():
            location = nan_median(values[ctrl_idx])
            if np.isnan(location):
                raise DegenerateFeature(
                    f"Feature '{feature}': all control values missing in batch '{batch}'",
                    feature=feature,
                    batch=batch,
                )
            locations[batch] = location

        if strategy == "pooled":
            # Deviations from each batch's own control median
            residuals = [values[ctrl_idx] - locations[batch] for batch, ctrl_idx in controls.items()]
            pooled = np.concatenate(residuals) if residuals else np.array([], dtype=float)
            spread = self.config.mad_scale * nan_median(np.abs(pooled))
            if not np.isfinite(spread) or spread == 0:
                raise DegenerateSpread(
                    f"Feature '{feature}': pooled control MAD is zero",
                    feature=feature,
                )
            spreads = {batch: spread for batch in controls}
        else:
            for batch, ctrl_idx in controls.items():
                spread = self.config.mad_scale * mad(values[ctrl_idx])
                if not np.isfinite(spread) or spread == 0:
                    raise DegenerateSpread(
                        f"Feature '{feature}': control MAD is zero in batch '{batch}'",
                        feature=feature,
                        batch=batch,
                    )
                spreads[batch] = spread

        for batch in controls:
            idx = batches[batch]
            scaled[idx] = (values[idx] - locations[batch]) / spreads[batch]

        return {"values": scaled, "locations": locations, "spreads": spreads}

    def scale(
        self,
        table: TableView,
        features: Optional[Iterable[str]] = None,
        batch_key: str = "Metadata_Plate",
        control_mask: Optional[np.ndarray] = None,
        strategy: Optional[str] = None,
    ) -> ScalingResult:
        """Robust z-score every feature against the control rows.

        Parameters
        ----------
        table : TableView
            Input table (normally batch-centered)
        features : Iterable[str], optional
            Features to scale (default: all features of ``table``)
        batch_key : str
            Batch column
        control_mask : np.ndarray
            Boolean mask of control rows, one value per row
        strategy : str
            ``per_batch`` or ``pooled``; required

        Returns
        -------
        ScalingResult
            New table with scaled features plus locations, spreads and
            failures. Features that failed keep their input values; rows
            of batches without controls become NaN.

        Raises
        ------
        ValueError
            If ``strategy`` is missing or unknown, or the mask has the
            wrong length
        """
        if strategy is None:
            strategy = self.config.strategy
        if strategy not in SCALING_STRATEGIES:
            raise ValueError(
                f"strategy must be one of {', '.join(SCALING_STRATEGIES)}, got {strategy!r}"
            )
        if control_mask is None:
            raise ValueError("control_mask is required")
        control_mask = np.asarray(control_mask, dtype=bool)
        if control_mask.shape != (table.n_rows,):
            raise ValueError(
                f"control_mask has shape {control_mask.shape}, expected ({table.n_rows},)"
            )

        features = list(table.features if features is None else features)
        table.require_columns(features, context="feature columns")
        batches = table.batch_indices(batch_key)

        result = ScalingResult(strategy=strategy)
        controls, result.control_counts, batch_errors = self.check_controls(
            batches, control_mask
        )
        for error in batch_errors:
            result.failures.append(error.to_failure(STAGE))
            self.logger.warning("%s", error)

        def process(feature: str):
            try:
                output = self.scale_values(
                    table.values(feature), batches, controls, strategy, feature=feature
                )
                return output, None
            except UnitError as e:
                return None, e

        outputs = run_units(
            process, features, self.n_workers, logger=self.logger, label="features"
        )

        columns = {}
        locations = {}
        spreads = {}
        for feature, (output, error) in zip(features, outputs):
            if error is not None:
                result.failures.append(error.to_failure(STAGE))
                self.logger.warning("%s", error)
                continue
            columns[feature] = output["values"]
            locations[feature] = output["locations"]
            spreads[feature] = output["spreads"]

        scaled_features = list(columns)
        result.locations = pd.DataFrame(locations, index=list(batches), columns=scaled_features)
        result.spreads = pd.DataFrame(spreads, index=list(batches), columns=scaled_features)
        result.table = table.with_columns(columns)

        self.logger.info(
            "Scaled %d/%d features (%s strategy, %d/%d batches with controls)",
            len(scaled_features),
            len(features),
            strategy,
            len(controls),
            len(batches),
        )
        return result
