"""Per-batch median centering.

Removes plate-level additive bias: within every batch, each feature's
median is subtracted from that batch's values, so the per-batch median of
every centered feature is zero.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

import numpy as np
import pandas as pd

from morphnorm.utils.parallel import run_units
from morphnorm.utils.stats import nan_median

from .errors import UnitFailure
from .table import TableView


@dataclass
class CenteringResult:
    """Result from batch centering.

    Attributes
    ----------
    table : TableView
        Table with centered feature columns
    shifts : pd.DataFrame
        Batch x feature matrix of the medians that were subtracted
    failures : List[UnitFailure]
        Failed units (centering itself has no failure mode; kept for a
        uniform stage interface)
    """

    table: Optional[TableView] = None
    shifts: pd.DataFrame = field(default_factory=pd.DataFrame)
    failures: List[UnitFailure] = field(default_factory=list)


class BatchCenterer:
    """Subtract each batch's median from every feature.

    Parameters
    ----------
    n_workers : int
        Worker threads for per-feature units
    logger : logging.Logger, optional
        Logger instance

    Example
    -------
    >>> centerer = BatchCenterer()
    >>> result = centerer.center(table, batch_key="Metadata_Plate")
    >>> result.shifts.loc["plate_1"]
    """

    def __init__(self, n_workers: int = 1, logger: Optional[logging.Logger] = None):
        self.n_workers = n_workers
        self.logger = logger or logging.getLogger(__name__)

    @staticmethod
    def center_values(
        values: np.ndarray,
        batches: Dict[Any, np.ndarray],
    ) -> Dict[str, Any]:
        """Center one feature within each batch.

        Parameters
        ----------
        values : np.ndarray
            Feature values for all rows
        batches : Dict[Any, np.ndarray]
            Batch to positional row indices

        Returns
        -------
        Dict[str, Any]
            ``values``: centered array; ``medians``: batch -> median
        """
        centered = np.array(values, dtype=float, copy=True)
        medians = {}
        for batch, idx in batches.items():
            median = nan_median(centered[idx])
            medians[batch] = median
            if np.isnan(median):
                # Every value of this batch is missing; nothing to shift
                continue
            centered[idx] = centered[idx] - median
        return {"values": centered, "medians": medians}

    def center(
        self,
        table: TableView,
        features: Optional[Iterable[str]] = None,
        batch_key: str = "Metadata_Plate",
    ) -> CenteringResult:
        """Center every feature within each batch.

        Parameters
        ----------
        table : TableView
            Input table
        features : Iterable[str], optional
            Features to center (default: all features of ``table``)
        batch_key : str
            Batch column

        Returns
        -------
        CenteringResult
            New table and the subtracted medians
        """
        features = list(table.features if features is None else features)
        table.require_columns(features, context="feature columns")
        batches = table.batch_indices(batch_key)

        outputs = run_units(
            lambda feature: self.center_values(table.values(feature), batches),
            features,
            self.n_workers,
            logger=self.logger,
            label="features",
        )

        result = CenteringResult()
        columns = {}
        shifts = {}
        for feature, output in zip(features, outputs):
            columns[feature] = output["values"]
            shifts[feature] = output["medians"]

        result.shifts = pd.DataFrame(shifts, index=list(batches), columns=features)
        result.table = table.with_columns(columns)
        self.logger.info(
            "Centered %d features across %d batches", len(features), len(batches)
        )
        return result
