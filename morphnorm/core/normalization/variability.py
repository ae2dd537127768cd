"""Cross-batch variability analysis and feature exclusion.

For every feature, the median is computed within each batch, and the
standard deviation of those per-batch medians measures how strongly the
feature drifts from plate to plate. Features at or above a threshold are
candidates for exclusion: their variability more likely reflects a
systematic batch effect than biological signal.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

import numpy as np
import pandas as pd

from .config import VariabilityConfig
from .errors import DegenerateFeature, UnitFailure
from .table import TableView

STAGE = "analyze"


@dataclass
class VariabilityReport:
    """Per-feature cross-batch variability statistics.

    Attributes
    ----------
    statistics : pd.Series
        Standard deviation of per-batch medians, indexed by feature and
        sorted descending (ties keep the input feature order)
    batch_medians : pd.DataFrame
        Batch x feature matrix of per-batch medians
    threshold : float
        Exclusion threshold
    failures : List[UnitFailure]
        Features whose statistic is undefined
    """

    statistics: pd.Series = field(default_factory=lambda: pd.Series(dtype=float))
    batch_medians: pd.DataFrame = field(default_factory=pd.DataFrame)
    threshold: float = 0.3
    failures: List[UnitFailure] = field(default_factory=list)

    @property
    def ranking(self) -> List[str]:
        """Features ordered by descending variability."""
        return list(self.statistics.index)

    @property
    def excluded(self) -> List[str]:
        """Features at or above ``threshold``, in ranking order."""
        return self.excluded_at(self.threshold)

    def excluded_at(self, threshold: float) -> List[str]:
        """Exclusion set for another threshold, without recomputing medians."""
        return list(self.statistics.index[self.statistics.to_numpy() >= threshold])

    def to_frame(self) -> pd.DataFrame:
        """Ranking as a DataFrame (rank, feature, batch_median_sd, excluded)."""
        excluded = set(self.excluded)
        return pd.DataFrame({
            "rank": np.arange(1, len(self.statistics) + 1),
            "feature": self.statistics.index.astype(str),
            "batch_median_sd": self.statistics.to_numpy(dtype=float),
            "excluded": [f in excluded for f in self.statistics.index],
        })

    def to_dict(self) -> Dict[str, object]:
        return {
            "threshold": self.threshold,
            "ranking": [
                {"feature": f, "batch_median_sd": float(v)}
                for f, v in self.statistics.items()
            ],
            "excluded": self.excluded,
        }


class BatchVariabilityAnalyzer:
    """Rank features by the spread of their per-batch medians.

    This stage is read-only: it never modifies the table.

    Parameters
    ----------
    config : VariabilityConfig, optional
        Variability configuration
    logger : logging.Logger, optional
        Logger instance

    Example
    -------
    >>> analyzer = BatchVariabilityAnalyzer(VariabilityConfig(threshold=0.3))
    >>> report = analyzer.analyze(table, batch_key="Metadata_Plate")
    >>> report.excluded
    """

    def __init__(
        self,
        config: Optional[VariabilityConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or VariabilityConfig()
        self.logger = logger or logging.getLogger(__name__)

    def compute_batch_medians(
        self,
        table: TableView,
        features: List[str],
        batch_key: str,
    ) -> pd.DataFrame:
        """Batch x feature matrix of medians, NaN ignored, batches sorted."""
        labels = table.batch_labels(batch_key)
        frame = table.data[features].astype(float)
        return frame.groupby(labels.to_numpy(), sort=True).median()

    def analyze(
        self,
        table: TableView,
        features: Optional[Iterable[str]] = None,
        batch_key: str = "Metadata_Plate",
        threshold: Optional[float] = None,
    ) -> VariabilityReport:
        """Compute the variability ranking and exclusion set.

        Parameters
        ----------
        table : TableView
            Input table (not modified)
        features : Iterable[str], optional
            Features to analyze (default: all features of ``table``)
        batch_key : str
            Batch column
        threshold : float, optional
            Exclusion threshold (default from config)

        Returns
        -------
        VariabilityReport
            Ranking, batch medians and exclusion set
        """
        threshold = self.config.threshold if threshold is None else threshold
        features = list(table.features if features is None else features)
        table.require_columns(features, context="feature columns")

        report = VariabilityReport(threshold=threshold)
        medians = self.compute_batch_medians(table, features, batch_key)
        report.batch_medians = medians

        finite_counts = np.isfinite(medians.to_numpy(dtype=float)).sum(axis=0)
        stats = medians.std(axis=0, ddof=self.config.ddof, skipna=True)

        defined = []
        for feature, n_finite in zip(features, finite_counts):
            if n_finite <= self.config.ddof or not np.isfinite(stats[feature]):
                error = DegenerateFeature(
                    f"Feature '{feature}': {int(n_finite)} batch median(s) available; "
                    "cross-batch standard deviation is undefined",
                    feature=feature,
                )
                report.failures.append(error.to_failure(STAGE))
                self.logger.warning("%s", error)
            else:
                defined.append(feature)

        stats = stats[defined]
        # Stable sort keeps the input feature order among ties
        order = np.argsort(-stats.to_numpy(dtype=float), kind="mergesort")
        report.statistics = stats.iloc[order]

        self.logger.info(
            "Variability across %d batches: %d features ranked, %d at or above %.3f",
            len(medians),
            len(report.statistics),
            len(report.excluded),
            threshold,
        )
        return report
