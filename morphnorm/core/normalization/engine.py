"""Normalization pipeline engine.

Runs the stages in their required order,

    stabilize -> analyze (exclude) -> center -> scale

on an ``InMemoryExecutor``. Each stage takes the table produced by the
previous stage and returns a new one; the feature set only shrinks
(exclusion, and dropped failures under the ``drop`` policy). Per-unit
failures are collected at each stage barrier and handled by the configured
failure policy.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Union

import pandas as pd

from morphnorm.pipeline import InMemoryExecutor, PipelineLogger

from .centering import BatchCenterer, CenteringResult
from .config import NormalizationConfig
from .errors import NormalizationError, StageFailedError, UnitFailure
from .scaling import ControlAnchoredScaler, ScalingResult
from .stabilization import StabilizationResult, VarianceStabilizer
from .table import FeatureSet, TableView, add_control_flag
from .variability import BatchVariabilityAnalyzer, VariabilityReport

STAGE_NAMES = {
    "stabilize": "Variance stabilization (glog)",
    "analyze": "Batch variability analysis and exclusion",
    "center": "Per-batch median centering",
    "scale": "Control-anchored robust scaling",
}


@dataclass
class ExclusionResult:
    """Result from the analyze/exclude stage.

    Attributes
    ----------
    table : TableView
        Table restricted to the surviving features
    report : VariabilityReport
        Variability ranking
    excluded : List[str]
        Features removed because of high cross-batch variability
    failures : List[UnitFailure]
        Features whose variability statistic is undefined
    """

    table: Optional[TableView] = None
    report: Optional[VariabilityReport] = None
    excluded: List[str] = field(default_factory=list)
    failures: List[UnitFailure] = field(default_factory=list)


@dataclass
class NormalizationReport:
    """Diagnostics of a pipeline run.

    Attributes
    ----------
    config : Dict[str, Any]
        Configuration used
    n_rows : int
        Row count (identical for input and output)
    input_features : List[str]
        Features at the start of the run
    output_features : List[str]
        Features surviving to the output
    variability : VariabilityReport, optional
        Cross-batch variability ranking
    excluded_features : List[str]
        Features excluded for high variability
    dropped_features : List[str]
        Features dropped after unit failures (``drop`` policy)
    failed_batches : List[Any]
        Batches whose scaled values are missing (``drop`` policy)
    failures : List[UnitFailure]
        All unit failures, in stage order
    shift_params : Dict[str, float]
        glog shift parameter per feature
    nonfinite_counts : Dict[str, int]
        Non-finite outputs per feature from stabilization
    control_counts : Dict[Any, int]
        Control rows per batch
    scaling_strategy : str, optional
        Scaling strategy used
    durations : Dict[str, float]
        Seconds per stage
    """

    config: Dict[str, Any] = field(default_factory=dict)
    n_rows: int = 0
    input_features: List[str] = field(default_factory=list)
    output_features: List[str] = field(default_factory=list)
    variability: Optional[VariabilityReport] = None
    excluded_features: List[str] = field(default_factory=list)
    dropped_features: List[str] = field(default_factory=list)
    failed_batches: List[Any] = field(default_factory=list)
    failures: List[UnitFailure] = field(default_factory=list)
    shift_params: Dict[str, float] = field(default_factory=dict)
    nonfinite_counts: Dict[str, int] = field(default_factory=dict)
    control_counts: Dict[Any, int] = field(default_factory=dict)
    scaling_strategy: Optional[str] = None
    durations: Dict[str, float] = field(default_factory=dict)

    def failures_frame(self) -> pd.DataFrame:
        """Failures as a DataFrame (stage, kind, feature, batch, message)."""
        return pd.DataFrame(
            [f.to_dict() for f in self.failures],
            columns=["stage", "kind", "feature", "batch", "message"],
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert report to a JSON-serializable dictionary."""
        return {
            "config": self.config,
            "n_rows": self.n_rows,
            "input_features": list(self.input_features),
            "output_features": list(self.output_features),
            "variability": self.variability.to_dict() if self.variability else None,
            "excluded_features": list(self.excluded_features),
            "dropped_features": list(self.dropped_features),
            "failed_batches": [str(b) for b in self.failed_batches],
            "failures": [f.to_dict() for f in self.failures],
            "shift_params": {k: float(v) for k, v in self.shift_params.items()},
            "nonfinite_counts": {k: int(v) for k, v in self.nonfinite_counts.items()},
            "control_counts": {str(k): int(v) for k, v in self.control_counts.items()},
            "scaling_strategy": self.scaling_strategy,
            "durations": {k: float(v) for k, v in self.durations.items()},
        }


@dataclass
class PipelineResult:
    """Output table plus diagnostics."""

    table: TableView
    report: NormalizationReport

    @property
    def data(self) -> pd.DataFrame:
        return self.table.data


class NormalizationPipeline:
    """Composable normalization pipeline over an explicit feature set.

    Parameters
    ----------
    config : NormalizationConfig
        Pipeline configuration (validated on construction)
    features : FeatureSet or Iterable[str]
        Feature columns to normalize; all other columns are metadata
    logger : PipelineLogger, optional
        Structured logger for stage events

    Example
    -------
    >>> config = NormalizationConfig(
    ...     batch_key_column="Metadata_Plate",
    ...     control_column="Metadata_Compound",
    ...     control_values=["DMSO"],
    ...     scaling_strategy="per_batch",
    ... )
    >>> pipeline = NormalizationPipeline(config, ["Cells_Area", "Nuclei_Intensity"])
    >>> result = pipeline.run(df)
    >>> result.report.excluded_features
    """

    def __init__(
        self,
        config: NormalizationConfig,
        features: Union[FeatureSet, Iterable[str]],
        logger: Optional[PipelineLogger] = None,
    ):
        config.validate()
        self.config = config
        self.features = features if isinstance(features, FeatureSet) else FeatureSet(features)
        if not len(self.features):
            raise ValueError("At least one feature column is required")
        self.pipeline_logger = logger
        self.logger = logger.logger if logger is not None else logging.getLogger(__name__)

        n_workers = config.n_workers
        self.stabilizer = VarianceStabilizer(config.stabilization, n_workers, self.logger)
        self.analyzer = BatchVariabilityAnalyzer(config.variability, self.logger)
        self.centerer = BatchCenterer(n_workers, self.logger)
        self.scaler = ControlAnchoredScaler(config.scaling, n_workers, self.logger)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def required_columns(self) -> List[str]:
        """Columns the input table must contain for this configuration."""
        columns = list(self.features)
        stages = set(self.active_stages())
        if stages & {"analyze", "center", "scale"}:
            columns.append(self.config.batch_key_column)
        if "scale" in stages:
            columns.append(self.config.control_column)
        return columns

    def active_stages(self) -> List[str]:
        return [s for s in STAGE_NAMES if s not in self.config.skip_stages]

    def prepare(self, data: Union[pd.DataFrame, TableView]) -> TableView:
        """Validate the schema and build the input table.

        Raises
        ------
        MissingColumnError
            If a required column is absent (fatal, before any stage runs)
        """
        frame = data.data if isinstance(data, TableView) else data
        schema = TableView(frame, [], copy=False)
        schema.require_columns(self.required_columns(), context="input table")

        table = TableView(frame, self.features, copy=True)
        if "scale" in self.active_stages():
            table.batch_labels(self.config.batch_key_column)
            table = add_control_flag(
                table,
                self.config.control_column,
                self.config.control_values,
                self.config.control_flag_column,
            )
        return table

    # ------------------------------------------------------------------
    # Failure policy
    # ------------------------------------------------------------------

    def _handle_failures(
        self,
        stage_id: str,
        failures: List[UnitFailure],
        table: TableView,
        report: NormalizationReport,
    ) -> TableView:
        if not failures:
            return table
        report.failures.extend(failures)
        if self.pipeline_logger is not None:
            self.pipeline_logger.log_unit_failures(stage_id, failures)

        if self.config.on_failure == "raise":
            raise StageFailedError(stage_id, failures)

        failed_features = []
        for failure in failures:
            if failure.kind == "NoControlsInBatch":
                if failure.batch not in report.failed_batches:
                    report.failed_batches.append(failure.batch)
            elif failure.feature is not None and failure.feature not in failed_features:
                failed_features.append(failure.feature)

        failed_features = [f for f in failed_features if f in table.features]
        if failed_features:
            self.logger.warning(
                "Dropping %d failed feature(s) after %s: %s",
                len(failed_features), stage_id, failed_features,
            )
            report.dropped_features.extend(failed_features)
            table = table.drop_features(failed_features)
        return table

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    @staticmethod
    def _latest_table(initial: TableView, stage_results: Dict[str, Any]) -> TableView:
        table = initial
        for result in stage_results.values():
            if result is not None and getattr(result, "table", None) is not None:
                table = result.table
        return table

    def _stabilize(self, initial, report, stage_results) -> StabilizationResult:
        table = self._latest_table(initial, stage_results)
        result = self.stabilizer.stabilize(table)
        report.shift_params.update(result.shift_params)
        report.nonfinite_counts.update(result.nonfinite_counts)
        result.table = self._handle_failures("stabilize", result.failures, result.table, report)
        return result

    def _analyze(self, initial, report, stage_results) -> ExclusionResult:
        table = self._latest_table(initial, stage_results)
        variability = self.analyzer.analyze(table, batch_key=self.config.batch_key_column)
        report.variability = variability

        result = ExclusionResult(report=variability, failures=list(variability.failures))
        if self.config.variability.exclude:
            result.excluded = variability.excluded
            report.excluded_features.extend(result.excluded)
            if result.excluded:
                self.logger.info(
                    "Excluding %d feature(s) with batch-median SD >= %.3f: %s",
                    len(result.excluded), variability.threshold, result.excluded,
                )
        table = table.drop_features(result.excluded)
        result.table = self._handle_failures("analyze", result.failures, table, report)
        return result

    def _center(self, initial, report, stage_results) -> CenteringResult:
        table = self._latest_table(initial, stage_results)
        result = self.centerer.center(table, batch_key=self.config.batch_key_column)
        result.table = self._handle_failures("center", result.failures, result.table, report)
        return result

    def _scale(self, initial, report, stage_results) -> ScalingResult:
        table = self._latest_table(initial, stage_results)
        mask = table.data[self.config.control_flag_column].to_numpy(dtype=bool)
        result = self.scaler.scale(
            table,
            batch_key=self.config.batch_key_column,
            control_mask=mask,
            strategy=self.config.scaling.strategy,
        )
        report.scaling_strategy = result.strategy
        report.control_counts.update(result.control_counts)
        result.table = self._handle_failures("scale", result.failures, result.table, report)
        return result

    def build_executor(self) -> InMemoryExecutor:
        """Register the stages on a fresh executor."""
        executor = InMemoryExecutor(self.pipeline_logger)
        previous: Optional[str] = None
        funcs = {
            "stabilize": self._stabilize,
            "analyze": self._analyze,
            "center": self._center,
            "scale": self._scale,
        }
        for stage_id, name in STAGE_NAMES.items():
            executor.register_stage(
                stage_id,
                funcs[stage_id],
                depends_on=[previous] if previous else [],
                name=name,
                optional=True,
            )
            previous = stage_id
        return executor

    def run(self, data: Union[pd.DataFrame, TableView]) -> PipelineResult:
        """Run all configured stages.

        Parameters
        ----------
        data : pd.DataFrame or TableView
            Joined object-level table. Not modified.

        Returns
        -------
        PipelineResult
            Output table (same rows, surviving features) and report

        Raises
        ------
        MissingColumnError
            If a required column is absent
        StageFailedError
            If a stage has failed units and ``on_failure`` is ``raise``
        """
        initial = self.prepare(data)
        report = NormalizationReport(
            config=self.config.to_dict(),
            n_rows=initial.n_rows,
            input_features=list(self.features),
        )

        self.logger.info(
            "Normalizing %d rows x %d features (stages: %s)",
            initial.n_rows, len(self.features), ", ".join(self.active_stages()),
        )

        executor = self.build_executor()
        stage_results = executor.run(
            skip=self.config.skip_stages, initial=initial, report=report
        )
        report.durations.update(executor.durations)

        table = self._latest_table(initial, stage_results)
        if table.n_rows != initial.n_rows:
            raise NormalizationError(
                f"Row count changed from {initial.n_rows} to {table.n_rows}"
            )
        report.output_features = list(table.features)

        if report.failed_batches:
            self.logger.warning(
                "%d batch(es) without controls have missing scaled values: %s",
                len(report.failed_batches), report.failed_batches,
            )
        self.logger.info(
            "Normalization complete: %d/%d features retained, %d unit failure(s)",
            len(report.output_features), len(report.input_features), len(report.failures),
        )
        return PipelineResult(table=table, report=report)


def normalize(
    data: pd.DataFrame,
    features: Iterable[str],
    config: Optional[NormalizationConfig] = None,
    **overrides: Any,
) -> PipelineResult:
    """Run the normalization pipeline with a one-line call.

    Parameters
    ----------
    data : pd.DataFrame
        Joined object-level table
    features : Iterable[str]
        Feature columns
    config : NormalizationConfig, optional
        Base configuration
    **overrides
        Keyword arguments for ``NormalizationConfig`` used when ``config``
        is None (e.g. ``scaling_strategy="pooled"``)

    Returns
    -------
    PipelineResult
        Output table and report
    """
    if config is None:
        config = NormalizationConfig(**overrides)
    elif overrides:
        raise ValueError("Pass either config or keyword overrides, not both")
    return NormalizationPipeline(config, features).run(data)
