"""Normalization module for object-level morphological profiles.

Provides variance stabilization, cross-batch variability analysis,
per-batch centering and control-anchored robust scaling, plus the
pipeline that runs them in order.

Pipeline Stages
---------------
- stabilize: Generalized-log transform per feature
- analyze: Standard deviation of per-batch medians; exclusion by threshold
- center: Per-batch median subtraction
- scale: Robust z-score against control rows (per_batch or pooled spread)

Example Usage
-------------
>>> from morphnorm.core.normalization import (
...     NormalizationConfig, NormalizationPipeline,
...     TableView, VarianceStabilizer, BatchVariabilityAnalyzer,
... )
>>> config = NormalizationConfig(scaling_strategy="pooled")
>>> result = NormalizationPipeline(config, features).run(df)
>>> result.report.variability.to_frame().head()
>>> # Individual stages
>>> table = TableView(df, features)
>>> stabilized = VarianceStabilizer().stabilize(table).table
>>> report = BatchVariabilityAnalyzer().analyze(stabilized, batch_key="Metadata_Plate")
"""

__version__ = "1.0.0"

# Configuration classes
from .config import (
    FAILURE_POLICIES,
    SCALING_STRATEGIES,
    STAGE_IDS,
    NormalizationConfig,
    ScalingConfig,
    StabilizationConfig,
    VariabilityConfig,
)

# Errors
from .errors import (
    DegenerateFeature,
    DegenerateSpread,
    MissingColumnError,
    NoControlsInBatch,
    NonFiniteResult,
    NormalizationError,
    StageFailedError,
    UnitError,
    UnitFailure,
)

# Table abstraction
from .table import (
    FeatureSet,
    TableView,
    add_control_flag,
    build_control_mask,
)

# Stages
from .stabilization import (
    StabilizationResult,
    VarianceStabilizer,
)
from .variability import (
    BatchVariabilityAnalyzer,
    VariabilityReport,
)
from .centering import (
    BatchCenterer,
    CenteringResult,
)
from .scaling import (
    ControlAnchoredScaler,
    ScalingResult,
)

# Pipeline
from .engine import (
    ExclusionResult,
    NormalizationPipeline,
    NormalizationReport,
    PipelineResult,
    normalize,
)

__all__ = [
    # Version
    "__version__",
    # Config
    "FAILURE_POLICIES",
    "SCALING_STRATEGIES",
    "STAGE_IDS",
    "NormalizationConfig",
    "ScalingConfig",
    "StabilizationConfig",
    "VariabilityConfig",
    # Errors
    "DegenerateFeature",
    "DegenerateSpread",
    "MissingColumnError",
    "NoControlsInBatch",
    "NonFiniteResult",
    "NormalizationError",
    "StageFailedError",
    "UnitError",
    "UnitFailure",
    # Table
    "FeatureSet",
    "TableView",
    "add_control_flag",
    "build_control_mask",
    # Stages
    "StabilizationResult",
    "VarianceStabilizer",
    "BatchVariabilityAnalyzer",
    "VariabilityReport",
    "BatchCenterer",
    "CenteringResult",
    "ControlAnchoredScaler",
    "ScalingResult",
    # Pipeline
    "ExclusionResult",
    "NormalizationPipeline",
    "NormalizationReport",
    "PipelineResult",
    "normalize",
]
