"""morphnorm: Normalization of per-object morphological profiles.

This package provides tools for:
- Generalized-log variance stabilization of skewed features
- Detection and exclusion of features with strong plate-to-plate variability
- Per-plate median centering
- Robust z-scoring anchored on a negative-control population

The pipeline is driven by an explicit feature list and metadata column
names, with all parameters loadable from YAML configuration files.

Example usage:
    >>> from morphnorm.core.normalization import (
    ...     NormalizationConfig,
    ...     NormalizationPipeline,
    ... )
    >>>
    >>> config = NormalizationConfig(scaling_strategy="pooled")
    >>> pipeline = NormalizationPipeline(config, features)
    >>> result = pipeline.run(joined_df)
    >>> result.report.excluded_features
"""

__version__ = "0.1.0"
