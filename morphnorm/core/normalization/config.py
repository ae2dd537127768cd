"""Configuration classes for normalization stages.

All normalization parameters are configurable via YAML so the pipeline
does not depend on any particular screen's naming conventions.
"""

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

SCALING_STRATEGIES = ("per_batch", "pooled")
FAILURE_POLICIES = ("raise", "drop")
STAGE_IDS = ("stabilize", "analyze", "center", "scale")


@dataclass
class StabilizationConfig:
    """Configuration for generalized-log variance stabilization.

    Attributes
    ----------
    quantile : float
        Quantile of each feature used as the glog shift parameter
    fail_on_nonfinite : bool
        Treat non-finite outputs from finite input as a failed feature
        (default: count them in the diagnostics only)
    """

    quantile: float = 0.05
    fail_on_nonfinite: bool = False


@dataclass
class VariabilityConfig:
    """Configuration for batch variability analysis and exclusion.

    Attributes
    ----------
    threshold : float
        Features whose standard deviation of per-batch medians is at or
        above this value are excluded
    ddof : int
        Delta degrees of freedom for the cross-batch standard deviation
    exclude : bool
        Whether to drop flagged features (False keeps them and only reports)
    """

    threshold: float = 0.3
    ddof: int = 1
    exclude: bool = True


@dataclass
class ScalingConfig:
    """Configuration for control-anchored robust scaling.

    Attributes
    ----------
    strategy : str, optional
        ``per_batch`` (location and spread from each batch's controls) or
        ``pooled`` (per-batch location, spread from control deviations
        pooled over batches). No default: it must be chosen explicitly.
    mad_scale : float
        Factor applied to the MAD
    """

    strategy: Optional[str] = None
    mad_scale: float = 1.4826


def _load_section(section_cls, data: Dict[str, Any], key: str):
    """Build a config section from ``data[key]``; missing or null gives defaults."""
    section = data.get(key) or {}
    if not isinstance(section, dict):
        raise ValueError(f"'{key}' section must be a mapping, got {type(section).__name__}")
    known = {f.name for f in fields(section_cls)}
    unknown = sorted(set(section) - known)
    if unknown:
        raise ValueError(f"Unknown keys in '{key}' section: {unknown}")
    return section_cls(**section)


@dataclass(init=False)
class NormalizationConfig:
    """Master configuration for the normalization pipeline.

    Attributes
    ----------
    batch_key_column : str
        Column identifying the batch (plate) of each row
    control_column : str
        Column tested by the control predicate (compound identifier)
    control_values : List[str]
        Values of ``control_column`` marking negative-control rows
    control_flag_column : str
        Name of the derived boolean control column
    stabilization : StabilizationConfig
        Variance stabilization configuration
    variability : VariabilityConfig
        Variability analysis configuration
    scaling : ScalingConfig
        Robust scaling configuration
    on_failure : str
        ``raise`` to abort at the first stage with failed units, ``drop`` to
        drop failed features and blank failed batches
    n_workers : int
        Worker threads for per-feature units
    skip_stages : List[str]
        Stages to skip (any of stabilize, analyze, center, scale)
    """

    batch_key_column: str = "Metadata_Plate"
    control_column: str = "Metadata_Compound"
    control_values: List[str] = field(default_factory=lambda: ["DMSO"])
    control_flag_column: str = "is_control"
    stabilization: StabilizationConfig = field(default_factory=StabilizationConfig)
    variability: VariabilityConfig = field(default_factory=VariabilityConfig)
    scaling: ScalingConfig = field(default_factory=ScalingConfig)
    on_failure: str = "raise"
    n_workers: int = 1
    skip_stages: List[str] = field(default_factory=list)

    def __init__(
        self,
        batch_key_column: str = "Metadata_Plate",
        control_column: str = "Metadata_Compound",
        control_values: Optional[List[str]] = None,
        control_flag_column: str = "is_control",
        stabilization: Optional[StabilizationConfig] = None,
        variability: Optional[VariabilityConfig] = None,
        scaling: Optional[ScalingConfig] = None,
        on_failure: str = "raise",
        n_workers: int = 1,
        skip_stages: Optional[List[str]] = None,
        *,
        quantile: Optional[float] = None,
        variability_threshold: Optional[float] = None,
        scaling_strategy: Optional[str] = None,
    ):
        self.batch_key_column = batch_key_column
        self.control_column = control_column
        self.control_values = list(control_values) if control_values is not None else ["DMSO"]
        self.control_flag_column = control_flag_column
        self.stabilization = stabilization or StabilizationConfig()
        self.variability = variability or VariabilityConfig()
        self.scaling = scaling or ScalingConfig()
        self.on_failure = on_failure
        self.n_workers = n_workers
        self.skip_stages = list(skip_stages or [])

        # Flat shortcuts for the commonly tuned options
        if quantile is not None:
            self.stabilization.quantile = quantile
        if variability_threshold is not None:
            self.variability.threshold = variability_threshold
        if scaling_strategy is not None:
            self.scaling.strategy = scaling_strategy

    @property
    def quantile(self) -> float:
        return self.stabilization.quantile

    @property
    def variability_threshold(self) -> float:
        return self.variability.threshold

    @property
    def scaling_strategy(self) -> Optional[str]:
        return self.scaling.strategy

    def validate(self) -> None:
        """Check parameter ranges.

        Raises
        ------
        ValueError
            If any parameter is out of range or unset.
        """
        if not 0.0 < self.stabilization.quantile < 1.0:
            raise ValueError(
                f"quantile must be in (0, 1), got {self.stabilization.quantile}"
            )
        if self.variability.threshold < 0:
            raise ValueError(
                f"variability threshold must be >= 0, got {self.variability.threshold}"
            )
        if self.variability.ddof < 0:
            raise ValueError(f"ddof must be >= 0, got {self.variability.ddof}")
        if "scale" not in self.skip_stages:
            if self.scaling.strategy is None:
                raise ValueError(
                    "scaling strategy must be set explicitly "
                    f"(one of {', '.join(SCALING_STRATEGIES)})"
                )
            if self.scaling.strategy not in SCALING_STRATEGIES:
                raise ValueError(f"Unknown scaling strategy: {self.scaling.strategy}")
            if not self.control_values:
                raise ValueError("control_values must name at least one control")
        if self.scaling.mad_scale <= 0:
            raise ValueError(f"mad_scale must be > 0, got {self.scaling.mad_scale}")
        if self.on_failure not in FAILURE_POLICIES:
            raise ValueError(f"Unknown failure policy: {self.on_failure}")
        if self.n_workers < 1:
            raise ValueError(f"n_workers must be >= 1, got {self.n_workers}")
        unknown = [s for s in self.skip_stages if s not in STAGE_IDS]
        if unknown:
            raise ValueError(f"Unknown stages in skip_stages: {unknown}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NormalizationConfig":
        """Create configuration from a (possibly nested) dictionary."""
        data = dict(data or {})
        if "normalization" in data:
            data = dict(data["normalization"] or {})

        return cls(
            batch_key_column=data.get("batch_key_column", "Metadata_Plate"),
            control_column=data.get("control_column", "Metadata_Compound"),
            control_values=data.get("control_values"),
            control_flag_column=data.get("control_flag_column", "is_control"),
            stabilization=_load_section(StabilizationConfig, data, "stabilization"),
            variability=_load_section(VariabilityConfig, data, "variability"),
            scaling=_load_section(ScalingConfig, data, "scaling"),
            on_failure=data.get("on_failure", "raise"),
            n_workers=data.get("n_workers", 1),
            skip_stages=data.get("skip_stages", []),
            quantile=data.get("quantile"),
            variability_threshold=data.get("variability_threshold"),
            scaling_strategy=data.get("scaling_strategy"),
        )

    @classmethod
    def from_yaml(cls, path: Path) -> "NormalizationConfig":
        """Load configuration from YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        return cls.from_dict(data)

    @classmethod
    def default(cls) -> "NormalizationConfig":
        """Create default configuration."""
        return cls()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "batch_key_column": self.batch_key_column,
            "control_column": self.control_column,
            "control_values": list(self.control_values),
            "control_flag_column": self.control_flag_column,
            "stabilization": {
                "quantile": self.stabilization.quantile,
                "fail_on_nonfinite": self.stabilization.fail_on_nonfinite,
            },
            "variability": {
                "threshold": self.variability.threshold,
                "ddof": self.variability.ddof,
                "exclude": self.variability.exclude,
            },
            "scaling": {
                "strategy": self.scaling.strategy,
                "mad_scale": self.scaling.mad_scale,
            },
            "on_failure": self.on_failure,
            "n_workers": self.n_workers,
            "skip_stages": list(self.skip_stages),
        }
