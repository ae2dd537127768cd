"""Error kinds raised by the normalization stages.

Unit errors describe a failure confined to one independent unit of work
(a feature, a batch, or a batch x feature pair). Stages collect them as
``UnitFailure`` records and keep processing the remaining units; only a
missing column is fatal and raised immediately.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional


@dataclass(frozen=True)
class UnitFailure:
    """Record of a failed unit of work.

    Attributes
    ----------
    stage : str
        Stage that produced the failure (stabilize, analyze, center, scale)
    kind : str
        Error kind name (e.g. "DegenerateSpread")
    feature : str, optional
        Feature column involved, if any
    batch : Any, optional
        Batch identifier involved, if any
    message : str
        Human-readable description
    """

    stage: str
    kind: str
    feature: Optional[str] = None
    batch: Any = None
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        """Convert failure to dictionary for serialization."""
        return {
            "stage": self.stage,
            "kind": self.kind,
            "feature": self.feature,
            "batch": self.batch,
            "message": self.message,
        }


class NormalizationError(Exception):
    """Base class for all normalization errors."""


class MissingColumnError(NormalizationError, KeyError):
    """A column required by the configuration is absent from the table."""

    def __init__(self, columns: Iterable[str], context: str = "table"):
        self.columns = list(columns)
        self.context = context
        super().__init__(f"Columns missing from {context}: {self.columns}")

    def __str__(self) -> str:
        return self.args[0]


class UnitError(NormalizationError):
    """Failure of a single feature and/or batch unit."""

    def __init__(
        self,
        message: str,
        feature: Optional[str] = None,
        batch: Any = None,
    ):
        super().__init__(message)
        self.feature = feature
        self.batch = batch

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_failure(self, stage: str) -> UnitFailure:
        """Convert to a ``UnitFailure`` record for the given stage."""
        return UnitFailure(
            stage=stage,
            kind=self.kind,
            feature=self.feature,
            batch=self.batch,
            message=str(self),
        )


class DegenerateFeature(UnitError):
    """A quantile or summary statistic is undefined for a feature."""


class NoControlsInBatch(UnitError):
    """A batch has no rows satisfying the control predicate."""


class DegenerateSpread(UnitError):
    """The control MAD is zero, so the robust z-score is undefined."""


class NonFiniteResult(UnitError):
    """A transform produced NaN or infinity from finite input."""


class StageFailedError(NormalizationError):
    """One or more units of a stage failed under the ``raise`` policy.

    Raised only after every unit of the stage has been processed, so
    ``failures`` lists all failed units rather than the first one.
    """

    def __init__(self, stage: str, failures: List[UnitFailure]):
        self.stage = stage
        self.failures = list(failures)
        lines = [f"Stage '{stage}' failed for {len(self.failures)} unit(s):"]
        for failure in self.failures:
            lines.append(f"  - [{failure.kind}] {failure.message}")
        super().__init__("\n".join(lines))
