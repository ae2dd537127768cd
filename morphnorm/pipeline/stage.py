"""Stage representation for in-memory pipeline execution."""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List


@dataclass
class Stage:
    """Represents a single pipeline stage with its function and dependencies.

    Attributes
    ----------
    stage_id : str
        Short identifier (e.g., "stabilize", "scale")
    func : Callable
        Stage function; called with the executor's keyword arguments plus
        ``stage_results`` (results of the stages that already ran)
    name : str
        Human-readable stage name (e.g., "Variance stabilization")
    depends_on : List[str]
        List of stage IDs this stage depends on
    optional : bool
        Whether this stage may be skipped

    Example
    -------
    >>> stage = Stage(
    ...     stage_id="center",
    ...     func=center_stage,
    ...     name="Batch centering",
    ...     depends_on=["analyze"],
    ... )
    """

    stage_id: str
    func: Callable[..., Any]
    name: str = ""
    depends_on: List[str] = field(default_factory=list)
    optional: bool = False

    def __post_init__(self) -> None:
        if not self.name:
            self.name = self.stage_id

    def to_dict(self) -> Dict[str, Any]:
        """Convert stage to dictionary for serialization.

        Returns
        -------
        Dict[str, Any]
            Stage description (the function is represented by its name)
        """
        return {
            "stage_id": self.stage_id,
            "name": self.name,
            "func": getattr(self.func, "__name__", repr(self.func)),
            "depends_on": list(self.depends_on),
            "optional": self.optional,
        }
