"""In-memory pipeline execution engine."""

import time
from collections import deque
from typing import Any, Callable, Dict, Iterable, List, Optional

from .logger import PipelineLogger
from .stage import Stage


class InMemoryExecutor:
    """Pipeline executor that runs Python stage functions in dependency order.

    Every stage runs to completion before the next one starts, so a stage
    only ever observes the complete results of the stages before it.

    Parameters
    ----------
    logger : PipelineLogger, optional
        Logger instance

    Attributes
    ----------
    stages : Dict[str, Stage]
        Registered stages by ID
    completed_stages : List[str]
        Stage IDs that completed, in execution order
    skipped_stages : List[str]
        Optional stage IDs that were skipped
    durations : Dict[str, float]
        Execution time per completed stage in seconds

    Example
    -------
    >>> executor = InMemoryExecutor()
    >>> executor.register_stage("stabilize", stabilize_func)
    >>> executor.register_stage("analyze", analyze_func, depends_on=["stabilize"])
    >>> results = executor.run(table=table)
    """

    def __init__(self, logger: Optional[PipelineLogger] = None):
        self.logger = logger
        self.stages: Dict[str, Stage] = {}
        self.completed_stages: List[str] = []
        self.skipped_stages: List[str] = []
        self.durations: Dict[str, float] = {}

    def register_stage(
        self,
        stage_id: str,
        func: Callable,
        depends_on: Optional[List[str]] = None,
        name: Optional[str] = None,
        optional: bool = False,
    ) -> None:
        """Register a stage function.

        Parameters
        ----------
        stage_id : str
            Stage identifier
        func : Callable
            Stage function to execute
        depends_on : List[str], optional
            List of stage IDs this stage depends on
        name : str, optional
            Human-readable stage name
        optional : bool
            Whether the stage may be skipped via ``run(skip=...)``
        """
        if stage_id in self.stages:
            raise ValueError(f"Stage '{stage_id}' is already registered")
        self.stages[stage_id] = Stage(
            stage_id=stage_id,
            func=func,
            name=name or stage_id,
            depends_on=list(depends_on or []),
            optional=optional,
        )

    def get_execution_order(self) -> List[str]:
        """Compute stage execution order via topological sort.

        Uses Kahn's algorithm; stages without mutual dependencies keep their
        registration order.

        Raises
        ------
        ValueError
            If a dependency is unknown or circular
        """
        for stage_id, stage in self.stages.items():
            for dep in stage.depends_on:
                if dep not in self.stages:
                    raise ValueError(
                        f"Stage '{stage_id}' depends on unknown stage '{dep}'"
                    )

        in_degree = {stage_id: len(stage.depends_on) for stage_id, stage in self.stages.items()}
        queue = deque([sid for sid, degree in in_degree.items() if degree == 0])
        order = []

        while queue:
            stage_id = queue.popleft()
            order.append(stage_id)

            for other_id, other_stage in self.stages.items():
                if stage_id in other_stage.depends_on:
                    in_degree[other_id] -= 1
                    if in_degree[other_id] == 0:
                        queue.append(other_id)

        if len(order) != len(self.stages):
            raise ValueError("Circular dependency detected")

        return order

    def run(self, skip: Optional[Iterable[str]] = None, **kwargs) -> Dict[str, Any]:
        """Execute all registered stages in order.

        Parameters
        ----------
        skip : Iterable[str], optional
            Optional stages to skip; their result is recorded as None
        **kwargs
            Arguments passed to each stage function

        Returns
        -------
        Dict[str, Any]
            Map of stage_id to stage result

        Raises
        ------
        ValueError
            If a non-optional stage is asked to be skipped
        """
        skip = set(skip or [])
        for stage_id in skip:
            stage = self.stages.get(stage_id)
            if stage is not None and not stage.optional:
                raise ValueError(f"Stage '{stage_id}' is not optional and cannot be skipped")

        order = self.get_execution_order()
        results: Dict[str, Any] = {}

        if self.logger:
            self.logger.log_info(f"Pipeline execution plan: {' -> '.join(order)}")

        for stage_id in order:
            stage = self.stages[stage_id]
            if stage_id in skip:
                if self.logger:
                    self.logger.log_info(f"[SKIP] Stage {stage_id}")
                results[stage_id] = None
                self.skipped_stages.append(stage_id)
                continue

            if self.logger:
                self.logger.log_stage_start(stage_id, stage.name)

            start_time = time.time()
            try:
                result = stage.func(**kwargs, stage_results=results)
            except Exception as e:
                if self.logger:
                    self.logger.log_stage_error(stage_id, str(e))
                raise

            duration = time.time() - start_time
            results[stage_id] = result
            self.completed_stages.append(stage_id)
            self.durations[stage_id] = duration

            if self.logger:
                self.logger.log_stage_complete(stage_id, duration)

        return results
