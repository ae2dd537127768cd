"""Pipeline orchestration module.

Provides in-memory stage execution with dependency resolution, stage
barriers, timing and structured logging.

Example Usage
-------------
>>> from morphnorm.pipeline import InMemoryExecutor, PipelineLogger
>>> logger = PipelineLogger("logs/")
>>> logger.setup()
>>> executor = InMemoryExecutor(logger)
>>> executor.register_stage("stabilize", stabilize_func)
>>> executor.register_stage("analyze", analyze_func, depends_on=["stabilize"])
>>> results = executor.run(table=table)
"""

__version__ = "1.0.0"

# Stage representation
from .stage import Stage

# Logging
from .logger import (
    ColoredFormatter,
    PipelineLogger,
)

# Execution
from .executor import InMemoryExecutor

__all__ = [
    # Version
    "__version__",
    # Stage
    "Stage",
    # Logging
    "ColoredFormatter",
    "PipelineLogger",
    # Execution
    "InMemoryExecutor",
]
