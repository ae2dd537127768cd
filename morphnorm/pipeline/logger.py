"""Stage-aware logging for normalization runs."""

import logging
import sys
from pathlib import Path
from typing import Dict, Iterable, Optional

from morphnorm.io.logging import LOG_DATEFMT, LOG_FORMAT, get_run_log_path

LEVEL_COLORS: Dict[str, str] = {
    "DEBUG": "\033[0;36m",
    "INFO": "\033[0;34m",
    "WARNING": "\033[1;33m",
    "ERROR": "\033[0;31m",
    "CRITICAL": "\033[1;31m",
}
RESET = "\033[0m"


class ColoredFormatter(logging.Formatter):
    """Console formatter that colors the level name.

    The record is copied before coloring so file handlers sharing the
    record still see the plain level name.
    """

    def __init__(
        self,
        fmt: str,
        datefmt: Optional[str] = None,
        colors: Optional[Dict[str, str]] = None,
    ):
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.colors = LEVEL_COLORS if colors is None else colors

    def format(self, record):
        record = logging.makeLogRecord(record.__dict__)
        color = self.colors.get(record.levelname)
        if color:
            record.levelname = f"{color}{record.levelname}{RESET}"
        return super().format(record)


class PipelineLogger:
    """Logger for stage events of a normalization run.

    Writes stage start/complete/error events and per-unit failures to an
    optional timestamped file under ``log_dir`` and, when enabled, to a
    colored console handler. With neither, records still propagate to
    ancestor loggers (the CLI attaches its run log file to ``morphnorm``).

    Parameters
    ----------
    log_dir : str, optional
        Directory for ``pipeline_<timestamp>.log``; no file when None
    log_level : str
        Logging level name
    log_name : str
        Logger name
    console : bool
        Whether to attach a console handler

    Example
    -------
    >>> logger = PipelineLogger("out/logs", console=False)
    >>> logger.setup()
    >>> logger.log_stage_start("center", "Batch centering")
    >>> logger.log_stage_complete("center", 0.42)
    >>> logger.close()
    """

    COLORS = LEVEL_COLORS

    def __init__(
        self,
        log_dir: Optional[str] = None,
        log_level: str = "INFO",
        log_name: str = "morphnorm",
        console: bool = True,
    ):
        self.log_dir: Optional[Path] = None
        self.log_file: Optional[Path] = None
        if log_dir is not None:
            self.log_dir = Path(log_dir)
            self.log_dir.mkdir(parents=True, exist_ok=True)
            self.log_file = get_run_log_path(self.log_dir, "pipeline")

        self.console = console
        self.log_level = getattr(logging, log_level.upper())
        self.logger = logging.getLogger(log_name)
        self.logger.setLevel(self.log_level)
        self.close()

    def setup(self) -> None:
        """Attach the file and console handlers."""
        if self.log_file is not None:
            handler = logging.FileHandler(self.log_file, mode="w")
            handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT))
            self._add_handler(handler)

        if self.console:
            handler = logging.StreamHandler(sys.stdout)
            handler.setFormatter(
                ColoredFormatter("%(asctime)s %(levelname)s %(message)s", "%H:%M:%S")
            )
            self._add_handler(handler)

    def _add_handler(self, handler: logging.Handler) -> None:
        handler.setLevel(self.log_level)
        self.logger.addHandler(handler)

    def close(self) -> None:
        """Flush and detach all handlers."""
        for handler in list(self.logger.handlers):
            handler.close()
            self.logger.removeHandler(handler)

    def log_stage_start(self, stage_id: str, stage_name: str) -> None:
        self.logger.info(f"--- Starting Stage {stage_id}: {stage_name}")

    def log_stage_complete(self, stage_id: str, duration: float) -> None:
        self.logger.info(f"Stage {stage_id} completed in {self.format_duration(duration)}")

    def log_stage_error(self, stage_id: str, error: str) -> None:
        self.logger.error(f"Stage {stage_id} failed: {error}")

    def log_unit_failures(self, stage_id: str, failures: Iterable) -> None:
        """Log each failed unit of a stage as a warning.

        Parameters
        ----------
        stage_id : str
            Stage identifier
        failures : Iterable[UnitFailure]
            Failed units; nothing is logged when empty
        """
        failures = list(failures)
        if not failures:
            return
        self.logger.warning(f"Stage {stage_id}: {len(failures)} unit(s) failed")
        for failure in failures:
            self.logger.warning(f"  - [{failure.kind}] {failure.message}")

    def log_info(self, message: str) -> None:
        self.logger.info(message)

    @staticmethod
    def format_duration(seconds: float) -> str:
        """Format a duration, e.g. "350ms", "45.2s", "2m 5s" or "2h 1m"."""
        if seconds < 1:
            return f"{seconds * 1000:.0f}ms"
        if seconds < 60:
            return f"{seconds:.1f}s"
        minutes, secs = divmod(int(seconds), 60)
        if minutes < 60:
            return f"{minutes}m {secs}s"
        hours, minutes = divmod(minutes, 60)
        return f"{hours}h {minutes}m"
