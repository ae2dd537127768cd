"""Run logging for morphnorm.

File loggers for normalization runs, plus append-only run records
(JSON lines for reports, YAML documents for resolved configs).
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, Tuple, Union

import yaml

PathLike = Union[str, Path]

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def get_run_log_path(out_dir: PathLike, name: str = "normalize") -> Path:
    """Return a timestamped log path inside out_dir.

    Example: out/ -> out/normalize_20251209_080530.log
    """
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return Path(out_dir) / f"{name}_{timestamp}.log"


def get_logger(
    name: str,
    log_path: PathLike,
    level: int = logging.INFO,
    propagate: bool = True,
) -> Tuple[logging.Logger, Path]:
    """Attach a file handler for log_path to the named logger.

    Existing file handlers on the logger are replaced; other handlers
    (e.g. console) are kept.

    Parameters
    ----------
    name : str
        Logger name (e.g. "morphnorm").
    log_path : PathLike
        Log file path; parent directories are created.
    level : int
        Logging level (default: INFO).
    propagate : bool
        Whether records also reach ancestor loggers.

    Returns
    -------
    Tuple[logging.Logger, Path]
        The logger and the resolved log path.
    """
    path = Path(log_path)
    path.parent.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.propagate = propagate
    for handler in list(logger.handlers):
        if isinstance(handler, logging.FileHandler):
            handler.close()
            logger.removeHandler(handler)
    handler = logging.FileHandler(path, mode="a", encoding="utf-8")
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT))
    logger.addHandler(handler)
    return logger, path


def _prepare_log_destination(log_path: PathLike) -> Path:
    path = Path(log_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def log_json(log_path: PathLike, record: dict[str, Any]) -> None:
    """Append one JSON line (e.g. a run report) to log_path."""
    path = _prepare_log_destination(log_path)
    with path.open("a", encoding="utf-8") as handle:
        handle.write(json.dumps(record, default=str))
        handle.write("\n")


def log_yaml(
    log_path: Optional[PathLike],
    record: dict[str, Any],
    *,
    logger: logging.Logger | None = None,
) -> None:
    """Append a YAML document to log_path, or emit it through logger.

    Parameters
    ----------
    log_path : PathLike, optional
        Path to log file. Ignored when logger is given.
    record : dict
        Dictionary to serialize as YAML (e.g. a resolved config).
    logger : logging.Logger, optional
        If provided, log to this logger instead of file.
    """
    yaml_text = yaml.safe_dump(record, sort_keys=False).rstrip("\n")
    message = f"{yaml_text}\n---"
    if logger is not None:
        logger.info("%s", message)
        return
    if log_path is None:
        raise ValueError("log_path is required when no logger is given")

    path = _prepare_log_destination(log_path)
    with path.open("a", encoding="utf-8") as handle:
        handle.write(message)
        handle.write("\n")
