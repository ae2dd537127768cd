"""I/O utilities for morphnorm.

Provides run logging, CSV loading and joining of screen tables, feature
selection, and report writing.
"""

from .logging import get_logger, get_run_log_path, log_json, log_yaml
from .csv import (
    DEFAULT_ANNOTATION_KEYS,
    DEFAULT_IMAGE_KEYS,
    ensure_output_dir,
    join_screen_tables,
    load_table,
    select_feature_columns,
    write_dataframe,
    write_json,
)

__all__ = [
    # Logging
    "get_logger",
    "get_run_log_path",
    "log_json",
    "log_yaml",
    # CSV I/O
    "DEFAULT_ANNOTATION_KEYS",
    "DEFAULT_IMAGE_KEYS",
    "ensure_output_dir",
    "join_screen_tables",
    "load_table",
    "select_feature_columns",
    "write_dataframe",
    "write_json",
]
