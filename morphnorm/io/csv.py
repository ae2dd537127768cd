"""CSV I/O utilities for morphnorm.

Provides loading of object-level screen tables, the join of image,
object and ground-truth annotation tables, feature column selection, and
writing of normalized tables and diagnostic reports.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

import pandas as pd

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

# Join keys of the three screen sources
DEFAULT_IMAGE_KEYS = ["TableNumber", "ImageNumber"]
DEFAULT_ANNOTATION_KEYS = ["Metadata_Compound", "Metadata_Concentration"]


def ensure_output_dir(path: PathLike) -> Path:
    """Create the directory at path if it does not exist and return it.

    Parameters
    ----------
    path : PathLike
        Directory path to create.

    Returns
    -------
    Path
        The created/existing directory path.
    """
    directory = Path(path)
    directory.mkdir(parents=True, exist_ok=True)
    return directory


def _validate_columns(
    df: pd.DataFrame,
    required_columns: Iterable[str],
    context: str,
) -> None:
    """Validate that required columns are present.

    Raises
    ------
    ValueError
        If any required columns are missing.
    """
    missing = [col for col in required_columns if col not in df.columns]
    if missing:
        raise ValueError(f"{context} missing columns: {missing}")


def load_table(
    path: PathLike,
    required_columns: Optional[List[str]] = None,
    **read_kwargs: Any,
) -> pd.DataFrame:
    """Read an object-level table from CSV.

    Parameters
    ----------
    path : PathLike
        Path to the CSV file.
    required_columns : List[str], optional
        Columns that must be present.
    **read_kwargs
        Passed to ``pandas.read_csv``.

    Returns
    -------
    pd.DataFrame
        Loaded table.

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    ValueError
        If the table is empty or required columns are missing.
    """
    csv_path = Path(path)
    if not csv_path.exists():
        raise FileNotFoundError(f"Table not found: {csv_path}")
    df = pd.read_csv(csv_path, **read_kwargs)
    if df.empty:
        raise ValueError(f"Table {csv_path} is empty")
    if required_columns:
        _validate_columns(df, required_columns, f"Table {csv_path}")
    logger.info("Loaded %s: %d rows x %d columns", csv_path, len(df), df.shape[1])
    return df


def join_screen_tables(
    objects: pd.DataFrame,
    images: pd.DataFrame,
    annotations: Optional[pd.DataFrame] = None,
    image_keys: Sequence[str] = tuple(DEFAULT_IMAGE_KEYS),
    annotation_keys: Sequence[str] = tuple(DEFAULT_ANNOTATION_KEYS),
    annotation_on: Optional[Sequence[str]] = None,
) -> pd.DataFrame:
    """Join per-object measurements with image metadata and annotations.

    Objects are inner-joined to images on ``image_keys`` (every object
    belongs to an image). The result is left-joined to the ground-truth
    annotations on compound and concentration, so objects of unannotated
    treatments (e.g. controls) are kept.

    Parameters
    ----------
    objects : pd.DataFrame
        One row per detected object, keyed by ``image_keys``.
    images : pd.DataFrame
        One row per image with plate/well/compound/concentration metadata.
    annotations : pd.DataFrame, optional
        Ground-truth table (compound, concentration, mechanism of action).
    image_keys : Sequence[str]
        Keys shared by objects and images.
    annotation_keys : Sequence[str]
        Compound and concentration columns in the joined object/image table.
    annotation_on : Sequence[str], optional
        Matching columns in ``annotations`` (default: same as
        ``annotation_keys``).

    Returns
    -------
    pd.DataFrame
        Joined table, one row per object, in object order.

    Raises
    ------
    ValueError
        If join keys are missing or images are duplicated.
    """
    image_keys = list(image_keys)
    _validate_columns(objects, image_keys, "Object table")
    _validate_columns(images, image_keys, "Image table")
    if images.duplicated(subset=image_keys).any():
        raise ValueError(f"Image table has duplicate keys on {image_keys}")

    joined = objects.merge(images, on=image_keys, how="inner", validate="many_to_one")
    n_unmatched = len(objects) - len(joined)
    if n_unmatched:
        logger.warning("%d object rows have no matching image and were dropped", n_unmatched)

    if annotations is None:
        return joined.reset_index(drop=True)

    left_on = list(annotation_keys)
    right_on = list(annotation_on) if annotation_on is not None else left_on
    _validate_columns(joined, left_on, "Joined object/image table")
    _validate_columns(annotations, right_on, "Annotation table")
    if annotations.duplicated(subset=right_on).any():
        raise ValueError(f"Annotation table has duplicate keys on {right_on}")

    joined = joined.merge(
        annotations,
        left_on=left_on,
        right_on=right_on,
        how="left",
        validate="many_to_one",
        suffixes=("", "_annotation"),
    )
    if right_on != left_on:
        joined = joined.drop(columns=[c for c in right_on if c not in left_on])
    return joined.reset_index(drop=True)


def select_feature_columns(
    df: pd.DataFrame,
    features: Optional[Iterable[str]] = None,
    prefixes: Optional[Iterable[str]] = None,
    exclude: Optional[Iterable[str]] = None,
) -> List[str]:
    """Resolve the explicit feature list for a table.

    Exactly one selection mode applies, in this order: an explicit
    ``features`` list, then name ``prefixes``, then every numeric column
    not in ``exclude``.

    Parameters
    ----------
    df : pd.DataFrame
        Input table.
    features : Iterable[str], optional
        Explicit feature names.
    prefixes : Iterable[str], optional
        Name prefixes (e.g. ["Cells_", "Nuclei_"]).
    exclude : Iterable[str], optional
        Columns never treated as features (metadata).

    Returns
    -------
    List[str]
        Feature column names in table order (explicit lists keep their order).

    Raises
    ------
    ValueError
        If explicit features are missing or no feature is found.
    """
    exclude = set(exclude or [])
    if features is not None:
        selected = [str(f) for f in features]
        _validate_columns(df, selected, "Table")
    elif prefixes:
        prefixes = tuple(prefixes)
        selected = [
            c for c in df.columns
            if str(c).startswith(prefixes) and c not in exclude
        ]
    else:
        selected = [
            c for c in df.columns
            if c not in exclude
            and pd.api.types.is_numeric_dtype(df[c])
            and not pd.api.types.is_bool_dtype(df[c])
        ]
    if not selected:
        raise ValueError("No feature columns selected")
    return selected


def write_dataframe(df: pd.DataFrame, path: PathLike, *, index: bool = False) -> Path:
    """Write DataFrame to path ensuring the parent directory exists.

    Parameters
    ----------
    df : pd.DataFrame
        DataFrame to write.
    path : PathLike
        Output path.
    index : bool
        Whether to write row index (default: False).

    Returns
    -------
    Path
        The output path.
    """
    output_path = Path(path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(output_path, index=index)
    return output_path


def write_json(record: Dict[str, Any], path: PathLike) -> Path:
    """Write a dictionary as indented JSON, creating parent directories."""
    output_path = Path(path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(record, f, indent=2, default=str)
    return output_path
