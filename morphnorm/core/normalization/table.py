"""Table abstraction threaded through the normalization stages.

A ``TableView`` pairs a ``pandas.DataFrame`` with the ordered ``FeatureSet``
of numeric feature columns; every other column is metadata. Stages never
mutate the frame they receive: each returns a new ``TableView`` over a
frame it owns, with the same rows in the same order.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence

import numpy as np
import pandas as pd

from .errors import MissingColumnError


class FeatureSet:
    """Ordered, duplicate-free set of feature column names.

    The set can only shrink: ``remove`` returns a new, smaller set and
    there is no way to add names.

    Parameters
    ----------
    names : Iterable[str]
        Feature column names in their canonical order

    Example
    -------
    >>> features = FeatureSet(["Cells_Area", "Nuclei_Intensity"])
    >>> features.remove(["Cells_Area"]).names
    ('Nuclei_Intensity',)
    """

    def __init__(self, names: Iterable[str]):
        names = [str(n) for n in names]
        seen = set()
        duplicates = []
        for name in names:
            if name in seen:
                duplicates.append(name)
            seen.add(name)
        if duplicates:
            raise ValueError(f"Duplicate feature names: {sorted(set(duplicates))}")
        self._names = tuple(names)

    @property
    def names(self) -> tuple:
        return self._names

    def remove(self, names: Iterable[str]) -> "FeatureSet":
        """Return a new set without ``names`` (unknown names are ignored)."""
        drop = set(names)
        return FeatureSet(n for n in self._names if n not in drop)

    def __iter__(self) -> Iterator[str]:
        return iter(self._names)

    def __len__(self) -> int:
        return len(self._names)

    def __contains__(self, name: object) -> bool:
        return name in self._names

    def __eq__(self, other: object) -> bool:
        if isinstance(other, FeatureSet):
            return self._names == other._names
        return NotImplemented

    def __repr__(self) -> str:
        return f"FeatureSet({list(self._names)!r})"


class TableView:
    """A rectangular dataset with a designated ordered set of feature columns.

    Parameters
    ----------
    data : pd.DataFrame
        Rows are objects, columns are features and metadata
    features : FeatureSet or Sequence[str]
        Feature columns; must exist and be numeric
    copy : bool
        Copy ``data`` so the view owns its frame (default: True)

    Raises
    ------
    MissingColumnError
        If a feature column is absent
    ValueError
        If a feature column is not numeric
    """

    def __init__(
        self,
        data: pd.DataFrame,
        features: Any,
        copy: bool = True,
    ):
        if not isinstance(features, FeatureSet):
            features = FeatureSet(features)
        missing = [f for f in features if f not in data.columns]
        if missing:
            raise MissingColumnError(missing, context="feature columns")
        non_numeric = [
            f for f in features if not pd.api.types.is_numeric_dtype(data[f])
            or pd.api.types.is_bool_dtype(data[f])
        ]
        if non_numeric:
            raise ValueError(f"Feature columns must be numeric: {non_numeric}")
        self._data = data.copy() if copy else data
        self._features = features

    @property
    def data(self) -> pd.DataFrame:
        return self._data

    @property
    def features(self) -> FeatureSet:
        return self._features

    @property
    def n_rows(self) -> int:
        return len(self._data)

    @property
    def metadata_columns(self) -> List[str]:
        """All non-feature columns, in frame order."""
        return [c for c in self._data.columns if c not in self._features]

    def require_columns(self, columns: Iterable[Optional[str]], context: str = "table") -> None:
        """Raise ``MissingColumnError`` if any of ``columns`` is absent."""
        missing = [c for c in columns if c is not None and c not in self._data.columns]
        if missing:
            raise MissingColumnError(missing, context=context)

    def values(self, feature: str) -> np.ndarray:
        """Feature column as a float array."""
        return self._data[feature].to_numpy(dtype=float)

    def batch_labels(self, batch_key: str) -> pd.Series:
        """Batch column, validated to have no missing values."""
        self.require_columns([batch_key], context="batch key")
        labels = self._data[batch_key]
        if labels.isna().any():
            raise ValueError(
                f"Batch column '{batch_key}' has {int(labels.isna().sum())} missing values"
            )
        return labels

    def batch_indices(self, batch_key: str) -> Dict[Any, np.ndarray]:
        """Map each batch to the positional row indices it contains.

        Batches are returned in sorted order so downstream iteration is
        independent of row order.
        """
        labels = self.batch_labels(batch_key)
        groups = pd.Series(np.arange(len(labels)), index=labels.to_numpy()).groupby(
            level=0, sort=True
        )
        return {batch: idx.to_numpy() for batch, idx in groups}

    def with_columns(
        self,
        columns: Dict[str, Any],
        features: Optional[Any] = None,
    ) -> "TableView":
        """Return a new view with ``columns`` replaced or added.

        Parameters
        ----------
        columns : dict
            Column name to array of length ``n_rows``
        features : FeatureSet or Sequence[str], optional
            New feature set; must be a subset of the current one

        Returns
        -------
        TableView
            New view owning a copied frame
        """
        data = self._data.copy()
        for name, values in columns.items():
            data[name] = values
        new_features = self._features if features is None else features
        if not isinstance(new_features, FeatureSet):
            new_features = FeatureSet(new_features)
        extra = [f for f in new_features if f not in self._features]
        if extra:
            raise ValueError(f"Feature set can only shrink; unknown features: {extra}")
        return TableView(data, new_features, copy=False)

    def drop_features(self, names: Iterable[str]) -> "TableView":
        """Return a new view without the given feature columns."""
        names = [n for n in names if n in self._features]
        if not names:
            return TableView(self._data, self._features, copy=True)
        data = self._data.drop(columns=names)
        return TableView(data, self._features.remove(names), copy=False)

    def to_frame(self) -> pd.DataFrame:
        """Copy of the underlying frame."""
        return self._data.copy()

    def __len__(self) -> int:
        return self.n_rows

    def __repr__(self) -> str:
        return (
            f"TableView(n_rows={self.n_rows}, n_features={len(self._features)}, "
            f"n_metadata={len(self.metadata_columns)})"
        )


def build_control_mask(
    table: TableView,
    column: str,
    control_values: Sequence[Any],
) -> np.ndarray:
    """Evaluate the control predicate ``table[column] in control_values``.

    Parameters
    ----------
    table : TableView
        Input table
    column : str
        Compound identity column
    control_values : Sequence
        Identifiers of the negative-control population (e.g. ["DMSO"])

    Returns
    -------
    np.ndarray
        Boolean mask, one value per row

    Raises
    ------
    MissingColumnError
        If ``column`` is absent
    """
    table.require_columns([column], context="control predicate")
    return table.data[column].isin(list(control_values)).to_numpy(dtype=bool)


def add_control_flag(
    table: TableView,
    column: str,
    control_values: Sequence[Any],
    flag_column: str = "is_control",
) -> TableView:
    """Return a new view with the derived boolean control column added."""
    mask = build_control_mask(table, column, control_values)
    if flag_column in table.features:
        raise ValueError(f"Control flag column '{flag_column}' clashes with a feature")
    return table.with_columns({flag_column: mask})
