"""Composite grouping keys that partition a dataset into fitting cohorts."""

from __future__ import annotations

from typing import Sequence

import numpy as np
import pandas as pd

from cbassed50.doseresponse._config import DEFAULT_COLUMNS, ColumnConfig
from cbassed50.doseresponse._errors import SchemaError

MIN_STIMULUS_LEVELS = 4


def _as_list(names: str | Sequence[str]) -> list[str]:
    if isinstance(names, str):
        return [names]
    return list(names)


def _key_text(values: pd.Series) -> pd.Series:
    """Values as key text; integer-valued floats drop the trailing ``.0``."""
    if not pd.api.types.is_float_dtype(values):
        return values.astype(str)
    return values.map(
        lambda v: str(int(v)) if np.isfinite(v) and float(v).is_integer() else str(v)
    )


def require_columns(dataset: pd.DataFrame, names: Sequence[str], what: str) -> None:
    """Raise :class:`SchemaError` naming every column of *names* not in *dataset*."""
    missing = [name for name in names if name not in dataset.columns]
    if missing:
        raise SchemaError(f"missing {what}: {', '.join(map(str, missing))}", missing)


def build_group_key(
    dataset: pd.DataFrame,
    attribute_names: str | Sequence[str],
    separator: str | None = None,
    *,
    columns: ColumnConfig = DEFAULT_COLUMNS,
) -> pd.DataFrame:
    """Add a categorical grouping-key column built from *attribute_names*.

    Each row's key is its values for the named attributes, in the given
    order, joined by *separator* (``columns.separator`` by default).  The
    input frame is not modified; a copy with the extra
    ``columns.group_key`` column is returned in the same row order.
    Whole-number floats are written without a decimal part (``420.0``
    becomes ``"420"``), so keys do not depend on whether a column was
    read as integer or float.

    Parameters
    ----------
    dataset : DataFrame
        Observations.
    attribute_names : str or sequence of str
        Columns whose values make up the key, e.g.
        ``["Site", "Condition", "Species", "Timepoint"]``.
    separator : str or None
        Join string.  Defaults to ``columns.separator`` (``"_"``).

    Returns
    -------
    DataFrame

    Examples
    --------
    >>> df = pd.DataFrame({"Site": ["A", "B"], "Timepoint": [420, 1080]})
    >>> build_group_key(df, ["Site", "Timepoint"])["GroupingProperty"].tolist()
    ['A_420', 'B_1080']
    """
    if not isinstance(dataset, pd.DataFrame):
        raise TypeError(f"dataset must be a pandas DataFrame, got {type(dataset).__name__}")
    names = _as_list(attribute_names)
    if not names:
        raise ValueError("at least one grouping attribute is required")
    require_columns(dataset, names, "grouping attribute(s)")

    sep = columns.separator if separator is None else separator
    key = _key_text(dataset[names[0]])
    for name in names[1:]:
        key = key + sep + _key_text(dataset[name])

    out = dataset.copy()
    out[columns.group_key] = pd.Categorical(key, categories=pd.unique(key))
    return out


def count_stimulus_levels(
    dataset: pd.DataFrame,
    grouping_properties: str | Sequence[str],
    *,
    columns: ColumnConfig = DEFAULT_COLUMNS,
) -> pd.Series:
    """Number of distinct stimulus values per grouping key.

    Groups with fewer than :data:`MIN_STIMULUS_LEVELS` are unlikely to
    produce a usable fit and can be filtered out before :func:`fit_drms`.
    """
    require_columns(dataset, [columns.stimulus], "stimulus column")
    keyed = build_group_key(dataset, grouping_properties, columns=columns)
    return (
        keyed.groupby(columns.group_key, observed=True, sort=False)[columns.stimulus]
        .nunique()
        .rename("n_levels")
    )
