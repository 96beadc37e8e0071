"""Evaluation of fitted models over a stimulus grid."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Sequence

import numpy as np
import pandas as pd
from numpy.typing import NDArray

from cbassed50.doseresponse._common import FittedModel
from cbassed50.doseresponse._config import DEFAULT_COLUMNS, ColumnConfig
from cbassed50.doseresponse._eds import _label

logger = logging.getLogger(__name__)


def define_stimulus_grid(
    values: Sequence[float] | NDArray[np.floating],
    n: int = 100,
) -> NDArray[np.floating]:
    """Evenly spaced stimulus values from ``min(values)`` to ``max(values) + 1``.

    The extra unit past the highest observed stimulus leaves room to draw
    the tail of each curve.

    Examples
    --------
    >>> grid = define_stimulus_grid([10, 15, 20, 25, 30])
    >>> len(grid), grid[0], grid[-1]
    (100, 10.0, 31.0)
    """
    values = np.asarray(values, dtype=np.float64)
    if values.size == 0:
        raise ValueError("values must not be empty")
    if n < 2:
        raise ValueError(f"n must be at least 2, got {n}")
    return np.linspace(np.min(values), np.max(values) + 1.0, n)


def predict_curves(
    models: Mapping[str, FittedModel],
    grid: Sequence[float] | NDArray[np.floating],
    *,
    conf_level: float = 0.95,
    columns: ColumnConfig = DEFAULT_COLUMNS,
) -> pd.DataFrame:
    """Predicted response with confidence bounds for every curve.

    Parameters
    ----------
    models : mapping
        Group key to fitted model, e.g. the result of :func:`fit_drms`.
    grid : array
        Stimulus values, e.g. from :func:`define_stimulus_grid`.
    conf_level : float
        Confidence level of the bounds (default 0.95).

    Returns
    -------
    DataFrame
        Long format, one row per (group, curve, grid point), with columns
        ``GroupingProperty`` (group key, extended by the curve identity
        when present), the curve-identity column when present,
        ``Temperature`` rounded to 2 decimals, ``PredictedPAM``, ``Lower``
        and ``Upper``.

    Validates against: R predict(drm, interval = "confidence", level = 0.95)
    """
    grid = np.asarray(grid, dtype=np.float64)
    rounded = np.round(grid, 2)
    has_curves = any(m.has_curve_id for m in models.values())

    frames = []
    for group, model in models.items():
        for curve in model.curves:
            fit, lower, upper = model.predict_interval(grid, curve, conf_level=conf_level)
            frame = {columns.group_key: _label(group, curve, columns)}
            if has_curves:
                frame[columns.curve_id] = curve
            frame.update({
                columns.stimulus: rounded,
                columns.prediction: fit,
                columns.lower: lower,
                columns.upper: upper,
            })
            frames.append(pd.DataFrame(frame))

    names = (
        [columns.group_key]
        + ([columns.curve_id] if has_curves else [])
        + [columns.stimulus, columns.prediction, columns.lower, columns.upper]
    )
    if not frames:
        logger.warning("No fitted models to predict from")
        return pd.DataFrame(columns=names)
    return pd.concat(frames, ignore_index=True)[names]
