"""Summary statistics of effective doses across replicate curves."""

from __future__ import annotations

import logging
from typing import Sequence

import numpy as np
import pandas as pd
from scipy.stats import t as t_dist

from cbassed50.doseresponse._eds import ED_LEVELS
from cbassed50.doseresponse._grouping import _as_list, require_columns

logger = logging.getLogger(__name__)


def _summary_columns(level: int) -> list[str]:
    return [f"Mean_ED{level}", f"SD_ED{level}", f"SE_ED{level}", f"Conf_Int_{level}"]


def summarize_eds(
    eds: pd.DataFrame,
    group_by: str | Sequence[str],
    *,
    conf_level: float = 0.95,
) -> pd.DataFrame:
    """Mean, SD, SE and CI half-width of ED5/ED50/ED95 per group.

    For each level ``x`` in 5, 50, 95 and each combination of *group_by*:

    - ``Mean_EDx``: arithmetic mean
    - ``SD_EDx``: sample standard deviation (``ddof=1``)
    - ``SE_EDx``: ``SD / sqrt(n)``
    - ``Conf_Int_x``: ``t(1 - alpha/2, n - 1) * SE``, the half-width of
      the confidence interval of the mean

    All derived values are rounded to 2 decimals.  A group with a single
    record has no spread estimate: its SD, SE and CI are ``NaN``.
    A missing ED value makes every statistic of that level ``NaN`` for
    its group, and a warning names the affected groups.

    Parameters
    ----------
    eds : DataFrame
        One row per curve with ``ED5``, ``ED50``, ``ED95`` and the
        *group_by* columns, e.g. the output of :func:`calculate_eds`.
    group_by : str or sequence of str
        Categorical columns to aggregate over (typically the grouping
        properties without the curve identity).
    conf_level : float
        Confidence level of the interval (default 0.95).

    Returns
    -------
    DataFrame

    Validates against: CBASSED50 fit_curve_eds()
    """
    if not (0.0 < conf_level < 1.0):
        raise ValueError(f"conf_level must be in (0, 1), got {conf_level}")
    keys = _as_list(group_by)
    if not keys:
        raise ValueError("at least one group_by column is required")
    ed_cols = [f"ED{level}" for level in ED_LEVELS]
    require_columns(eds, keys, "group_by column(s)")
    require_columns(eds, ed_cols, "effective dose column(s)")

    grouped = eds.groupby(keys, observed=True, sort=False, dropna=False)
    n = grouped.size()
    out = pd.DataFrame(index=n.index)
    # t quantile is NaN at df = 0
    with np.errstate(invalid="ignore"):
        q = pd.Series(t_dist.ppf(1.0 - (1.0 - conf_level) / 2.0, n - 1), index=n.index)
    for level, col in zip(ED_LEVELS, ed_cols):
        mean_col, sd_col, se_col, ci_col = _summary_columns(level)
        incomplete = grouped[col].count() < n
        if incomplete.any():
            logger.warning(
                "%d group(s) have missing %s values; statistics are NaN for: %s",
                int(incomplete.sum()), col,
                ", ".join(map(str, n.index[incomplete.to_numpy()].tolist())),
            )
        sd = grouped[col].std(ddof=1).mask(incomplete)
        se = sd / np.sqrt(n)
        out[mean_col] = grouped[col].mean().mask(incomplete)
        out[sd_col] = sd
        out[se_col] = se
        out[ci_col] = q * se

    single = n[n < 2]
    if len(single):
        logger.warning(
            "%d group(s) have a single ED record; SD, SE and confidence "
            "interval are undefined (NaN) for: %s",
            len(single), ", ".join(map(str, single.index.tolist())),
        )

    return out.round(2).reset_index()
