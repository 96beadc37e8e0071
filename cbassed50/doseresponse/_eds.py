"""Effective dose (ED5 / ED50 / ED95) extraction from fitted models.

ED50 is read directly from the fitted coefficients.  ED5 and ED95 are
obtained by inverting the fitted curve at 5 % and 95 % of the decline
from the upper to the lower asymptote.  Standard errors use the delta
method.

Validates against: R drc::ED(type = "relative")
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Hashable, Sequence

import numpy as np
import pandas as pd

from cbassed50.doseresponse._common import FittedModel
from cbassed50.doseresponse._config import DEFAULT_COLUMNS, ColumnConfig
from cbassed50.doseresponse._models import PARAM_LABELS
from cbassed50.doseresponse._grouping import require_columns

logger = logging.getLogger(__name__)

ED_LEVELS = (5, 50, 95)


@dataclass(frozen=True)
class EDResult:
    """Effective dose with confidence interval."""

    estimate: float
    se: float
    ci_lower: float
    ci_upper: float
    percent: float
    conf_level: float
    method: str  # 'delta'


def _label(group: str | None, curve: Hashable | None, columns: ColumnConfig) -> str:
    """Output label: the group key, extended by the curve identity if any."""
    if curve is None:
        return str(group)
    return f"{group}{columns.separator}{curve}"


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def ed_interval(
    model: FittedModel,
    percent: float,
    curve: Hashable | None = None,
    *,
    conf_level: float = 0.95,
) -> EDResult:
    """Effective dose for one curve with a delta-method confidence interval.

    Parameters
    ----------
    model : FittedModel
        A fitted model.
    percent : float
        Decline from the upper asymptote, in percent (``50`` for ED50).
    curve : hashable or None
        Curve identity; may be omitted for single-curve models.
    conf_level : float
        Confidence level (default 0.95).

    Returns
    -------
    EDResult

    Validates against: R drc::ED(interval = "delta")
    """
    estimate = model.ed(percent, curve)
    se = model.ed_se(percent, curve)
    q = model.t_quantile(conf_level)

    if np.isfinite(estimate) and np.isfinite(se) and np.isfinite(q):
        ci_lower = float(estimate - q * se)
        ci_upper = float(estimate + q * se)
    else:
        ci_lower = float("nan")
        ci_upper = float("nan")

    return EDResult(
        estimate=estimate,
        se=se,
        ci_lower=ci_lower,
        ci_upper=ci_upper,
        percent=float(percent),
        conf_level=conf_level,
        method="delta",
    )


def effective_doses(
    model: FittedModel,
    levels: Sequence[float] = ED_LEVELS,
    *,
    conf_level: float = 0.95,
) -> pd.DataFrame:
    """Effective doses of every curve of *model* with standard errors.

    Returns a long table with columns ``curve, level, estimate, se, lower,
    upper``; ``curve`` is ``None`` for models without a curve identity.
    """
    rows = []
    for curve in model.curves:
        for level in levels:
            r = ed_interval(model, level, curve, conf_level=conf_level)
            rows.append({
                "curve": curve,
                "level": level,
                "estimate": r.estimate,
                "se": r.se,
                "lower": r.ci_lower,
                "upper": r.ci_upper,
            })
    return pd.DataFrame(rows, columns=["curve", "level", "estimate", "se", "lower", "upper"])


def extract_ed50(
    models: Mapping[str, FittedModel],
    *,
    columns: ColumnConfig = DEFAULT_COLUMNS,
) -> pd.DataFrame:
    """ED50 of every curve, read from the fitted coefficients.

    Returns
    -------
    DataFrame
        ``[GroupingProperty, ED50]`` (plus the curve-identity column when
        the models were fitted with one), rounded to 2 decimals.
    """
    ed50_label = PARAM_LABELS["ed50"]
    rows = []
    has_curves = any(m.has_curve_id for m in models.values())
    for group, model in models.items():
        for (param, curve), value in model.coefficients().items():
            if param != ed50_label:
                continue
            row = {columns.group_key: _label(group, curve, columns)}
            if has_curves:
                row[columns.curve_id] = curve
            row["ED50"] = round(value, 2)
            rows.append(row)

    names = [columns.group_key] + ([columns.curve_id] if has_curves else []) + ["ED50"]
    return pd.DataFrame(rows, columns=names)


def extract_eds(
    models: Mapping[str, FittedModel],
    *,
    columns: ColumnConfig = DEFAULT_COLUMNS,
) -> pd.DataFrame:
    """ED5, ED50 and ED95 of every curve.

    ED5 and ED95 come from inverse prediction of the fitted curve; a
    decreasing curve gives ED5 <= ED50 <= ED95.  Curves violating that
    ordering are logged as warnings but still reported.

    Returns
    -------
    DataFrame
        ``[GroupingProperty, ED5, ED50, ED95]`` (plus the curve-identity
        column when the models were fitted with one), rounded to 2 decimals.
    """
    ed50_label = PARAM_LABELS["ed50"]
    rows = []
    has_curves = any(m.has_curve_id for m in models.values())
    for group, model in models.items():
        coefs = model.coefficients()
        for curve in model.curves:
            label = _label(group, curve, columns)
            ed5 = model.ed(5, curve)
            ed50 = coefs[(ed50_label, curve)]
            ed95 = model.ed(95, curve)
            if ed5 > ed50 + 1e-6 or ed50 > ed95 + 1e-6:
                logger.warning(
                    "ED ordering anomaly for %r: ED5=%.4g, ED50=%.4g, ED95=%.4g "
                    "(response may not decrease with %s)",
                    label, ed5, ed50, ed95, columns.stimulus,
                )
            row = {columns.group_key: label}
            if has_curves:
                row[columns.curve_id] = curve
            row.update({"ED5": round(ed5, 2), "ED50": round(ed50, 2), "ED95": round(ed95, 2)})
            rows.append(row)

    names = (
        [columns.group_key]
        + ([columns.curve_id] if has_curves else [])
        + ["ED5", "ED50", "ED95"]
    )
    return pd.DataFrame(rows, columns=names)


def ordering_anomalies(eds: pd.DataFrame, tol: float = 1e-6) -> pd.DataFrame:
    """Rows of an ED table where ED5 > ED50 or ED50 > ED95.

    Such curves usually increase rather than decrease with the stimulus.
    NaN effective doses are not flagged.
    """
    require_columns(eds, ["ED5", "ED50", "ED95"], "effective dose column(s)")
    bad = (eds["ED5"] > eds["ED50"] + tol) | (eds["ED50"] > eds["ED95"] + tol)
    return eds.loc[bad]
