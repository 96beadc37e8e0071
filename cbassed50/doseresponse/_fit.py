"""Log-logistic curve fitting via nonlinear least squares.

Uses ``scipy.optimize.least_squares`` with the Trust Region Reflective
(TRF) algorithm for bounded optimisation.  ED50 is constrained to be
positive.

Includes data-driven self-starting estimates so the user never has to
guess initial parameter values.  With a curve identity (``curveid`` in
R ``drc``), one curve per identity value is estimated jointly: each
curve has its own parameters but all share the residual variance.

Validates against: R drc::drm()
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Hashable, Sequence

import numpy as np
import pandas as pd
from numpy.typing import NDArray
from scipy.optimize import least_squares

from cbassed50.doseresponse._common import FitBatch, FitFailure, FittedModel
from cbassed50.doseresponse._config import DEFAULT_COLUMNS, ColumnConfig
from cbassed50.doseresponse._errors import (
    ConvergenceError,
    InsufficientDataError,
    SchemaError,
)
from cbassed50.doseresponse._grouping import _as_list, build_group_key, require_columns
from cbassed50.doseresponse._models import _MODEL_MAP, VALID_MODELS

logger = logging.getLogger(__name__)

# Thermal curves are steep on the log scale: a drop from 90 % to 10 % of
# the maximum across 2 °C around 35 °C is a slope of roughly 80.
_MAX_START_SLOPE = 500.0


# ---------------------------------------------------------------------------
# Self-starting parameter estimation
# ---------------------------------------------------------------------------

def _level_means(
    dose: NDArray, response: NDArray,
) -> tuple[NDArray, NDArray]:
    """Sorted distinct stimulus levels and the mean response at each."""
    levels, inverse = np.unique(dose, return_inverse=True)
    means = np.bincount(inverse, weights=response) / np.bincount(inverse)
    return levels, means


def _interpolate_ed50(
    dose_sorted: NDArray,
    resp_sorted: NDArray,
    midpoint: float,
) -> float:
    """Find stimulus at which response crosses *midpoint* via linear
    interpolation on the log scale.
    """
    for i in range(len(resp_sorted) - 1):
        r1, r2 = resp_sorted[i], resp_sorted[i + 1]
        if (r1 - midpoint) * (r2 - midpoint) <= 0:
            d1 = np.log(dose_sorted[i])
            d2 = np.log(dose_sorted[i + 1])
            if abs(r2 - r1) < 1e-12:
                return float(np.exp((d1 + d2) / 2.0))
            frac = (midpoint - r1) / (r2 - r1)
            return float(np.exp(d1 + frac * (d2 - d1)))

    # No crossing: geometric mean of stimulus range
    return float(np.exp(np.mean(np.log(dose_sorted))))


def _estimate_slope(
    dose_sorted: NDArray,
    resp_sorted: NDArray,
    bottom: float,
    top: float,
) -> float:
    """Estimate the slope via logit-linear regression.

    ``logit((y - c) / (d - c)) = -b * (log x - log e)``, so the drc slope
    is the negated regression coefficient.
    """
    span = top - bottom
    if abs(span) < 1e-12 or len(dose_sorted) < 2:
        return 1.0

    y_norm = np.clip((resp_sorted - bottom) / span, 0.01, 0.99)
    logit_y = np.log(y_norm / (1.0 - y_norm))
    coeffs = np.polyfit(np.log(dose_sorted), logit_y, 1)
    slope = float(np.clip(-coeffs[0], -_MAX_START_SLOPE, _MAX_START_SLOPE))
    if abs(slope) < 0.05:
        slope = 1.0 if slope >= 0 else -1.0
    return slope


def _initial_params(
    dose: NDArray,
    response: NDArray,
    model: str,
) -> dict[str, float]:
    """Data-driven starting values for one curve.

    Algorithm
    ---------
    1.  Average replicates at each positive stimulus level.
    2.  Upper/lower response from the lowest/highest quarter of levels.
    3.  LL.3 fixes the lower asymptote at 0.
    4.  ED50 via linear interpolation at the midpoint on the log scale.
    5.  Slope via logit-linear regression.
    """
    mask = dose > 0
    levels, means = _level_means(dose[mask], response[mask])

    if len(levels) < 2:
        start = {"slope": 1.0, "top": float(np.max(response)), "ed50": 1.0}
        if model == "LL.4":
            start["bottom"] = float(np.min(response))
        return start

    n_edge = max(1, len(levels) // 4)
    low_resp = float(np.mean(means[:n_edge]))
    high_resp = float(np.mean(means[-n_edge:]))

    if model == "LL.3":
        bottom_est = 0.0
        top_est = max(low_resp, high_resp)
    else:
        bottom_est = min(low_resp, high_resp)
        top_est = max(low_resp, high_resp)

    mid = (bottom_est + top_est) / 2.0
    ed50_est = _interpolate_ed50(levels, means, mid)
    slope_est = _estimate_slope(levels, means, bottom_est, top_est)

    start: dict[str, float] = {
        "slope": slope_est,
        "top": top_est,
        "ed50": max(ed50_est, 1e-20),  # ensure positive
    }
    if model == "LL.4":
        start["bottom"] = bottom_est
    return start


# ---------------------------------------------------------------------------
# Covariance computation
# ---------------------------------------------------------------------------

def _compute_cov(
    jac: NDArray,
    rss: float,
    n_obs: int,
    n_params: int,
) -> NDArray[np.floating] | None:
    """Parameter covariance from the Jacobian: ``(J'J)^{-1} * s²``.

    Returns ``None`` when ``J'J`` is singular or the result is not finite.
    """
    s2 = rss / (n_obs - n_params)
    JtJ = jac.T @ jac

    try:
        cov = np.linalg.inv(JtJ) * s2
    except np.linalg.LinAlgError:
        return None
    if not np.all(np.isfinite(cov)):
        return None
    return cov


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def fit_curves(
    dose: NDArray[np.floating],
    response: NDArray[np.floating],
    curves: NDArray | Sequence[Hashable] | None = None,
    *,
    model: str = "LL.3",
    group: str | None = None,
    start: dict[str, float] | None = None,
) -> FittedModel:
    """Fit one fitting cohort.

    Parameters
    ----------
    dose : array
        Stimulus values (e.g. temperature).
    response : array
        Response values (e.g. Fv/Fm).
    curves : array or None
        Curve identity of each observation (e.g. genotype).  If given, one
        curve per distinct value is fitted, in order of first appearance.
    model : str
        ``'LL.3'`` (lower asymptote fixed at 0) or ``'LL.4'``.
    group : str or None
        Grouping key, carried into the result and any error.
    start : dict or None
        Starting values applied to every curve.  If ``None``, uses
        self-starting estimates derived from each curve's data.

    Returns
    -------
    FittedModel

    Raises
    ------
    InsufficientDataError
        A curve has fewer distinct stimulus levels than the model has
        parameters, or no residual degree of freedom is left.
    ConvergenceError
        The solver did not converge or the covariance matrix is singular.

    Examples
    --------
    >>> import numpy as np
    >>> temp = np.array([30, 33, 36, 39, 30, 33, 36, 39], dtype=float)
    >>> pam = np.array([0.66, 0.52, 0.17, 0.03, 0.64, 0.50, 0.18, 0.04])
    >>> fit = fit_curves(temp, pam)
    >>> 33 < fit.ed(50) < 36
    True

    Validates against: R drc::drm(fct = LL.3()), drm(..., curveid = )
    """
    # --- Validate ---
    dose = np.asarray(dose, dtype=np.float64)
    response = np.asarray(response, dtype=np.float64)

    if dose.ndim != 1 or response.ndim != 1:
        raise ValueError("dose and response must be 1-D arrays")
    if dose.shape != response.shape:
        raise ValueError(
            f"dose and response must have same shape, got {dose.shape} and {response.shape}"
        )
    if not (np.all(np.isfinite(dose)) and np.all(np.isfinite(response))):
        raise ValueError("dose and response must not contain NaN or infinite values")
    if model not in VALID_MODELS:
        raise ValueError(f"model must be one of {VALID_MODELS}, got {model!r}")

    if curves is None:
        labels = None
        curve_values: tuple[Hashable, ...] = (None,)
        masks = [np.ones(dose.shape, dtype=bool)]
    else:
        labels = np.asarray(curves)
        if labels.shape != dose.shape:
            raise ValueError("curves must have same shape as dose")
        _, first = np.unique(labels, return_index=True)
        curve_values = tuple(labels[np.sort(first)].tolist())
        masks = [labels == c for c in curve_values]

    model_func, param_names = _MODEL_MAP[model]
    k = len(param_names)
    n_params = k * len(curve_values)
    n_obs = len(dose)

    for curve, mask in zip(curve_values, masks):
        n_levels = len(np.unique(dose[mask]))
        if n_levels < k:
            where = f"group {group!r}" if curve is None else f"group {group!r}, curve {curve!r}"
            raise InsufficientDataError(
                f"Need at least {k} distinct stimulus values for model {model} "
                f"({where}), got {n_levels}",
                group=group,
            )
    if n_obs < n_params + 1:
        raise InsufficientDataError(
            f"Need at least {n_params + 1} observations for model {model} with "
            f"{len(curve_values)} curve(s) in group {group!r}, got {n_obs}",
            group=group,
        )

    # --- Starting values ---
    starts = [start or _initial_params(dose[mask], response[mask], model) for mask in masks]
    x0 = np.array([s[name] for s in starts for name in param_names], dtype=np.float64)

    # --- Bounds ---
    lb = np.full(n_params, -np.inf)
    ub = np.full(n_params, np.inf)
    # ED50 must be positive
    ed50_idx = param_names.index("ed50")
    lb[ed50_idx::k] = 1e-20

    # Ensure starting values are within bounds
    x0 = np.clip(x0, lb + 1e-15, ub - 1e-15)

    # --- Residual function ---
    def residuals(p: NDArray) -> NDArray:
        pred = np.empty_like(response)
        for i, mask in enumerate(masks):
            kwargs = dict(zip(param_names, p[i * k:(i + 1) * k]))
            pred[mask] = model_func(dose[mask], **kwargs)
        return response - pred

    # --- Fit ---
    result = least_squares(
        residuals,
        x0,
        method="trf",
        bounds=(lb, ub),
        jac="2-point",
        x_scale="jac",
        max_nfev=2000,
        xtol=1e-12,
        ftol=1e-12,
        gtol=1e-12,
    )

    # --- Extract ---
    popt = result.x
    rss = float(np.sum(result.fun**2))
    if not result.success or not np.all(np.isfinite(popt)) or not np.isfinite(rss):
        raise ConvergenceError(
            f"Model {model} did not converge for group {group!r}: {result.message}",
            group=group,
        )

    cov = _compute_cov(result.jac, rss, n_obs, n_params)
    if cov is None:
        raise ConvergenceError(
            f"Model {model} for group {group!r} has a singular covariance matrix "
            "(degenerate fit)",
            group=group,
        )
    se = np.sqrt(np.maximum(np.diag(cov), 0.0))

    return FittedModel(
        group=group,
        model=model,
        curves=curve_values,
        estimates=popt,
        names=tuple((name, curve) for curve in curve_values for name in param_names),
        cov=cov,
        se=se,
        rss=rss,
        df_residual=n_obs - n_params,
        n_obs=n_obs,
        converged=bool(result.success),
        n_iter=int(result.nfev),
        dose=dose,
        response=response,
        curve_labels=labels,
    )


def _fit_group(
    group: str,
    subset: pd.DataFrame,
    model: str,
    curve_id: bool,
    fallback: bool,
    columns: ColumnConfig,
) -> FittedModel | FitFailure:
    """Fit one group, returning a :class:`FitFailure` instead of raising."""
    dose = subset[columns.stimulus].to_numpy(dtype=np.float64)
    response = subset[columns.response].to_numpy(dtype=np.float64)
    curves = subset[columns.curve_id].to_numpy() if curve_id else None

    try:
        return fit_curves(dose, response, curves, model=model, group=group)
    except ConvergenceError as exc:
        if not (fallback and model == "LL.3"):
            return FitFailure(group=group, error=exc)
        logger.warning("%s; retrying group %r with LL.4", exc, group)
    except InsufficientDataError as exc:
        return FitFailure(group=group, error=exc)

    try:
        return fit_curves(dose, response, curves, model="LL.4", group=group)
    except (ConvergenceError, InsufficientDataError) as exc:
        return FitFailure(group=group, error=exc)


def fit_drms(
    dataset: pd.DataFrame,
    grouping_properties: str | Sequence[str],
    formula: str | None = None,
    *,
    curve_id: bool = False,
    four_parameter: bool = False,
    fallback: bool = False,
    on_error: str = "collect",
    max_workers: int | None = None,
    columns: ColumnConfig = DEFAULT_COLUMNS,
) -> FitBatch:
    """Fit one dose-response model per group of *dataset*.

    Parameters
    ----------
    dataset : DataFrame
        Validated observations.
    grouping_properties : str or sequence of str
        Columns whose combined values define a fitting cohort, e.g.
        ``["Site", "Condition", "Species", "Timepoint"]``.
    formula : str or None
        ``'response ~ stimulus'``; overrides ``columns.response`` and
        ``columns.stimulus``.
    curve_id : bool
        Fit one curve per ``columns.curve_id`` value inside each group.
    four_parameter : bool
        Fit LL.4 instead of LL.3.
    fallback : bool
        Retry groups whose LL.3 fit fails to converge with LL.4.  Off by
        default since it silently changes the statistical model.
    on_error : str
        ``'collect'`` keeps failed groups in ``FitBatch.failures``;
        ``'raise'`` raises the first failure (in group order) once every
        group has been attempted.
    max_workers : int or None
        Fit groups in a thread pool of this size.  Results are returned in
        the same order as a sequential run.

    Returns
    -------
    FitBatch
        Mapping of group key to :class:`FittedModel`, in order of first
        appearance of each group in *dataset*.

    Validates against: CBASSED50 fit_drms()
    """
    if not isinstance(dataset, pd.DataFrame):
        raise TypeError("Input dataset must be a pandas DataFrame")
    if on_error not in ("collect", "raise"):
        raise ValueError(f"on_error must be 'collect' or 'raise', got {on_error!r}")
    if formula is not None:
        columns = ColumnConfig.from_formula(formula, columns)

    props = _as_list(grouping_properties)
    if not props:
        raise ValueError("at least one grouping property is required")
    missing = [name for name in props if name not in dataset.columns]
    if missing:
        raise SchemaError(f"Invalid grouping properties: {', '.join(missing)}", missing)
    required = [columns.stimulus, columns.response]
    if curve_id:
        required.append(columns.curve_id)
    require_columns(dataset, required, "model column(s)")

    keyed = build_group_key(dataset, props, columns=columns)
    keys = keyed[columns.group_key].astype(str).to_numpy()
    groups = [str(g) for g in keyed[columns.group_key].cat.categories]
    model = "LL.4" if four_parameter else "LL.3"

    def task(group: str) -> FittedModel | FitFailure:
        return _fit_group(group, keyed[keys == group], model, curve_id, fallback, columns)

    logger.info(
        "Fitting %s to %d group(s)%s", model, len(groups),
        f" with curve identity {columns.curve_id!r}" if curve_id else "",
    )
    if max_workers is None or max_workers <= 1:
        outcomes = [task(group) for group in groups]
    else:
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            outcomes = list(pool.map(task, groups))

    models: dict[str, FittedModel] = {}
    failures: dict[str, FitFailure] = {}
    for group, outcome in zip(groups, outcomes):
        if isinstance(outcome, FitFailure):
            logger.warning("Fit failed for group %r: %s", group, outcome.reason)
            failures[group] = outcome
        else:
            models[group] = outcome

    logger.info("Fitted %d of %d group(s)", len(models), len(groups))
    if failures and on_error == "raise":
        raise next(iter(failures.values())).error

    return FitBatch(models=models, failures=failures, groups=tuple(groups))
