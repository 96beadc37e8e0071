"""Shared result types for dose-response modeling."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import Callable, Hashable

import numpy as np
from numpy.typing import NDArray
from scipy.stats import t as t_dist


def _numerical_gradient(
    func: Callable[[NDArray], NDArray],
    params: NDArray[np.floating],
) -> NDArray[np.floating]:
    """Central-difference gradient of *func* at *params*.

    Returns an array of shape ``(n_out, n_params)``.
    """
    params = np.asarray(params, dtype=np.float64)
    base = np.atleast_1d(func(params))
    grad = np.empty((base.size, params.size))
    for i in range(params.size):
        h = 1e-6 * max(abs(params[i]), 1.0)
        up = params.copy()
        down = params.copy()
        up[i] += h
        down[i] -= h
        grad[:, i] = (np.atleast_1d(func(up)) - np.atleast_1d(func(down))) / (2.0 * h)
    return grad


@dataclass(frozen=True)
class CurveParams:
    """Parameters of a single fitted log-logistic curve.

    For LL.4: bottom + (top - bottom) / (1 + exp(slope * (log x - log ed50)))
    LL.3 is the same curve with ``bottom`` fixed at 0.
    """

    slope: float
    top: float
    ed50: float
    bottom: float = 0.0
    model: str = "LL.3"

    def predict(self, dose: NDArray[np.floating]) -> NDArray[np.floating]:
        """Predict response at given stimulus levels."""
        from cbassed50.doseresponse._models import _MODEL_MAP

        func, param_names = _MODEL_MAP[self.model]
        kwargs = {name: getattr(self, name) for name in param_names}
        return func(dose, **kwargs)

    def inverse(self, response: float) -> float:
        """Stimulus at which the curve reaches *response*.

        ``NaN`` when *response* lies outside the open interval between the
        two asymptotes.
        """
        c, d, e, b = self.bottom, self.top, self.ed50, self.slope
        denom = response - c
        numer = d - response
        if b == 0 or denom == 0 or numer == 0:
            return float("nan")
        ratio = numer / denom
        if ratio <= 0:
            return float("nan")
        return float(e * ratio ** (1.0 / b))

    def ed(self, percent: float) -> float:
        """Relative effective dose: stimulus where the response has declined
        by *percent* % of ``top - bottom``.
        """
        if not (0.0 < percent < 100.0):
            raise ValueError(f"percent must be in (0, 100), got {percent}")
        target = self.top - (percent / 100.0) * (self.top - self.bottom)
        return self.inverse(target)

    def to_array(self) -> NDArray[np.floating]:
        """Return parameter vector in model order."""
        from cbassed50.doseresponse._models import _MODEL_MAP

        _, param_names = _MODEL_MAP[self.model]
        return np.array([getattr(self, name) for name in param_names], dtype=np.float64)

    @staticmethod
    def from_array(params: NDArray[np.floating], model: str) -> CurveParams:
        """Construct from parameter vector and model name."""
        from cbassed50.doseresponse._models import _MODEL_MAP

        _, param_names = _MODEL_MAP[model]
        d = dict(zip(param_names, (float(p) for p in params)))
        return CurveParams(
            slope=d["slope"],
            top=d["top"],
            ed50=d["ed50"],
            bottom=d.get("bottom", 0.0),
            model=model,
        )


@dataclass(frozen=True)
class FittedModel:
    """A fitted fitting cohort: one or more log-logistic curves sharing a
    functional form and a residual variance.

    Without a curve identity ``curves == (None,)``.  Parameters are stored
    curve-major: all parameters of ``curves[0]`` first, then ``curves[1]``...
    """

    group: str | None
    model: str  # "LL.3" or "LL.4"
    curves: tuple[Hashable, ...]
    estimates: NDArray[np.floating]
    names: tuple[tuple[str, Hashable], ...]  # (param, curve) per estimate
    cov: NDArray[np.floating]  # (n_params_total, n_params_total)
    se: NDArray[np.floating]
    rss: float
    df_residual: int
    n_obs: int
    converged: bool
    n_iter: int
    dose: NDArray[np.floating]
    response: NDArray[np.floating]
    curve_labels: NDArray | None = None

    # -- parameter access ---------------------------------------------------

    @property
    def param_names(self) -> list[str]:
        from cbassed50.doseresponse._models import _MODEL_MAP

        return _MODEL_MAP[self.model][1]

    @property
    def has_curve_id(self) -> bool:
        return self.curves != (None,)

    def _slice(self, curve: Hashable | None) -> slice:
        if curve is None:
            if len(self.curves) != 1:
                raise ValueError(
                    f"model for group {self.group!r} has {len(self.curves)} curves; "
                    "pass curve= to select one"
                )
            idx = 0
        else:
            try:
                idx = self.curves.index(curve)
            except ValueError:
                raise ValueError(
                    f"unknown curve {curve!r} for group {self.group!r}; "
                    f"available: {list(self.curves)}"
                ) from None
        k = len(self.param_names)
        return slice(idx * k, (idx + 1) * k)

    def curve_params(self, curve: Hashable | None = None) -> CurveParams:
        """Parameters of one sub-curve (or the only curve)."""
        return CurveParams.from_array(self.estimates[self._slice(curve)], self.model)

    def coefficients(self) -> dict[tuple[str, Hashable], float]:
        """Map ``(parameter label, curve or None)`` to its estimate."""
        from cbassed50.doseresponse._models import PARAM_LABELS

        return {
            (PARAM_LABELS[param], curve): float(value)
            for (param, curve), value in zip(self.names, self.estimates)
        }

    def coef_names(self) -> list[str]:
        """drc-style display names, e.g. ``'ED50:(Intercept)'`` or ``'ED50:G1'``."""
        from cbassed50.doseresponse._models import INTERCEPT, PARAM_LABELS

        return [
            f"{PARAM_LABELS[param]}:{INTERCEPT if curve is None else curve}"
            for param, curve in self.names
        ]

    # -- prediction ---------------------------------------------------------

    def predict(
        self,
        dose: NDArray[np.floating] | None = None,
        curve: Hashable | None = None,
    ) -> NDArray[np.floating]:
        """Predict response.  If *dose* is ``None``, use the fitted stimulus."""
        if dose is None:
            if self.has_curve_id and curve is not None:
                dose = self.dose[self.curve_labels == curve]
            else:
                dose = self.dose
        return self.curve_params(curve).predict(np.asarray(dose, dtype=np.float64))

    def t_quantile(self, conf_level: float) -> float:
        """Two-sided t quantile at the residual degrees of freedom (NaN at df = 0)."""
        if not (0.0 < conf_level < 1.0):
            raise ValueError(f"conf_level must be in (0, 1), got {conf_level}")
        if self.df_residual < 1:
            return float("nan")
        return float(t_dist.ppf(1.0 - (1.0 - conf_level) / 2.0, self.df_residual))

    def predict_interval(
        self,
        dose: NDArray[np.floating],
        curve: Hashable | None = None,
        conf_level: float = 0.95,
    ) -> tuple[NDArray[np.floating], NDArray[np.floating], NDArray[np.floating]]:
        """Prediction with a confidence interval for the mean response.

        The standard error of the fitted value comes from the delta method,
        ``se = sqrt(g' V g)`` with ``g`` the gradient of the curve with
        respect to its parameters; bounds are ``fit ± t(df) * se``.

        Validates against: R predict(drm, interval = "confidence")
        """
        from cbassed50.doseresponse._models import _MODEL_MAP

        dose = np.asarray(dose, dtype=np.float64)
        sl = self._slice(curve)
        params = self.estimates[sl]
        sub_cov = self.cov[sl, sl]
        func, param_names = _MODEL_MAP[self.model]

        def f(p: NDArray) -> NDArray:
            return func(dose, **dict(zip(param_names, p)))

        fit = f(params)
        grad = _numerical_gradient(f, params)
        var = np.einsum("ij,jk,ik->i", grad, sub_cov, grad)
        se = np.sqrt(np.maximum(var, 0.0))
        q = self.t_quantile(conf_level)
        return fit, fit - q * se, fit + q * se

    def inverse_predict(self, response: float, curve: Hashable | None = None) -> float:
        """Stimulus at which the fitted curve reaches *response*."""
        return self.curve_params(curve).inverse(response)

    def ed(self, percent: float, curve: Hashable | None = None) -> float:
        """Relative effective dose (ED5, ED50, ED95, ...) for one curve."""
        return self.curve_params(curve).ed(percent)

    def ed_se(self, percent: float, curve: Hashable | None = None) -> float:
        """Delta-method standard error of :meth:`ed`."""
        sl = self._slice(curve)
        params = self.estimates[sl]

        def f(p: NDArray) -> NDArray:
            return np.array([CurveParams.from_array(p, self.model).ed(percent)])

        grad = _numerical_gradient(f, params)[0]
        var = float(grad @ self.cov[sl, sl] @ grad)
        return float(np.sqrt(var)) if var >= 0 else float("nan")

    def summary(self) -> str:
        """Human-readable summary, similar to R drc::summary()."""
        lines = [
            f"Dose-response model: {self.model}",
            f"Group: {self.group}",
            "",
            "Parameter estimates:",
        ]
        for name, val, se_val in zip(self.coef_names(), self.estimates, self.se):
            t_val = val / se_val if se_val > 0 and not np.isnan(se_val) else float("nan")
            lines.append(f"  {name:>20s} = {val:>12.6f}  (SE = {se_val:.6f}, t = {t_val:.3f})")

        lines.append("")
        lines.append(f"  RSS = {self.rss:.6f}")
        lines.append(f"  df  = {self.df_residual}")
        lines.append(f"  n   = {self.n_obs}")
        lines.append(f"  Converged: {self.converged}")
        return "\n".join(lines)


@dataclass(frozen=True)
class FitFailure:
    """A fitting cohort whose fit could not be completed."""

    group: str
    error: Exception

    @property
    def reason(self) -> str:
        return str(self.error)


@dataclass(frozen=True)
class FitBatch(Mapping):
    """Result of fitting every group of a dataset.

    Behaves as a read-only mapping ``group key -> FittedModel`` over the
    successful fits, in group order.  Failed groups are kept in
    :attr:`failures`.
    """

    models: dict[str, FittedModel]
    failures: dict[str, FitFailure] = field(default_factory=dict)
    groups: tuple[str, ...] = ()

    def __getitem__(self, key: str) -> FittedModel:
        return self.models[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self.models)

    def __len__(self) -> int:
        return len(self.models)

    @property
    def ok(self) -> bool:
        """``True`` when every attempted group was fitted."""
        return not self.failures

    def summary(self) -> str:
        lines = [f"Fitted {len(self.models)} of {len(self.groups)} groups"]
        for failure in self.failures.values():
            lines.append(f"  FAILED {failure.group}: {failure.reason}")
        return "\n".join(lines)
