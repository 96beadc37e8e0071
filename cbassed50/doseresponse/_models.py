"""Log-logistic dose-response model functions.

Both models use the R ``drc`` sign convention: ``slope > 0`` means the
response **decreases** as the stimulus increases, which is the expected
shape of a thermal tolerance curve (Fv/Fm falls with temperature).

Stimulus = 0 is handled via IEEE 754 arithmetic: ``log(0) = -inf`` and
the exponential term evaluates to the upper asymptote for ``slope > 0``.

Validates against: R drc::LL.3(), drc::LL.4()
"""

from __future__ import annotations

from typing import Callable

import numpy as np
from numpy.typing import NDArray


# ---------------------------------------------------------------------------
# Safe log-dose utility
# ---------------------------------------------------------------------------

def _safe_log_dose(dose: NDArray[np.floating]) -> NDArray[np.floating]:
    """Compute log(dose) with dose=0 mapped to -inf."""
    with np.errstate(divide="ignore"):
        return np.where(dose > 0, np.log(np.where(dose > 0, dose, 1.0)), -np.inf)


def _logistic_term(
    dose: NDArray[np.floating], slope: float, ed50: float,
) -> NDArray[np.floating]:
    """``1 / (1 + exp(slope * (log x - log ed50)))`` without overflow warnings."""
    log_dose = _safe_log_dose(np.asarray(dose, dtype=np.float64))
    with np.errstate(over="ignore", invalid="ignore"):
        exponent = slope * (log_dose - np.log(ed50))
        return 1.0 / (1.0 + np.exp(exponent))


# ---------------------------------------------------------------------------
# Model functions
# ---------------------------------------------------------------------------

def ll3(
    dose: NDArray[np.floating],
    slope: float,
    top: float,
    ed50: float,
) -> NDArray[np.floating]:
    """3-parameter log-logistic (LL.3) model, lower asymptote fixed at 0.

    .. math::
        f(x) = \\frac{d}{1 + \\exp\\bigl(b \\cdot (\\ln x - \\ln e)\\bigr)}

    where ``b = slope``, ``d = top``, ``e = ed50``.

    Parameters
    ----------
    dose : array
        Stimulus values (e.g. temperature).  May contain zeros.
    slope : float
        Slope at ED50.  Positive for a decreasing curve.
    top : float
        Upper asymptote (response at low stimulus for slope > 0).
    ed50 : float
        Stimulus producing 50 % of the decline from ``top`` to 0.

    Returns
    -------
    NDArray
        Predicted response values.

    Validates against: R drc::LL.3()
    """
    return top * _logistic_term(dose, slope, ed50)


def ll4(
    dose: NDArray[np.floating],
    slope: float,
    bottom: float,
    top: float,
    ed50: float,
) -> NDArray[np.floating]:
    """4-parameter log-logistic (LL.4) model with a free lower asymptote.

    .. math::
        f(x) = c + \\frac{d - c}{1 + \\exp\\bigl(b \\cdot (\\ln x - \\ln e)\\bigr)}

    Used when the LL.3 fit does not converge on steep data whose response
    does not fall all the way to zero.

    Validates against: R drc::LL.4()
    """
    return bottom + (top - bottom) * _logistic_term(dose, slope, ed50)


# ---------------------------------------------------------------------------
# Model registry: name -> (function, parameter_names)
# ---------------------------------------------------------------------------

_MODEL_MAP: dict[str, tuple[Callable, list[str]]] = {
    "LL.3": (ll3, ["slope", "top", "ed50"]),
    "LL.4": (ll4, ["slope", "bottom", "top", "ed50"]),
}

VALID_MODELS = tuple(_MODEL_MAP.keys())

# Coefficient labels as reported by drc::drm(names = c("Slope", "Min", "Max", "ED50"))
PARAM_LABELS: dict[str, str] = {
    "slope": "Slope",
    "bottom": "Min",
    "top": "Max",
    "ed50": "ED50",
}

INTERCEPT = "(Intercept)"
