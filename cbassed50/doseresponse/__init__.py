"""
Dose-response modeling for thermal tolerance assays.

Groups observations into fitting cohorts, fits 3- or 4-parameter
log-logistic curves per cohort (optionally one curve per genotype),
extracts ED5/ED50/ED95, predicts curves with confidence bands over a
temperature grid and summarises effective doses across replicates.

Validates against: R packages drc, CBASSED50.
"""

from cbassed50.doseresponse._common import (
    CurveParams,
    FittedModel,
    FitFailure,
    FitBatch,
)
from cbassed50.doseresponse._config import ColumnConfig, DEFAULT_COLUMNS
from cbassed50.doseresponse._errors import (
    CBASSError,
    SchemaError,
    InsufficientDataError,
    ConvergenceError,
)
from cbassed50.doseresponse._models import ll3, ll4
from cbassed50.doseresponse._grouping import (
    MIN_STIMULUS_LEVELS,
    build_group_key,
    count_stimulus_levels,
)
from cbassed50.doseresponse._fit import fit_curves, fit_drms
from cbassed50.doseresponse._eds import (
    EDResult,
    ed_interval,
    effective_doses,
    extract_ed50,
    extract_eds,
    ordering_anomalies,
)
from cbassed50.doseresponse._predict import define_stimulus_grid, predict_curves
from cbassed50.doseresponse._summary import summarize_eds

__all__ = [
    "CurveParams",
    "FittedModel",
    "FitFailure",
    "FitBatch",
    "ColumnConfig",
    "DEFAULT_COLUMNS",
    "CBASSError",
    "SchemaError",
    "InsufficientDataError",
    "ConvergenceError",
    "EDResult",
    "MIN_STIMULUS_LEVELS",
    "ll3",
    "ll4",
    "build_group_key",
    "count_stimulus_levels",
    "fit_curves",
    "fit_drms",
    "ed_interval",
    "effective_doses",
    "extract_ed50",
    "extract_eds",
    "ordering_anomalies",
    "define_stimulus_grid",
    "predict_curves",
    "summarize_eds",
]
