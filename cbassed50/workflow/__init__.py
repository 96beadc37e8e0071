"""
CBASS ED50 workflows: effective doses per genotype, their summaries per
site/condition/species/timepoint, and predicted temperature-response
curves for plotting.
"""

from cbassed50.workflow._pipeline import (
    DEFAULT_GROUPING,
    process_dataset,
    calculate_eds,
    fit_curve_eds,
    model_curve_table,
)

__all__ = [
    "DEFAULT_GROUPING",
    "process_dataset",
    "calculate_eds",
    "fit_curve_eds",
    "model_curve_table",
]
