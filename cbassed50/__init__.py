"""
cbassed50: ED50 thermal tolerance analysis for Python.

Fits log-logistic temperature-response curves to CBASS (Coral Bleaching
Automated Stress System) assays and derives ED5/ED50/ED95 thermal
thresholds per site, condition, species, timepoint and genotype.

Usage:
    from cbassed50 import doseresponse, workflow
"""

import logging

__version__ = "0.1.0"

from cbassed50 import doseresponse
from cbassed50 import workflow

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "__version__",
    "doseresponse",
    "workflow",
]
