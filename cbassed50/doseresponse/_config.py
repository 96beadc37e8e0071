"""Column configuration shared by every stage of the ED50 pipeline."""

from __future__ import annotations

import re
from dataclasses import dataclass, replace

_FORMULA_RE = re.compile(r"^\s*([^~\s]+)\s*~\s*([^~\s]+)\s*$")


@dataclass(frozen=True)
class ColumnConfig:
    """Names of the columns read and written by the pipeline.

    The defaults match the CBASS data layout (``Temperature`` ramps,
    ``Pam_value`` Fv/Fm readings, ``Genotype`` colonies).
    """

    stimulus: str = "Temperature"
    response: str = "Pam_value"
    group_key: str = "GroupingProperty"
    curve_id: str = "Genotype"
    separator: str = "_"
    prediction: str = "PredictedPAM"
    lower: str = "Lower"
    upper: str = "Upper"

    @classmethod
    def from_formula(
        cls, formula: str, base: ColumnConfig | None = None,
    ) -> ColumnConfig:
        """Build a config from an R-style ``response ~ stimulus`` formula.

        >>> ColumnConfig.from_formula("Pam_value ~ Temperature").stimulus
        'Temperature'
        """
        match = _FORMULA_RE.match(formula)
        if match is None:
            raise ValueError(
                f"formula must look like 'response ~ stimulus', got {formula!r}"
            )
        if base is None:
            base = cls()
        return replace(base, response=match.group(1), stimulus=match.group(2))


DEFAULT_COLUMNS = ColumnConfig()
