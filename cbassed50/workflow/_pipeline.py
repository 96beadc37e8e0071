"""End-to-end ED50 workflows built from the dose-response stages.

These compose grouping, fitting, effective-dose extraction, prediction
and summary into the tables a CBASS analysis reports: per-genotype
effective doses, their per-group summary, and the predicted
temperature-response curves joined to both.
"""

from __future__ import annotations

import logging
from typing import Sequence

import pandas as pd

from cbassed50.doseresponse import (
    DEFAULT_COLUMNS,
    ColumnConfig,
    build_group_key,
    define_stimulus_grid,
    extract_eds,
    fit_drms,
    predict_curves,
    summarize_eds,
)
from cbassed50.doseresponse._grouping import _as_list

logger = logging.getLogger(__name__)

DEFAULT_GROUPING = ("Site", "Condition", "Species", "Timepoint")


def _resolve(formula: str | None, columns: ColumnConfig) -> ColumnConfig:
    return columns if formula is None else ColumnConfig.from_formula(formula, columns)


def _key_lookup(
    dataset: pd.DataFrame, props: list[str], columns: ColumnConfig,
) -> pd.DataFrame:
    """Distinct ``(group key, *props)`` rows with a plain string key."""
    lookup = dataset[[columns.group_key] + props].copy()
    lookup[columns.group_key] = lookup[columns.group_key].astype(str)
    return lookup.drop_duplicates()


def process_dataset(
    dataset: pd.DataFrame,
    grouping_properties: str | Sequence[str] = DEFAULT_GROUPING,
    *,
    columns: ColumnConfig = DEFAULT_COLUMNS,
) -> pd.DataFrame:
    """Add a grouping key that includes the curve identity.

    The key of each row is its grouping properties followed by its
    genotype, e.g. ``'KAUST_Control_Pocillopora_420_G1'``, which is the
    label :func:`extract_eds` gives a genotype's curve.
    """
    props = _as_list(grouping_properties)
    return build_group_key(dataset, props + [columns.curve_id], columns=columns)


def calculate_eds(
    dataset: pd.DataFrame,
    grouping_properties: str | Sequence[str] = DEFAULT_GROUPING,
    formula: str | None = None,
    *,
    four_parameter: bool = False,
    fallback: bool = False,
    on_error: str = "collect",
    columns: ColumnConfig = DEFAULT_COLUMNS,
) -> pd.DataFrame:
    """ED5, ED50 and ED95 for every genotype, with its grouping properties.

    Fits one model per group with one curve per genotype, then joins the
    effective doses back to the grouping properties of each curve.
    """
    columns = _resolve(formula, columns)
    props = _as_list(grouping_properties)

    models = fit_drms(
        dataset, props,
        curve_id=True,
        four_parameter=four_parameter,
        fallback=fallback,
        on_error=on_error,
        columns=columns,
    )
    eds = extract_eds(models, columns=columns)
    lookup = _key_lookup(process_dataset(dataset, props, columns=columns), props, columns)

    extra = [p for p in props if p not in eds.columns]
    eds_df = eds.merge(lookup[[columns.group_key] + extra], on=columns.group_key, how="left")
    logger.info("Calculated effective doses for %d curve(s)", len(eds_df))
    return eds_df[list(eds.columns) + extra].drop_duplicates().reset_index(drop=True)


def fit_curve_eds(
    dataset: pd.DataFrame,
    grouping_properties: str | Sequence[str] = DEFAULT_GROUPING,
    formula: str | None = None,
    *,
    four_parameter: bool = False,
    fallback: bool = False,
    on_error: str = "collect",
    columns: ColumnConfig = DEFAULT_COLUMNS,
) -> pd.DataFrame:
    """Per-group mean, SD, SE and 95 % CI of ED5/ED50/ED95 across genotypes."""
    props = _as_list(grouping_properties)
    eds = calculate_eds(
        dataset, props, formula,
        four_parameter=four_parameter,
        fallback=fallback,
        on_error=on_error,
        columns=columns,
    )
    return summarize_eds(eds, props)


def model_curve_table(
    dataset: pd.DataFrame,
    grouping_properties: str | Sequence[str] = DEFAULT_GROUPING,
    formula: str | None = None,
    *,
    n: int = 100,
    four_parameter: bool = False,
    conf_level: float = 0.95,
    columns: ColumnConfig = DEFAULT_COLUMNS,
) -> pd.DataFrame:
    """Predicted temperature-response curves joined to ED summaries.

    One curve per group (no curve identity) is predicted over
    :func:`define_stimulus_grid` of the observed stimulus values.  Each
    prediction row carries the grouping properties of its group and the
    group's ``Mean_EDx`` / ``SD_EDx`` / ``SE_EDx`` / ``Conf_Int_x``
    summary, ready for plotting.
    """
    columns = _resolve(formula, columns)
    props = _as_list(grouping_properties)

    models = fit_drms(
        dataset, props, four_parameter=four_parameter, columns=columns,
    )
    grid = define_stimulus_grid(dataset[columns.stimulus], n)
    predictions = predict_curves(models, grid, conf_level=conf_level, columns=columns)

    lookup = _key_lookup(build_group_key(dataset, props, columns=columns), props, columns)
    table = predictions.merge(lookup, on=columns.group_key, how="left").drop_duplicates()

    summary = fit_curve_eds(
        dataset, props, four_parameter=four_parameter, columns=columns,
    )
    return table.merge(summary, on=props, how="left").reset_index(drop=True)
