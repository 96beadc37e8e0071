"""Synthetic CBASS datasets shared by the test suites."""

import itertools

import numpy as np
import pandas as pd
import pytest

from cbassed50.doseresponse import ll3

TEMPERATURES = (30.0, 33.0, 36.0, 39.0)


def cbass_frame(
    *,
    seed=42,
    sites=("KAUST",),
    conditions=("Control",),
    species=("Pocillopora",),
    timepoints=(420,),
    genotypes=("G1", "G2", "G3"),
    temperatures=TEMPERATURES,
    replicates=2,
    ed50=34.5,
    slope=25.0,
    top=0.66,
    noise=0.01,
):
    """Decreasing Fv/Fm curves, one per genotype, with small noise.

    Each genotype's ED50 is jittered by N(0, 0.3) around *ed50*.
    """
    np.random.seed(seed)
    rows = []
    for site, cond, sp, tp, geno in itertools.product(
        sites, conditions, species, timepoints, genotypes,
    ):
        e = ed50 + np.random.normal(0, 0.3)
        for temp in temperatures:
            for _ in range(replicates):
                pam = ll3(np.array([temp]), slope=slope, top=top, ed50=e)[0]
                rows.append({
                    "Site": site,
                    "Condition": cond,
                    "Species": sp,
                    "Timepoint": tp,
                    "Genotype": geno,
                    "Temperature": temp,
                    "Pam_value": pam + np.random.normal(0, noise),
                })
    return pd.DataFrame(rows)


@pytest.fixture
def cbass_data():
    """Two sites x two conditions, three genotypes each."""
    return cbass_frame(sites=("KAUST", "Tuwal"), conditions=("Control", "Heat"))


@pytest.fixture
def two_genotypes():
    """Single group, two genotypes, four temperatures."""
    return cbass_frame(genotypes=("G1", "G2"), seed=7)


@pytest.fixture
def make_cbass():
    """Factory for custom synthetic datasets."""
    return cbass_frame
