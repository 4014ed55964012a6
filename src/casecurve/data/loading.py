"""
Readers for the five input tables and the join that combines them.

Every table is keyed on the five-digit county FIPS code, coerced to a
nullable integer so that the joins never silently fail on a string/int
mismatch. Rows that still fail to join keep missing covariates; they are
filtered by the feature transformer, never raised here.
"""

import logging
from pathlib import Path
from typing import Optional

import pandas as pd

from casecurve.config import MOBILITY_COLUMNS, DataPaths
from casecurve.data.schemas import (
    CaseCountsFrame,
    CensusFrame,
    MetroFrame,
    MobilityFrame,
    PopulationFrame,
)

logger = logging.getLogger(__name__)

# Google Community Mobility Report column names.
GOOGLE_MOBILITY_RENAMES = {
    "census_fips_code": "fips",
    "retail_and_recreation_percent_change_from_baseline": "retail_recreation",
    "grocery_and_pharmacy_percent_change_from_baseline": "grocery_pharmacy",
    "parks_percent_change_from_baseline": "parks",
    "transit_stations_percent_change_from_baseline": "transit",
    "workplaces_percent_change_from_baseline": "workplaces",
    "residential_percent_change_from_baseline": "residential",
}

_TRUE_STRINGS = {"1", "true", "t", "yes", "y", "1.0", "metro"}


def coerce_fips(values: pd.Series) -> pd.Series:
    """Parse county codes ("06037", 6037, 6037.0) into a nullable Int64 series."""
    numeric = pd.to_numeric(values, errors="coerce")
    return numeric.round().astype("Int64")


def load_cases(path: Path) -> pd.DataFrame:
    df = pd.read_csv(path, dtype={"fips": str})
    df["date"] = pd.to_datetime(df["date"])
    df["fips"] = coerce_fips(df["fips"])
    return CaseCountsFrame.validate(df)


def load_population(path: Path) -> pd.DataFrame:
    df = pd.read_csv(path, dtype={"fips": str})
    df["fips"] = coerce_fips(df["fips"])
    df = df.dropna(subset=["fips"])
    return PopulationFrame.validate(df[["fips", "population"]])


def load_census(path: Path) -> pd.DataFrame:
    df = pd.read_csv(path, dtype={"fips": str})
    df["fips"] = coerce_fips(df["fips"])
    df = df.dropna(subset=["fips"])
    return CensusFrame.validate(df[["fips", "elderly_pct", "density"]])


def load_metro(path: Path) -> pd.DataFrame:
    df = pd.read_csv(path, dtype={"fips": str, "metro": str})
    df["fips"] = coerce_fips(df["fips"])
    df = df.dropna(subset=["fips"])
    df["metro"] = df["metro"].fillna("").str.strip().str.lower().isin(_TRUE_STRINGS)
    return MetroFrame.validate(df[["fips", "metro"]])


def load_mobility(path: Path, state: Optional[str] = None) -> pd.DataFrame:
    """
    Read a mobility table, in either the short layout used by this package or
    the Google Community Mobility Report layout.

    Google rows are filtered to ``state`` (``sub_region_1``) and to rows
    with a county code; state-level aggregates have none.
    """
    df = pd.read_csv(path, dtype={"fips": str, "census_fips_code": str}, low_memory=False)
    df = df.rename(columns=GOOGLE_MOBILITY_RENAMES)

    if state is not None and "sub_region_1" in df.columns:
        df = df[df["sub_region_1"] == state].copy()

    df["fips"] = coerce_fips(df["fips"])
    df = df.dropna(subset=["fips"])
    df["date"] = pd.to_datetime(df["date"])

    missing = [c for c in MOBILITY_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"Mobility table {path} lacks columns: {missing}")

    return MobilityFrame.validate(df[["fips", "date"] + MOBILITY_COLUMNS].reset_index(drop=True))


def merge_sources(
    cases: pd.DataFrame,
    population: pd.DataFrame,
    census: pd.DataFrame,
    metro: pd.DataFrame,
    mobility: pd.DataFrame,
) -> pd.DataFrame:
    """
    Left-join the static county tables on ``fips`` and mobility on
    ``fips`` + ``date``.

    Every case row survives: the result has exactly ``len(cases)`` rows.
    """
    merged = (
        cases.merge(population, on="fips", how="left", validate="many_to_one")
        .merge(census, on="fips", how="left", validate="many_to_one")
        .merge(metro, on="fips", how="left", validate="many_to_one")
        .merge(mobility, on=["fips", "date"], how="left", validate="many_to_one")
    )

    unmatched = merged["population"].isna().sum()
    if unmatched:
        logger.info("%d of %d case rows have no population after the join", unmatched, len(merged))
    no_mobility = merged[MOBILITY_COLUMNS].isna().all(axis=1).sum()
    if no_mobility:
        logger.info("%d case rows have no mobility record", no_mobility)

    return merged


def load_sources(paths: DataPaths, state: Optional[str] = None) -> pd.DataFrame:
    """Read all five tables from ``paths`` and merge them."""
    logger.info("Loading case counts from %s", paths.cases)
    cases = load_cases(paths.cases)
    population = load_population(paths.population)
    census = load_census(paths.census)
    metro = load_metro(paths.metro)
    mobility = load_mobility(paths.mobility, state=state)
    return merge_sources(cases, population, census, metro, mobility)
