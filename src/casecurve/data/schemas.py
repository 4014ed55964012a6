"""Pydantic and Pandera schemas for the county case, census and mobility tables."""

from datetime import date
from typing import Optional

import numpy as np
import pandas as pd
import pandera as pa
from pandera.typing import Series
from pydantic import BaseModel, Field


class CaseCountsFrame(pa.DataFrameModel):
    """
    Cumulative confirmed cases by county and date (one row per county-day).

    ``fips`` is nullable: "Unknown" county rows carry no code and are dropped
    later because they cannot be joined to a population.
    """

    date: Series[pa.DateTime]
    state: Series[str]
    fips: Series[pd.Int64Dtype] = pa.Field(nullable=True)
    cases: Series[float] = pa.Field(ge=0, description="Cumulative confirmed cases")

    class Config:
        name = "CaseCounts"
        coerce = True
        strict = False


class PopulationFrame(pa.DataFrameModel):
    fips: Series[pd.Int64Dtype] = pa.Field(unique=True)
    population: Series[float] = pa.Field(ge=0, nullable=True)

    class Config:
        name = "CountyPopulation"
        coerce = True
        strict = False


class CensusFrame(pa.DataFrameModel):
    fips: Series[pd.Int64Dtype] = pa.Field(unique=True)
    elderly_pct: Series[float] = pa.Field(
        ge=0, le=100, nullable=True, description="Share of residents aged 65+ (%)"
    )
    density: Series[float] = pa.Field(
        ge=0, nullable=True, description="Residents per square mile"
    )

    class Config:
        name = "CountyCensus"
        coerce = True
        strict = False


class MetroFrame(pa.DataFrameModel):
    fips: Series[pd.Int64Dtype] = pa.Field(unique=True)
    metro: Series[bool]

    class Config:
        name = "MetroMembership"
        coerce = True
        strict = False


class MobilityFrame(pa.DataFrameModel):
    """Percent change from the pre-pandemic baseline, per county and date."""

    fips: Series[pd.Int64Dtype]
    date: Series[pa.DateTime]
    retail_recreation: Series[float] = pa.Field(nullable=True)
    grocery_pharmacy: Series[float] = pa.Field(nullable=True)
    parks: Series[float] = pa.Field(nullable=True)
    transit: Series[float] = pa.Field(nullable=True)
    workplaces: Series[float] = pa.Field(nullable=True)
    residential: Series[float] = pa.Field(nullable=True)

    class Config:
        name = "CountyMobility"
        coerce = True
        strict = False
        unique = ["fips", "date"]


class ModelFrameSchema(pa.DataFrameModel):
    """
    Schema of the derived dataset handed to the fitting engine.

    Mobility columns stay nullable: rows without mobility are kept here and
    only removed for the specifications that use a mobility covariate.
    """

    fips: Series[int]
    date: Series[pa.DateTime]
    day: Series[int] = pa.Field(ge=0, description="Days since the first modelled date")
    t: Series[float] = pa.Field(ge=0, le=1, description="Fraction of the modelled window elapsed")
    t2: Series[float] = pa.Field(ge=0, le=1)
    new_cases: Series[int] = pa.Field(ge=0)
    population: Series[float] = pa.Field(gt=0)
    log_population: Series[float]
    log_density: Series[float] = pa.Field(nullable=True)
    elderly_pct: Series[float] = pa.Field(nullable=True)
    near_city: Series[bool]
    high_risk: Series[bool]
    retail_recreation: Series[float] = pa.Field(nullable=True)
    grocery_pharmacy: Series[float] = pa.Field(nullable=True)
    parks: Series[float] = pa.Field(nullable=True)
    transit: Series[float] = pa.Field(nullable=True)
    workplaces: Series[float] = pa.Field(nullable=True)
    residential: Series[float] = pa.Field(nullable=True)

    @pa.check("log_population")
    def finite_log_population(cls, series: Series[float]) -> Series[bool]:
        return pd.Series(np.isfinite(series.to_numpy(dtype=float)), index=series.index)

    class Config:
        name = "ModelFrame"
        coerce = True
        strict = False


class County(BaseModel):
    """Static attributes of one modelled county."""

    fips: int = Field(ge=1000, le=56999)
    name: str = ""
    population: float = Field(gt=0)
    density: Optional[float] = Field(default=None, ge=0)
    elderly_pct: Optional[float] = Field(default=None, ge=0, le=100)
    near_city: bool = False
    high_risk: bool = False
    first_date: date
    n_days: int = Field(ge=1)


def counties_from_frame(frame: pd.DataFrame) -> list[County]:
    """Collapse a model frame to one :class:`County` per FIPS code."""
    counties = []
    for fips, group in frame.sort_values("date").groupby("fips", sort=True):
        first = group.iloc[0]
        density = first.get("density")
        elderly = first.get("elderly_pct")
        name = first.get("county")
        counties.append(
            County(
                fips=int(fips),
                name="" if pd.isna(name) else str(name),
                population=float(first["population"]),
                density=None if pd.isna(density) else float(density),
                elderly_pct=None if pd.isna(elderly) else float(elderly),
                near_city=bool(first["near_city"]),
                high_risk=bool(first["high_risk"]),
                first_date=pd.Timestamp(first["date"]).date(),
                n_days=len(group),
            )
        )
    return counties
