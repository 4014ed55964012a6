"""Analysis configuration: target state, county sets, input paths and sampler settings."""

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator


# Detroit metropolitan area: Wayne, Oakland, Macomb, Washtenaw, Livingston,
# St. Clair and Monroe counties.
NEAR_CITY_FIPS: frozenset[int] = frozenset(
    {26163, 26125, 26099, 26161, 26093, 26147, 26115}
)

MOBILITY_COLUMNS = [
    "retail_recreation",
    "grocery_pharmacy",
    "parks",
    "transit",
    "workplaces",
    "residential",
]


class DataPaths(BaseModel):
    """Locations of the five input tables."""

    cases: Path = Path("data/cases.csv")
    population: Path = Path("data/population.csv")
    census: Path = Path("data/census.csv")
    metro: Path = Path("data/metro.csv")
    mobility: Path = Path("data/mobility.csv")

    @classmethod
    def from_directory(cls, directory: Path) -> "DataPaths":
        directory = Path(directory)
        return cls(
            cases=directory / "cases.csv",
            population=directory / "population.csv",
            census=directory / "census.csv",
            metro=directory / "metro.csv",
            mobility=directory / "mobility.csv",
        )


class SamplerSettings(BaseModel):
    """
    Control parameters passed to the NUTS sampler.

    ``target_accept`` is raised above PyMC's default of 0.8 because the
    county random-slope models produce divergent transitions otherwise.
    """

    draws: int = Field(1000, ge=1)
    tune: int = Field(1000, ge=0)
    chains: int = Field(4, ge=1)
    cores: Optional[int] = Field(None, ge=1)
    target_accept: float = Field(0.95, gt=0, lt=1)
    random_seed: int = 42
    posterior_predictive: bool = True
    progressbar: bool = True


class AnalysisConfig(BaseModel):
    """
    Everything that parameterises one analysis run.

    Example
    -------
    >>> config = AnalysisConfig.from_json("analysis.json")
    >>> config.sampler.target_accept
    0.95
    """

    state: str = "Michigan"
    near_city_fips: frozenset[int] = NEAR_CITY_FIPS
    high_risk_elderly_pct: float = Field(
        20.0, ge=0, le=100, description="Elderly share (%) at or above which a county is high-risk"
    )
    min_cumulative_cases: int = Field(
        1, ge=0, description="Rows need strictly more cumulative cases than this"
    )
    paths: DataPaths = Field(default_factory=DataPaths)
    sampler: SamplerSettings = Field(default_factory=SamplerSettings)
    pareto_k_threshold: float = Field(0.7, gt=0)
    selection_se_multiplier: float = Field(2.0, ge=0)
    harmonize_samples: bool = True
    output_dir: Path = Path("results")

    @field_validator("near_city_fips")
    @classmethod
    def must_be_valid_fips(cls, v: frozenset[int]) -> frozenset[int]:
        bad = sorted(code for code in v if not 1000 <= code <= 56999)
        if bad:
            raise ValueError(f"Not county FIPS codes: {bad}")
        return v

    @classmethod
    def from_json(cls, path: Path) -> "AnalysisConfig":
        with open(path, encoding="utf-8") as f:
            return cls.model_validate_json(f.read())
