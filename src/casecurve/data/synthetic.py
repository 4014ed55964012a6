"""
Synthetic county tables with a known data-generating process.

Daily new cases follow the time-only model exactly:

    log mu[c, d] = intercept + u[c] + beta_t * t + beta_t2 * t**2 + log(population[c])
    new_cases[c, d] ~ NegativeBinomial(mu[c, d], alpha)

where ``t = d / (n_days - 1)`` is the elapsed share of the window on day ``d``.

Mobility is generated but has no effect on cases, so a mobility model
should find coefficients near zero. The output is the five raw tables
(cumulative cases, population, census, metro, mobility), so the full
load-and-transform path is exercised.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from pathlib import Path
from typing import Optional

import numpy as np
import pandas as pd
from numpy.typing import NDArray

from casecurve.config import MOBILITY_COLUMNS, AnalysisConfig
from casecurve.data.loading import merge_sources
from casecurve.data.schemas import (
    CaseCountsFrame,
    CensusFrame,
    MetroFrame,
    MobilityFrame,
    PopulationFrame,
)

logger = logging.getLogger(__name__)


@dataclass
class SyntheticCounty:
    fips: int
    name: str
    population: int
    density: float
    elderly_pct: float
    metro: bool = True


@dataclass
class TrueParameters:
    """
    Ground truth behind a synthetic dataset.

    Attributes
    ----------
    intercept : float
        Log expected daily cases per resident at ``t = 0``.
    beta_t, beta_t2 : float
        Coefficients of the elapsed share of the window and its square.
    county_sd : float
        Spread of the county intercept offsets.
    county_effects : dict[int, float]
        Realised offset per metropolitan county.
    alpha : float
        Negative-binomial dispersion (larger is closer to Poisson).
    """

    intercept: float = -9.0
    beta_t: float = 4.0
    beta_t2: float = -3.0
    county_sd: float = 0.3
    alpha: float = 10.0
    county_effects: dict[int, float] = field(default_factory=dict)

    @property
    def fixed_effects(self) -> dict[str, float]:
        return {"t": self.beta_t, "t2": self.beta_t2}

    def log_mu(self, fips: int, t: NDArray, log_population: float) -> NDArray[np.floating]:
        return (
            self.intercept
            + self.county_effects.get(fips, 0.0)
            + self.beta_t * t
            + self.beta_t2 * t**2
            + log_population
        )

    def to_dict(self) -> dict:
        return {
            "intercept": self.intercept,
            "beta_t": self.beta_t,
            "beta_t2": self.beta_t2,
            "county_sd": self.county_sd,
            "alpha": self.alpha,
            "county_effects": {str(k): v for k, v in self.county_effects.items()},
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TrueParameters":
        return cls(
            intercept=float(data["intercept"]),
            beta_t=float(data["beta_t"]),
            beta_t2=float(data["beta_t2"]),
            county_sd=float(data["county_sd"]),
            alpha=float(data["alpha"]),
            county_effects={int(k): float(v) for k, v in data.get("county_effects", {}).items()},
        )


@dataclass
class SyntheticDataConfig:
    """
    Shape of the synthetic dataset.

    The defaults give three metropolitan Michigan counties (one of them in
    the near-city set) plus one rural county that the metro filter removes,
    observed for 30 days.
    """

    state: str = "Michigan"
    counties: list[SyntheticCounty] = field(
        default_factory=lambda: [
            SyntheticCounty(26163, "Wayne", 1_749_343, 2_863.0, 15.8),
            SyntheticCounty(26081, "Kent", 657_974, 772.0, 13.6),
            SyntheticCounty(26065, "Ingham", 292_406, 522.0, 12.9),
            SyntheticCounty(26001, "Alcona", 10_405, 15.3, 33.3, metro=False),
        ]
    )
    n_days: int = 30
    start_date: date = field(default_factory=lambda: date(2020, 3, 15))

    # Mean and day-to-day spread of each mobility series (percent change).
    mobility_means: dict[str, float] = field(
        default_factory=lambda: {
            "retail_recreation": -30.0,
            "grocery_pharmacy": -10.0,
            "parks": 10.0,
            "transit": -40.0,
            "workplaces": -35.0,
            "residential": 12.0,
        }
    )
    mobility_sd: float = 6.0
    missing_mobility_fraction: float = 0.1

    # Day at which the first county's cumulative count is revised down by 5.
    revision_day: Optional[int] = None

    random_seed: int = 42


@dataclass
class SyntheticTables:
    cases: pd.DataFrame
    population: pd.DataFrame
    census: pd.DataFrame
    metro: pd.DataFrame
    mobility: pd.DataFrame

    def save(self, output_dir: Path) -> dict[str, Path]:
        output_dir = Path(output_dir)
        output_dir.mkdir(exist_ok=True, parents=True)
        written = {}
        for name in ("cases", "population", "census", "metro", "mobility"):
            path = output_dir / f"{name}.csv"
            table = getattr(self, name).copy()
            table["fips"] = table["fips"].map(lambda code: f"{int(code):05d}")
            table.to_csv(path, index=False)
            written[name] = path
        return written

    def merged(self) -> pd.DataFrame:
        return merge_sources(
            CaseCountsFrame.validate(self.cases),
            PopulationFrame.validate(self.population),
            CensusFrame.validate(self.census),
            MetroFrame.validate(self.metro),
            MobilityFrame.validate(self.mobility),
        )


def generate_true_parameters(
    config: SyntheticDataConfig,
    random_seed: Optional[int] = None,
) -> TrueParameters:
    rng = np.random.default_rng(random_seed if random_seed is not None else config.random_seed)
    truth = TrueParameters()
    metro = [c.fips for c in config.counties if c.metro]
    offsets = rng.normal(0.0, truth.county_sd, size=len(metro))
    truth.county_effects = {fips: float(u) for fips, u in zip(metro, offsets)}
    return truth


def _draw_negbinom(
    rng: np.random.Generator, mu: NDArray[np.floating], alpha: float
) -> NDArray[np.integer]:
    # NumPy parameterises by (n, p); mean mu and dispersion alpha give n=alpha.
    return rng.negative_binomial(alpha, alpha / (alpha + mu))


def generate_synthetic_tables(
    config: Optional[SyntheticDataConfig] = None,
    true_params: Optional[TrueParameters] = None,
    random_seed: Optional[int] = None,
) -> tuple[SyntheticTables, TrueParameters]:
    """
    Generate the five raw input tables and the parameters behind them.

    Examples
    --------
    >>> tables, truth = generate_synthetic_tables()
    >>> len(tables.cases)
    120
    """
    if config is None:
        config = SyntheticDataConfig()
    seed = random_seed if random_seed is not None else config.random_seed
    rng = np.random.default_rng(seed)
    if true_params is None:
        true_params = generate_true_parameters(config, random_seed=seed)

    days = np.arange(config.n_days)
    t = days / max(config.n_days - 1, 1)
    dates = [config.start_date + timedelta(days=int(d)) for d in days]

    case_records = []
    mobility_records = []
    for idx, county in enumerate(config.counties):
        mu = np.exp(true_params.log_mu(county.fips, t, np.log(county.population)))
        cumulative = np.cumsum(_draw_negbinom(rng, mu, true_params.alpha))
        if idx == 0 and config.revision_day is not None and 0 < config.revision_day < config.n_days:
            cumulative[config.revision_day] = cumulative[config.revision_day - 1] - 5

        for current, total in zip(dates, cumulative):
            case_records.append(
                {
                    "date": current,
                    "county": county.name,
                    "state": config.state,
                    "fips": county.fips,
                    "cases": int(total),
                }
            )
            if rng.random() < config.missing_mobility_fraction:
                continue
            row = {"fips": county.fips, "date": current}
            for col in MOBILITY_COLUMNS:
                row[col] = round(float(rng.normal(config.mobility_means[col], config.mobility_sd)), 1)
            mobility_records.append(row)

    cases = pd.DataFrame(case_records)
    cases["date"] = pd.to_datetime(cases["date"])
    mobility = pd.DataFrame(mobility_records, columns=["fips", "date"] + MOBILITY_COLUMNS)
    mobility["date"] = pd.to_datetime(mobility["date"])

    tables = SyntheticTables(
        cases=cases,
        population=pd.DataFrame(
            {"fips": [c.fips for c in config.counties], "population": [c.population for c in config.counties]}
        ),
        census=pd.DataFrame(
            {
                "fips": [c.fips for c in config.counties],
                "elderly_pct": [c.elderly_pct for c in config.counties],
                "density": [c.density for c in config.counties],
            }
        ),
        metro=pd.DataFrame(
            {"fips": [c.fips for c in config.counties], "metro": [c.metro for c in config.counties]}
        ),
        mobility=mobility,
    )
    logger.info(
        "Generated %d case rows and %d mobility rows for %d counties",
        len(cases),
        len(mobility),
        len(config.counties),
    )
    return tables, true_params


def generate_model_frame(
    config: Optional[SyntheticDataConfig] = None,
    true_params: Optional[TrueParameters] = None,
    random_seed: Optional[int] = None,
) -> tuple[pd.DataFrame, TrueParameters]:
    """Synthetic tables pushed through the join and feature derivation."""
    from casecurve.transforms.features import build_model_frame

    if config is None:
        config = SyntheticDataConfig()
    tables, truth = generate_synthetic_tables(config, true_params, random_seed)
    frame = build_model_frame(tables.merged(), AnalysisConfig(state=config.state))
    return frame, truth


def save_synthetic_data(
    tables: SyntheticTables,
    true_params: TrueParameters,
    output_dir: Path = Path("data"),
) -> dict[str, Path]:
    """Write the five CSV tables and ``ground_truth.json`` to ``output_dir``."""
    written = tables.save(output_dir)
    path = Path(output_dir) / "ground_truth.json"
    with open(path, "w", encoding="utf-8") as f:
        json.dump(true_params.to_dict(), f, indent=2)
    written["ground_truth"] = path
    return written


def load_ground_truth(path: Path = Path("data/ground_truth.json")) -> TrueParameters:
    with open(path, encoding="utf-8") as f:
        return TrueParameters.from_dict(json.load(f))
