"""
Prior and posterior predictive checks on the per-capita scale.

The quantity the analyst looks at is the expected number of new cases per
resident per day. A prior that implies more daily cases than residents is
implausible and must be tightened before fitting.
"""

from dataclasses import dataclass
from typing import Literal, Optional

import arviz as az
import numpy as np
import pandas as pd
import xarray as xr
from numpy.typing import NDArray


@dataclass
class RateSummary:
    group: str
    mean: float
    median: float
    lower: float
    upper: float
    max: float
    interval_prob: float
    exceed_population: int
    share_exceeding: float

    @property
    def plausible(self) -> bool:
        return self.exceed_population == 0

    def as_dict(self) -> dict[str, float]:
        return {
            "mean": self.mean,
            "median": self.median,
            f"q{(1 - self.interval_prob) / 2:.3f}": self.lower,
            f"q{(1 + self.interval_prob) / 2:.3f}": self.upper,
            "max": self.max,
            "exceed_population": self.exceed_population,
            "share_exceeding": self.share_exceeding,
        }


def _population(idata: az.InferenceData, population: Optional[NDArray[np.floating]]) -> xr.DataArray:
    if population is not None:
        return xr.DataArray(np.asarray(population, dtype=np.float64), dims="obs_id")
    if "constant_data" in idata.groups() and "population" in idata.constant_data:
        return idata.constant_data["population"]
    raise ValueError("Population not stored in the trace; pass it explicitly")


def per_capita_rates(
    idata: az.InferenceData,
    group: Literal["posterior", "prior"] = "posterior",
    population: Optional[NDArray[np.floating]] = None,
    var_name: str = "mu",
) -> xr.DataArray:
    """Draws of expected daily cases divided by county population (chain, draw, obs_id)."""
    if group not in idata.groups():
        raise ValueError(f"Trace has no {group!r} group")
    mu = idata[group][var_name]
    pop = _population(idata, population)
    return mu / pop


def summarize_rates(
    idata: az.InferenceData,
    group: Literal["posterior", "prior"] = "posterior",
    population: Optional[NDArray[np.floating]] = None,
    interval_prob: float = 0.9,
) -> RateSummary:
    """
    Summarise the distribution of per-capita expected daily cases.

    ``exceed_population`` counts (draw, observation) pairs whose expected
    cases exceed the county population.
    """
    rates = per_capita_rates(idata, group, population).values.ravel()
    rates = rates[np.isfinite(rates)]
    tail = (1 - interval_prob) / 2
    exceeding = int((rates > 1.0).sum())

    return RateSummary(
        group=group,
        mean=float(rates.mean()),
        median=float(np.median(rates)),
        lower=float(np.quantile(rates, tail)),
        upper=float(np.quantile(rates, 1 - tail)),
        max=float(rates.max()),
        interval_prob=interval_prob,
        exceed_population=exceeding,
        share_exceeding=exceeding / rates.size if rates.size else 0.0,
    )


def _interval(draws: xr.DataArray, prob: float) -> tuple[NDArray, NDArray]:
    tail = (1 - prob) / 2
    q = draws.quantile([tail, 1 - tail], dim=("chain", "draw")).values
    return q[0], q[1]


def predictive_coverage(
    idata: az.InferenceData,
    observed: NDArray[np.integer],
    prob: float = 0.9,
    var_name: str = "new_cases",
) -> float:
    """Fraction of observations inside the central ``prob`` posterior predictive interval."""
    if "posterior_predictive" not in idata.groups():
        raise ValueError("Trace must contain a posterior_predictive group")
    low, high = _interval(idata.posterior_predictive[var_name], prob)
    observed = np.asarray(observed)
    return float(np.mean((observed >= low) & (observed <= high)))


def posterior_predictive_check_by_county(
    idata: az.InferenceData,
    frame: pd.DataFrame,
    prob: float = 0.9,
    var_name: str = "new_cases",
    county_col: str = "fips",
) -> pd.DataFrame:
    """
    Calibration per county: observed vs. posterior predictive mean and the
    share of days inside the central interval.
    """
    if "posterior_predictive" not in idata.groups():
        raise ValueError("Trace must contain a posterior_predictive group")

    draws = idata.posterior_predictive[var_name]
    if draws.sizes["obs_id"] != len(frame):
        raise ValueError(
            f"Trace has {draws.sizes['obs_id']} observations, frame has {len(frame)}"
        )
    pred_mean = draws.mean(dim=("chain", "draw")).values
    low, high = _interval(draws, prob)

    y = frame[var_name].to_numpy()
    counties = frame[county_col].to_numpy()
    population = frame["population"].to_numpy(dtype=np.float64)

    records = []
    for county in np.unique(counties):
        mask = counties == county
        records.append(
            {
                county_col: county,
                "n_obs": int(mask.sum()),
                "observed_total": int(y[mask].sum()),
                "predicted_total": float(pred_mean[mask].sum()),
                "rmse": float(np.sqrt(np.mean((y[mask] - pred_mean[mask]) ** 2))),
                f"coverage_{round(prob * 100)}": float(
                    np.mean((y[mask] >= low[mask]) & (y[mask] <= high[mask]))
                ),
                "predicted_per_100k": float(
                    1e5 * np.mean(pred_mean[mask] / population[mask])
                ),
            }
        )

    return pd.DataFrame(records).sort_values(county_col).reset_index(drop=True)
