import logging
from collections.abc import Iterable, Sequence
from typing import Optional

import numpy as np
import pandas as pd

from casecurve.config import MOBILITY_COLUMNS, NEAR_CITY_FIPS, AnalysisConfig
from casecurve.data.schemas import ModelFrameSchema

logger = logging.getLogger(__name__)

MODEL_FRAME_COLUMNS = [
    "fips",
    "county",
    "date",
    "day",
    "t",
    "t2",
    "new_cases",
    "cases",
    "population",
    "log_population",
    "density",
    "log_density",
    "elderly_pct",
    "near_city",
    "high_risk",
] + MOBILITY_COLUMNS


def derive_new_cases(df: pd.DataFrame, cumulative_col: str = "cases") -> pd.Series:
    """
    Daily new cases from a cumulative series, per county.

    The first row of each county keeps its cumulative value. Downward
    revisions of the cumulative count produce negative differences, which
    are clamped to zero.
    """
    ordered = df.sort_values(["fips", "date"])
    daily = ordered.groupby("fips", sort=False)[cumulative_col].diff()
    daily = daily.fillna(ordered[cumulative_col])
    return daily.clip(lower=0).reindex(df.index)


def clamp_new_cases(values: pd.Series) -> pd.Series:
    return values.clip(lower=0)


def flag_near_city(fips: pd.Series, near_city_fips: Iterable[int] = NEAR_CITY_FIPS) -> pd.Series:
    codes = {int(c) for c in near_city_fips}
    return fips.astype("Int64").isin(codes).fillna(False).astype(bool)


def flag_high_risk(elderly_pct: pd.Series, threshold: float) -> pd.Series:
    return (elderly_pct >= threshold).fillna(False).astype(bool)


def scale_time(day: pd.Series) -> pd.Series:
    """
    Elapsed days as a fraction of the modelled window, in ``[0, 1]``.

    The time coefficients then describe the whole epidemic curve whatever
    its length, so one set of priors fits a 30-day and a 300-day analysis.
    """
    horizon = max(int(day.max()), 1)
    return day.astype(float) / horizon


def build_model_frame(
    merged: pd.DataFrame,
    config: Optional[AnalysisConfig] = None,
) -> pd.DataFrame:
    """
    Turn the joined source table into the dataset the models are fitted on.

    Keeps rows of the configured state with more than
    ``min_cumulative_cases`` cumulative cases, a known positive population
    and metropolitan membership. Rows with missing mobility survive with
    NaN mobility fields. A supplied ``new_cases`` column is used as is,
    except that rows without a value are dropped and negatives clamped.

    Parameters
    ----------
    merged : pd.DataFrame
        Output of :func:`casecurve.data.loading.merge_sources`.
    config : AnalysisConfig, optional
        Target state, near-city codes and thresholds. Defaults apply if None.

    Returns
    -------
    pd.DataFrame
        Validated model frame sorted by county and date.
    """
    if config is None:
        config = AnalysisConfig()

    df = merged[merged["state"] == config.state].copy()
    df = df.dropna(subset=["fips"])
    if df.empty:
        raise ValueError(f"No case rows for state {config.state!r}")

    if "new_cases" in df.columns:
        missing = df["new_cases"].isna()
        if missing.any():
            logger.warning("Dropping %d rows with no daily case count", int(missing.sum()))
            df = df[~missing].copy()
        df["new_cases"] = clamp_new_cases(df["new_cases"])
    else:
        df["new_cases"] = derive_new_cases(df)

    n_before = len(df)
    metro = df["metro"].astype("boolean").fillna(False).astype(bool) if "metro" in df else False
    keep = (
        (df["cases"] > config.min_cumulative_cases)
        & df["population"].notna()
        & (df["population"] > 0)
        & metro
    )
    df = df[keep].copy()
    logger.info("Kept %d of %d %s rows after filtering", len(df), n_before, config.state)
    if df.empty:
        raise ValueError("No rows left after filtering to metropolitan counties with cases")

    df["fips"] = df["fips"].astype(int)
    df["day"] = (df["date"] - df["date"].min()).dt.days.astype(int)
    df["t"] = scale_time(df["day"])
    df["t2"] = df["t"] ** 2
    df["new_cases"] = df["new_cases"].round().astype(int)
    df["log_population"] = np.log(df["population"].astype(float))
    density = df["density"].astype(float)
    df["log_density"] = np.log(density.where(density > 0))
    df["near_city"] = flag_near_city(df["fips"], config.near_city_fips)
    df["high_risk"] = flag_high_risk(df["elderly_pct"], config.high_risk_elderly_pct)

    for col in MOBILITY_COLUMNS:
        if col not in df.columns:
            df[col] = np.nan
    if "county" not in df.columns:
        df["county"] = ""

    df = df[MODEL_FRAME_COLUMNS].sort_values(["fips", "date"]).reset_index(drop=True)
    return ModelFrameSchema.validate(df)


def covariates_of(specs: Sequence) -> list[str]:
    """Ordered union of the covariates used by ``specs``."""
    seen: list[str] = []
    for spec in specs:
        for col in spec.covariates:
            if col not in seen:
                seen.append(col)
    return seen


def select_complete_cases(frame: pd.DataFrame, spec) -> pd.DataFrame:
    """
    Rows with every covariate of ``spec`` present.

    A row without mobility is dropped for a specification that uses a
    mobility covariate and kept for one that does not.
    """
    cols = list(spec.covariates)
    complete = frame.dropna(subset=cols) if cols else frame
    dropped = len(frame) - len(complete)
    if dropped:
        logger.info("%s: dropped %d incomplete rows", spec.name, dropped)
    return complete.reset_index(drop=True)


def harmonize_samples(frame: pd.DataFrame, specs: Sequence) -> pd.DataFrame:
    """Rows complete for every specification in ``specs``, so LOO scores share N."""
    cols = covariates_of(specs)
    return frame.dropna(subset=cols).reset_index(drop=True) if cols else frame
