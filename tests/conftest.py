"""
Pytest configuration and shared fixtures for casecurve tests.

Provides reusable fixtures for:
- Random number generators
- Raw input tables (cases, population, census, metro, mobility)
- Model frames
- Hand-built InferenceData objects (no sampling)
- A fitted time-only trace (session-scoped for speed)
"""

import numpy as np
import pandas as pd
import pytest
from hypothesis import Verbosity, settings

from casecurve.config import MOBILITY_COLUMNS, AnalysisConfig
from casecurve.data.loading import merge_sources
from casecurve.data.synthetic import SyntheticDataConfig, generate_synthetic_tables
from casecurve.transforms.features import build_model_frame


# =============================================================================
# BASIC FIXTURES
# =============================================================================


@pytest.fixture
def random_seed() -> int:
    """Consistent random seed for reproducible tests."""
    return 42


@pytest.fixture
def rng(random_seed: int) -> np.random.Generator:
    return np.random.default_rng(random_seed)


@pytest.fixture
def config() -> AnalysisConfig:
    return AnalysisConfig()


# =============================================================================
# RAW TABLE FIXTURES
# =============================================================================


@pytest.fixture
def raw_tables() -> dict[str, pd.DataFrame]:
    """
    Four days for three Michigan counties plus one Ohio county.

    - 26163 (Wayne): near-city, metro, has a downward revision on day 3
    - 26081 (Kent): metro, no mobility on day 2
    - 26001 (Alcona): not metro
    - 39035 (Cuyahoga, OH): wrong state
    """
    dates = pd.to_datetime(["2020-03-20", "2020-03-21", "2020-03-22", "2020-03-23"])
    cumulative = {
        26163: [10, 25, 40, 35],
        26081: [2, 6, 9, 15],
        26001: [1, 2, 3, 4],
        39035: [5, 9, 14, 20],
    }
    names = {26163: "Wayne", 26081: "Kent", 26001: "Alcona", 39035: "Cuyahoga"}
    states = {26163: "Michigan", 26081: "Michigan", 26001: "Michigan", 39035: "Ohio"}

    cases = pd.DataFrame(
        [
            {
                "date": d,
                "county": names[f],
                "state": states[f],
                "fips": f,
                "cases": float(c),
            }
            for f, series in cumulative.items()
            for d, c in zip(dates, series)
        ]
    )
    cases["fips"] = cases["fips"].astype("Int64")

    codes = list(cumulative)
    population = pd.DataFrame(
        {"fips": codes, "population": [1_749_343.0, 657_974.0, 10_405.0, 1_235_072.0]}
    )
    census = pd.DataFrame(
        {
            "fips": codes,
            "elderly_pct": [15.8, 13.6, 33.3, 18.1],
            "density": [2863.0, 772.0, 15.3, 2669.0],
        }
    )
    metro = pd.DataFrame({"fips": codes, "metro": [True, True, False, True]})
    for table in (population, census, metro):
        table["fips"] = table["fips"].astype("Int64")

    mobility_rows = []
    for f in codes:
        for i, d in enumerate(dates):
            if f == 26081 and i == 2:
                continue
            row = {"fips": f, "date": d}
            row.update({col: -10.0 - i for col in MOBILITY_COLUMNS})
            mobility_rows.append(row)
    mobility = pd.DataFrame(mobility_rows)
    mobility["fips"] = mobility["fips"].astype("Int64")

    return {
        "cases": cases,
        "population": population,
        "census": census,
        "metro": metro,
        "mobility": mobility,
    }


@pytest.fixture
def raw_csv_dir(tmp_path, raw_tables: dict[str, pd.DataFrame]):
    """The raw tables written as zero-padded-FIPS CSV files."""
    for name, table in raw_tables.items():
        out = table.copy()
        out["fips"] = out["fips"].map(lambda code: f"{int(code):05d}")
        out.to_csv(tmp_path / f"{name}.csv", index=False)
    return tmp_path


@pytest.fixture
def merged(raw_tables: dict[str, pd.DataFrame]) -> pd.DataFrame:
    return merge_sources(**raw_tables)


@pytest.fixture
def model_frame(merged: pd.DataFrame, config: AnalysisConfig) -> pd.DataFrame:
    return build_model_frame(merged, config)


@pytest.fixture
def synthetic_frame(random_seed: int) -> pd.DataFrame:
    """Three metro counties x 30 days from the synthetic generator."""
    tables, _ = generate_synthetic_tables(SyntheticDataConfig(random_seed=random_seed))
    return build_model_frame(tables.merged(), AnalysisConfig())


# =============================================================================
# INFERENCE DATA FIXTURES (no sampling)
# =============================================================================


def make_fake_idata(
    rng: np.random.Generator,
    n_obs: int = 40,
    n_chains: int = 2,
    n_draws: int = 200,
    population: float = 1e5,
    rate: float = 1e-3,
    shift: float = 0.0,
):
    """
    InferenceData shaped like a fitted model: ``mu`` in the posterior, a
    log-likelihood, posterior predictive ``new_cases`` and constant
    ``population``.
    """
    import arviz as az

    mu = rng.lognormal(np.log(population * rate), 0.1, size=(n_chains, n_draws, n_obs))
    log_lik = rng.normal(-3.0 + shift, 0.2, size=(n_chains, n_draws, n_obs))
    pp = rng.poisson(mu)
    return az.from_dict(
        posterior={
            "intercept": rng.normal(-9, 0.1, size=(n_chains, n_draws)),
            "mu": mu,
        },
        log_likelihood={"new_cases": log_lik},
        posterior_predictive={"new_cases": pp},
        constant_data={"population": np.full(n_obs, population)},
        dims={"mu": ["obs_id"], "new_cases": ["obs_id"], "population": ["obs_id"]},
    )


@pytest.fixture
def fake_idata(rng: np.random.Generator):
    return make_fake_idata(rng)


@pytest.fixture
def idata_factory(rng: np.random.Generator):
    """Build more fake traces from the same generator, e.g. ``idata_factory(shift=0.5)``."""

    def factory(**kwargs):
        return make_fake_idata(rng, **kwargs)

    return factory


# =============================================================================
# MODEL FIXTURES (Session-scoped for speed)
# =============================================================================


@pytest.fixture(scope="session")
def fitted_time_only():
    """
    Time-only model fitted to the synthetic three-county dataset.

    Session-scoped to avoid refitting for every test.
    """
    pytest.importorskip("pymc")

    from casecurve.config import SamplerSettings
    from casecurve.data.synthetic import generate_model_frame
    from casecurve.models.sampling import fit_model
    from casecurve.models.specification import get_specification

    frame, truth = generate_model_frame(SyntheticDataConfig(random_seed=42))
    settings_ = SamplerSettings(
        draws=300, tune=500, chains=2, target_accept=0.95, random_seed=42, progressbar=False
    )
    result = fit_model(get_specification("time_only"), frame, settings_)
    return result, truth


# =============================================================================
# PYTEST CONFIGURATION
# =============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line("markers", "integration: marks tests requiring PyMC sampling")
    config.addinivalue_line("markers", "pymc: marks tests requiring PyMC")


def pytest_collection_modifyitems(config, items):
    """Auto-mark tests based on their requirements."""
    for item in items:
        if "pymc" in item.nodeid or "fitted" in item.nodeid.lower():
            item.add_marker(pytest.mark.pymc)

        if "integration" in item.nodeid:
            item.add_marker(pytest.mark.integration)
            item.add_marker(pytest.mark.slow)


# =============================================================================
# HYPOTHESIS PROFILES
# =============================================================================

settings.register_profile("ci", max_examples=50, deadline=None)
settings.register_profile("dev", max_examples=10, deadline=None)
settings.register_profile("debug", max_examples=5, verbosity=Verbosity.verbose, deadline=None)
