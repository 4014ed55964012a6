"""
Tests for per-capita rate summaries and predictive calibration.

Tests cover:
- Expected daily cases per resident from fitted traces
- Plausibility summaries against county population
- Posterior predictive interval coverage, overall and by county
"""

import numpy as np
import pandas as pd
import pytest

from casecurve.evaluation.predictive import (
    per_capita_rates,
    posterior_predictive_check_by_county,
    predictive_coverage,
    summarize_rates,
)


# =============================================================================
# RATE TESTS
# =============================================================================


class TestPerCapitaRates:
    """Tests for expected cases divided by population."""

    def test_shape(self, fake_idata):
        """Rates keep the chain, draw and observation dimensions."""
        rates = per_capita_rates(fake_idata)
        assert rates.dims == ("chain", "draw", "obs_id")
        assert rates.shape == (2, 200, 40)

    def test_scale(self, fake_idata):
        """Rates recover the generating per-capita level."""
        rates = per_capita_rates(fake_idata)
        assert np.allclose(float(rates.median()), 1e-3, rtol=0.1)

    def test_explicit_population(self, fake_idata):
        """An explicit population overrides the stored one."""
        rates = per_capita_rates(fake_idata, population=np.full(40, 1e4))
        assert np.allclose(float(rates.median()), 1e-2, rtol=0.1)

    def test_missing_group(self, fake_idata):
        """Asking for an absent group is an error."""
        with pytest.raises(ValueError, match="prior"):
            per_capita_rates(fake_idata, group="prior")

    def test_missing_population(self):
        """Without stored or explicit population there is no rate."""
        import arviz as az

        idata = az.from_dict(posterior={"mu": np.ones((1, 5, 3))}, dims={"mu": ["obs_id"]})
        with pytest.raises(ValueError, match="Population"):
            per_capita_rates(idata)


class TestSummarizeRates:
    """Tests for the rate distribution summary."""

    def test_plausible(self, fake_idata):
        """Low rates are plausible and quantiles are ordered."""
        summary = summarize_rates(fake_idata)
        assert summary.plausible
        assert summary.exceed_population == 0
        assert summary.lower < summary.median < summary.upper <= summary.max

    def test_exceeding_population_counted(self, idata_factory):
        """Rates above one case per resident per day are counted."""
        idata = idata_factory(rate=1.5)
        summary = summarize_rates(idata)
        assert not summary.plausible
        assert summary.share_exceeding > 0.9

    def test_as_dict_keys(self, fake_idata):
        """Quantile keys follow the interval probability."""
        d = summarize_rates(fake_idata, interval_prob=0.9).as_dict()
        assert "q0.050" in d and "q0.950" in d


# =============================================================================
# COVERAGE TESTS
# =============================================================================


class TestCoverage:
    """Tests for overall predictive interval coverage."""

    def test_coverage_of_own_draws(self, fake_idata):
        """The predictive median is always inside the interval."""
        observed = fake_idata.posterior_predictive["new_cases"].median(dim=("chain", "draw")).values
        assert predictive_coverage(fake_idata, observed) == 1.0

    def test_far_observations_not_covered(self, fake_idata):
        """Observations far from the predictions are never covered."""
        observed = np.full(40, 10**7)
        assert predictive_coverage(fake_idata, observed) == 0.0

    def test_requires_posterior_predictive(self):
        """Coverage needs posterior predictive draws."""
        import arviz as az

        idata = az.from_dict(posterior={"mu": np.ones((1, 5, 3))})
        with pytest.raises(ValueError, match="posterior_predictive"):
            predictive_coverage(idata, np.ones(3))


class TestByCounty:
    """Tests for the per-county calibration table."""

    def _frame(self, n_obs: int, observed: np.ndarray) -> pd.DataFrame:
        return pd.DataFrame(
            {
                "fips": np.repeat([26081, 26163], n_obs // 2),
                "new_cases": observed,
                "population": 1e5,
            }
        )

    def test_one_row_per_county(self, fake_idata):
        """One row per county with counts, coverage and rates per 100k."""
        observed = fake_idata.posterior_predictive["new_cases"].median(dim=("chain", "draw")).values
        table = posterior_predictive_check_by_county(fake_idata, self._frame(40, observed))
        assert table["fips"].tolist() == [26081, 26163]
        assert (table["n_obs"] == 20).all()
        assert (table["coverage_90"] == 1.0).all()
        assert np.allclose(table["predicted_per_100k"], 100, rtol=0.1)

    def test_length_mismatch(self, fake_idata):
        """Frame and trace must describe the same observations."""
        with pytest.raises(ValueError, match="observations"):
            posterior_predictive_check_by_county(fake_idata, self._frame(10, np.zeros(10)))
