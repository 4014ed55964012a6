"""
Tests for the synthetic data generator.

Tests cover:
- Ground-truth parameters and the log-mean they imply
- Shape and reproducibility of the five raw tables
- The tables pushed through the model-frame derivation
- Saving and reloading tables and ground truth
"""

import numpy as np
import pytest

from casecurve.config import DataPaths
from casecurve.data.loading import load_sources
from casecurve.data.synthetic import (
    SyntheticDataConfig,
    TrueParameters,
    generate_model_frame,
    generate_synthetic_tables,
    generate_true_parameters,
    load_ground_truth,
    save_synthetic_data,
)


# =============================================================================
# GROUND TRUTH TESTS
# =============================================================================


class TestTrueParameters:
    """Tests for the generating parameters."""

    def test_county_effects_only_for_metro(self):
        """Only counties that survive the metro filter get an offset."""
        config = SyntheticDataConfig()
        truth = generate_true_parameters(config)
        assert set(truth.county_effects) == {c.fips for c in config.counties if c.metro}

    def test_roundtrip_dict(self):
        """Ground truth survives conversion to and from a plain dict."""
        truth = generate_true_parameters(SyntheticDataConfig())
        restored = TrueParameters.from_dict(truth.to_dict())
        assert restored == truth

    def test_log_mu(self):
        """The log mean is the quadratic curve plus county offset and log population."""
        truth = TrueParameters(county_effects={1: 0.5})
        t = np.array([0.0, 0.5, 1.0])
        expected = -9.0 + 0.5 + 4.0 * t - 3.0 * t**2 + np.log(1e5)
        np.testing.assert_allclose(truth.log_mu(1, t, np.log(1e5)), expected)


# =============================================================================
# TABLE TESTS
# =============================================================================


class TestTables:
    """Tests for the raw generated tables."""

    def test_shapes(self):
        """One case row per county-day; some mobility rows are missing."""
        tables, _ = generate_synthetic_tables()
        assert len(tables.cases) == 4 * 30
        assert len(tables.population) == 4
        assert len(tables.mobility) < 4 * 30

    def test_cumulative_non_decreasing_without_revision(self):
        """Cumulative counts only go up unless a revision is requested."""
        tables, _ = generate_synthetic_tables()
        for _, group in tables.cases.groupby("fips"):
            assert (np.diff(group["cases"].to_numpy()) >= 0).all()

    def test_reproducible(self):
        """The same seed gives the same tables."""
        a, _ = generate_synthetic_tables(random_seed=7)
        b, _ = generate_synthetic_tables(random_seed=7)
        assert a.cases.equals(b.cases)
        assert a.mobility.equals(b.mobility)

    def test_revision_is_clamped_in_frame(self):
        """A downward revision shows up as zero new cases in the frame."""
        config = SyntheticDataConfig(revision_day=10)
        tables, _ = generate_synthetic_tables(config)
        first = tables.cases[tables.cases["fips"] == config.counties[0].fips]["cases"].to_numpy()
        assert first[10] - first[9] == -5

        frame, _ = generate_model_frame(config)
        wayne = frame[frame["fips"] == config.counties[0].fips]
        assert wayne.loc[wayne["day"] == 10, "new_cases"].iloc[0] == 0
        assert (frame["new_cases"] >= 0).all()

    def test_long_horizon_counts_stay_below_population(self):
        """The generating curve is defined on the window, so long windows stay plausible."""
        config = SyntheticDataConfig(n_days=200)
        tables, _ = generate_synthetic_tables(config)
        daily = tables.cases.groupby("fips")["cases"].diff().fillna(tables.cases["cases"])
        population = tables.cases["fips"].map(
            tables.population.set_index("fips")["population"]
        )
        assert (daily < population).all()


# =============================================================================
# MODEL FRAME TESTS
# =============================================================================


class TestModelFrame:
    """Tests for the generated tables after feature derivation."""

    def test_rural_county_removed(self):
        """The non-metro county is filtered out."""
        frame, _ = generate_model_frame()
        assert frame["fips"].nunique() == 3
        assert 26001 not in set(frame["fips"])

    def test_near_city(self):
        """Wayne is the only near-city county in the default set."""
        frame, _ = generate_model_frame()
        near = frame.groupby("fips")["near_city"].first()
        assert near.to_dict() == {26065: False, 26081: False, 26163: True}

    def test_missing_mobility_rows_kept(self):
        """Rows without mobility are kept in the frame."""
        frame, _ = generate_model_frame()
        assert len(frame) == 90
        assert frame["residential"].isna().any()

    @pytest.mark.parametrize("n_days", [5, 45, 200])
    def test_days_configurable(self, n_days):
        """The window length sets the day range; t always spans [0, 1]."""
        frame, _ = generate_model_frame(SyntheticDataConfig(n_days=n_days))
        assert frame["day"].max() == n_days - 1
        assert frame["t"].min() == 0.0
        assert frame["t"].max() == 1.0


# =============================================================================
# PERSISTENCE TESTS
# =============================================================================


class TestPersistence:
    """Tests for writing and reading synthetic data."""

    def test_save_and_reload(self, tmp_path):
        """Saved tables load back through the regular readers."""
        tables, truth = generate_synthetic_tables()
        written = save_synthetic_data(tables, truth, output_dir=tmp_path)
        assert set(written) == {"cases", "population", "census", "metro", "mobility", "ground_truth"}

        assert load_ground_truth(tmp_path / "ground_truth.json") == truth

        merged = load_sources(DataPaths.from_directory(tmp_path), state="Michigan")
        assert len(merged) == len(tables.cases)
        assert merged["population"].notna().all()

    def test_fips_written_zero_padded(self, tmp_path):
        """Four-digit FIPS codes are written with a leading zero."""
        config = SyntheticDataConfig()
        config.counties[0].fips = 6037
        tables, truth = generate_synthetic_tables(config)
        save_synthetic_data(tables, truth, output_dir=tmp_path)
        first_line = (tmp_path / "population.csv").read_text().splitlines()[1]
        assert first_line.startswith("06037,")
