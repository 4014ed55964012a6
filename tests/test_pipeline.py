"""
End-to-end tests of the model-building loop on synthetic data.

Tests cover:
- Harmonised fitting, comparison, selection and saving
- Skipping comparison when samples differ in size
- Long analysis windows with prior checks enabled
"""

import pytest

pytest.importorskip("pymc")

from casecurve.config import AnalysisConfig, SamplerSettings
from casecurve.data.synthetic import SyntheticDataConfig, generate_model_frame
from casecurve.models.specification import get_specification
from casecurve.pipeline import run_model_sequence


@pytest.fixture
def quick_config() -> AnalysisConfig:
    return AnalysisConfig(
        sampler=SamplerSettings(draws=150, tune=300, chains=2, random_seed=1, progressbar=False)
    )


# =============================================================================
# PIPELINE TESTS (slow)
# =============================================================================


@pytest.mark.slow
class TestPipelineIntegration:
    """Tests that run the full prior check, fit, score and select loop."""

    def test_integration_harmonized_sequence(self, synthetic_frame, quick_config, tmp_path):
        """Harmonised runs share N, get compared and are saved."""
        specs = [get_specification("time_only"), get_specification("mobility")]
        stages = []
        result = run_model_sequence(
            synthetic_frame,
            specs=specs,
            config=quick_config,
            prior_draws=50,
            on_stage=lambda name, label: stages.append((name, label)),
        )

        assert list(result.runs) == ["time_only", "mobility"]
        n_obs = {run.n_obs for run in result.runs.values()}
        assert len(n_obs) == 1
        assert n_obs.pop() < len(synthetic_frame)

        assert set(result.comparison.index) == {"time_only", "mobility"}
        assert result.selection.selected in result.runs
        assert result.selected is result.runs[result.selection.selected]
        assert ("time_only", "sampling") in stages

        for run in result.runs.values():
            assert run.prior_rates is not None
            assert run.posterior_rates.plausible
            assert run.loo.n_obs == run.n_obs

        written = result.save(tmp_path)
        names = {p.name for p in written}
        assert {"time_only_trace.nc", "mobility_trace.nc", "comparison.csv", "selection.json"} <= names

    def test_integration_unharmonized_skips_comparison(self, synthetic_frame, quick_config):
        """Different sample sizes leave comparison and selection empty."""
        config = quick_config.model_copy(update={"harmonize_samples": False})
        specs = [get_specification("time_only"), get_specification("mobility")]
        result = run_model_sequence(
            synthetic_frame, specs=specs, config=config, run_prior_check=False
        )

        assert result.runs["time_only"].n_obs == len(synthetic_frame)
        assert result.runs["mobility"].n_obs < len(synthetic_frame)
        assert result.comparison is None
        assert result.selection is None
        assert result.runs["time_only"].prior_rates is None

    def test_integration_long_window(self, quick_config):
        """A 200-day window runs end to end with prior checks on."""
        frame, _ = generate_model_frame(SyntheticDataConfig(n_days=200))
        specs = [get_specification("time_only"), get_specification("census")]
        result = run_model_sequence(frame, specs=specs, config=quick_config, prior_draws=200)

        for run in result.runs.values():
            assert run.prior_rates.share_exceeding < 0.01
        assert result.selection is not None
