"""
The model-building loop: prior check, fit, posterior check, LOO, then
compare and select.

Each stage receives the data and the specification explicitly; the loop is
driven by the ordered specification list rather than by one code block per
model.
"""

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import pandas as pd

from casecurve.config import AnalysisConfig
from casecurve.evaluation import (
    DiagnosticsReport,
    LooSummary,
    ModelSelection,
    RateSummary,
    compare_models,
    compute_loo,
    predictive_coverage,
    run_mcmc_diagnostics,
    select_model,
    summarize_rates,
)
from casecurve.models.sampling import FitResult, fit_model, sample_prior_only
from casecurve.models.specification import (
    ModelSpecification,
    build_specification_sequence,
    check_nested,
)
from casecurve.transforms.features import harmonize_samples, select_complete_cases

logger = logging.getLogger(__name__)

StageCallback = Callable[[str, str], None]


@dataclass
class ModelRun:
    """Everything the loop produced for one specification."""

    spec: ModelSpecification
    fit: FitResult
    diagnostics: DiagnosticsReport
    posterior_rates: RateSummary
    loo: LooSummary
    prior_rates: Optional[RateSummary] = None
    coverage: Optional[float] = None

    @property
    def n_obs(self) -> int:
        return self.fit.n_obs


@dataclass
class SequenceResult:
    runs: dict[str, ModelRun] = field(default_factory=dict)
    comparison: Optional[pd.DataFrame] = None
    selection: Optional[ModelSelection] = None
    harmonized: bool = True

    @property
    def selected(self) -> Optional[ModelRun]:
        if self.selection is None:
            return None
        return self.runs[self.selection.selected]

    def save(self, output_dir: Path) -> list[Path]:
        """Write every trace, the comparison table and the selection decision."""
        output_dir = Path(output_dir)
        output_dir.mkdir(exist_ok=True, parents=True)
        written = [run.fit.save(output_dir) for run in self.runs.values()]

        if self.comparison is not None:
            path = output_dir / "comparison.csv"
            self.comparison.to_csv(path, index_label="model")
            written.append(path)
        if self.selection is not None:
            path = output_dir / "selection.json"
            with open(path, "w", encoding="utf-8") as f:
                json.dump(self.selection.__dict__, f, indent=2)
            written.append(path)
        return written


def prior_check(
    spec: ModelSpecification,
    frame: pd.DataFrame,
    draws: int = 500,
    random_seed: int = 42,
) -> RateSummary:
    """Per-capita rates implied by the priors alone."""
    idata = sample_prior_only(spec, frame, draws=draws, random_seed=random_seed)
    summary = summarize_rates(idata, group="prior")
    if not summary.plausible:
        logger.warning(
            "%s: %.2f%% of prior draws imply more daily cases than residents",
            spec.name,
            100 * summary.share_exceeding,
        )
    return summary


def run_specification(
    spec: ModelSpecification,
    frame: pd.DataFrame,
    config: AnalysisConfig,
    run_prior_check: bool = True,
    prior_draws: int = 500,
    on_stage: Optional[StageCallback] = None,
) -> ModelRun:
    """Prior check, fit, diagnostics, posterior check and LOO for one specification."""

    def stage(label: str) -> None:
        logger.info("%s: %s", spec.name, label)
        if on_stage is not None:
            on_stage(spec.name, label)

    data = select_complete_cases(frame, spec)

    prior_rates = None
    if run_prior_check:
        stage("prior predictive check")
        prior_rates = prior_check(spec, data, prior_draws, config.sampler.random_seed)

    stage("sampling")
    fit = fit_model(spec, data, config.sampler)

    stage("diagnostics")
    diagnostics = run_mcmc_diagnostics(fit.idata)
    posterior_rates = summarize_rates(fit.idata, group="posterior")
    coverage = None
    if "posterior_predictive" in fit.idata.groups():
        coverage = predictive_coverage(fit.idata, fit.frame[spec.target].to_numpy())

    stage("PSIS-LOO")
    loo = compute_loo(
        fit.idata,
        frame=fit.frame,
        name=spec.name,
        pareto_k_threshold=config.pareto_k_threshold,
    )

    return ModelRun(
        spec=spec,
        fit=fit,
        diagnostics=diagnostics,
        posterior_rates=posterior_rates,
        loo=loo,
        prior_rates=prior_rates,
        coverage=coverage,
    )


def run_model_sequence(
    frame: pd.DataFrame,
    specs: Optional[list[ModelSpecification]] = None,
    config: Optional[AnalysisConfig] = None,
    run_prior_check: bool = True,
    prior_draws: int = 500,
    on_stage: Optional[StageCallback] = None,
) -> SequenceResult:
    """
    Fit an ordered list of nested specifications and pick one.

    With ``config.harmonize_samples`` every model is fitted to the rows
    complete for all of them, so their LOO scores are comparable. Without
    it each model keeps its own complete cases; when those differ in size
    the comparison and selection are skipped.

    Parameters
    ----------
    frame : pd.DataFrame
        Model frame from :func:`casecurve.transforms.build_model_frame`.
    specs : list[ModelSpecification], optional
        Simplest first. Defaults to the standard five.
    config : AnalysisConfig, optional
        Sampler settings, Pareto-k threshold and selection rule.

    Returns
    -------
    SequenceResult
        Per-model runs, the comparison table and the selection.
    """
    if config is None:
        config = AnalysisConfig()
    if specs is None:
        specs = build_specification_sequence()
    check_nested(specs)

    if config.harmonize_samples:
        data = harmonize_samples(frame, specs)
        logger.info("Harmonised sample: %d of %d rows", len(data), len(frame))
    else:
        data = frame

    result = SequenceResult(harmonized=config.harmonize_samples)
    for spec in specs:
        result.runs[spec.name] = run_specification(
            spec, data, config, run_prior_check, prior_draws, on_stage
        )

    if len(result.runs) < 2:
        return result

    counts = {name: run.n_obs for name, run in result.runs.items()}
    if len(set(counts.values())) > 1:
        logger.warning("Observation counts differ %s; skipping model comparison", counts)
        return result

    if on_stage is not None:
        on_stage("all", "comparing")
    result.comparison = compare_models({name: run.fit.idata for name, run in result.runs.items()})
    result.selection = select_model(
        result.comparison,
        order=[s.name for s in specs],
        se_multiplier=config.selection_se_multiplier,
    )
    logger.info("Selected %s (%s)", result.selection.selected, result.selection.reason)
    return result
