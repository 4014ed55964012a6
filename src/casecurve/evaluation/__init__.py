"""
Evaluation of fitted case-growth models.

This module provides tools for:
- MCMC diagnostics (R-hat, ESS, divergences)
- Prior and posterior predictive checks on the per-capita scale
- PSIS-LOO with Pareto-k influence flags
- Model comparison and the simplest-within-noise selection rule
"""

from casecurve.evaluation.comparison import (
    PARETO_K_THRESHOLD,
    LooSummary,
    ModelSelection,
    compare_models,
    compute_loo,
    elpd_difference,
    observation_count,
    pairwise_differences,
    select_model,
)
from casecurve.evaluation.diagnostics import (
    DiagnosticsReport,
    check_divergences_by_parameter,
    format_diagnostics_report,
    parameter_names,
    run_mcmc_diagnostics,
)
from casecurve.evaluation.predictive import (
    RateSummary,
    per_capita_rates,
    posterior_predictive_check_by_county,
    predictive_coverage,
    summarize_rates,
)

__all__ = [
    "PARETO_K_THRESHOLD",
    "DiagnosticsReport",
    "LooSummary",
    "ModelSelection",
    "RateSummary",
    "check_divergences_by_parameter",
    "compare_models",
    "compute_loo",
    "elpd_difference",
    "format_diagnostics_report",
    "observation_count",
    "pairwise_differences",
    "parameter_names",
    "per_capita_rates",
    "posterior_predictive_check_by_county",
    "predictive_coverage",
    "run_mcmc_diagnostics",
    "select_model",
    "summarize_rates",
]
