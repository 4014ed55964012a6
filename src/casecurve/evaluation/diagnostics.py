from dataclasses import dataclass, field
from typing import Literal, Optional

import arviz as az
import numpy as np
import pandas as pd

# Per-observation deterministics and raw non-centred draws, left out of
# the convergence table.
_SKIP_VARS = ("mu", "county_z", "county_chol", "county_chol_corr", "county_chol_stds")


@dataclass
class DiagnosticsReport:
    specification: str
    summary: pd.DataFrame
    divergences: int
    n_draws: int
    max_treedepth_warnings: int
    problematic_params: list[str] = field(default_factory=list)
    overall_status: Literal["good", "warning", "bad"] = "good"

    @property
    def divergence_rate(self) -> float:
        return self.divergences / self.n_draws if self.n_draws else 0.0

    @property
    def max_rhat(self) -> float:
        return float(self.summary["r_hat"].max())

    @property
    def min_ess_bulk(self) -> float:
        return float(self.summary["ess_bulk"].min())


def _sample_stat_total(idata: az.InferenceData, name: str) -> int:
    if "sample_stats" not in idata.groups():
        return 0
    stat = idata.sample_stats.get(name, None)
    if stat is None:
        return 0
    return int(stat.sum().values)


def parameter_names(idata: az.InferenceData) -> list[str]:
    return [v for v in idata.posterior.data_vars if v not in _SKIP_VARS]


def run_mcmc_diagnostics(
    idata: az.InferenceData,
    rhat_threshold: float = 1.01,
    ess_threshold: int = 400,
    var_names: Optional[list[str]] = None,
) -> DiagnosticsReport:
    """
    Convergence checks for one fit.

    Status is ``bad`` with any divergence or R-hat above threshold,
    ``warning`` with low effective sample size or frequent tree-depth
    saturation, ``good`` otherwise. Nothing is retried: the report is for
    the analyst.
    """
    if var_names is None:
        var_names = parameter_names(idata)

    summary = az.summary(idata, var_names=var_names, kind="diagnostics")

    divergences = _sample_stat_total(idata, "diverging")
    max_treedepth = _sample_stat_total(idata, "reached_max_treedepth")
    n_draws = idata.posterior.sizes["chain"] * idata.posterior.sizes["draw"]

    high_rhat = summary.index[summary["r_hat"] > rhat_threshold].tolist()
    low_ess = summary.index[
        (summary["ess_bulk"] < ess_threshold) | (summary["ess_tail"] < ess_threshold)
    ].tolist()

    problematic = [f"{p} (R-hat={summary.at[p, 'r_hat']:.3f})" for p in high_rhat]
    problematic += [
        f"{p} (ESS_bulk={summary.at[p, 'ess_bulk']:.0f}, ESS_tail={summary.at[p, 'ess_tail']:.0f})"
        for p in low_ess
        if p not in high_rhat
    ]

    if divergences > 0 or high_rhat:
        status = "bad"
    elif low_ess or max_treedepth > 0.01 * n_draws:
        status = "warning"
    else:
        status = "good"

    return DiagnosticsReport(
        specification=str(idata.posterior.attrs.get("specification", "")),
        summary=summary,
        divergences=divergences,
        n_draws=int(n_draws),
        max_treedepth_warnings=max_treedepth,
        problematic_params=problematic,
        overall_status=status,
    )


def check_divergences_by_parameter(
    idata: az.InferenceData,
    var_names: Optional[list[str]] = None,
) -> pd.DataFrame:
    """
    Mean of each scalar-summarised parameter over divergent vs. healthy
    draws; large gaps point at the funnel causing the divergences.
    """
    columns = ["parameter", "mean_divergent", "mean_ok", "abs_diff"]
    if "sample_stats" not in idata.groups() or "diverging" not in idata.sample_stats:
        return pd.DataFrame(columns=columns)

    diverging = idata.sample_stats["diverging"].values.flatten().astype(bool)
    if not diverging.any():
        return pd.DataFrame(columns=columns)

    records = []
    for var in var_names or parameter_names(idata):
        values = idata.posterior[var].values
        flat = values.reshape((values.shape[0] * values.shape[1], -1))
        mean_div = float(flat[diverging].mean())
        mean_ok = float(flat[~diverging].mean())
        records.append(
            {
                "parameter": var,
                "mean_divergent": mean_div,
                "mean_ok": mean_ok,
                "abs_diff": abs(mean_div - mean_ok),
            }
        )

    return pd.DataFrame(records, columns=columns).sort_values("abs_diff", ascending=False)


def format_diagnostics_report(report: DiagnosticsReport) -> str:
    status_meaning = {
        "good": "All checks passed",
        "warning": "Minor issues, interpret with caution",
        "bad": "Sampler did not converge, do not use these estimates",
    }

    lines = [
        "=" * 60,
        f"MCMC DIAGNOSTICS: {report.specification or 'model'}",
        "=" * 60,
        f"Status: {report.overall_status.upper()} ({status_meaning[report.overall_status]})",
        f"Divergent transitions: {report.divergences} of {report.n_draws} "
        f"({report.divergence_rate:.1%})",
        f"Max treedepth hits: {report.max_treedepth_warnings}",
        f"Max R-hat: {report.max_rhat:.4f}",
        f"Min bulk ESS: {report.min_ess_bulk:.0f}",
    ]
    if np.isnan(report.max_rhat):
        lines.append("R-hat undefined (single chain?)")

    if report.problematic_params:
        lines.append("")
        lines.append("Problematic parameters:")
        lines.extend(f"  - {p}" for p in report.problematic_params[:10])

    lines.append("=" * 60)
    return "\n".join(lines)
