"""Rich tables and matplotlib figures for specifications, checks and comparisons."""

from pathlib import Path
from typing import Optional

import arviz as az
import numpy as np
import pandas as pd
from rich.table import Table

from casecurve.evaluation import (
    DiagnosticsReport,
    LooSummary,
    ModelSelection,
    RateSummary,
    per_capita_rates,
)
from casecurve.models.specification import ModelSpecification

_STATUS_STYLE = {"good": "green", "warning": "yellow", "bad": "red"}


def specification_table(specs: list[ModelSpecification]) -> Table:
    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Name")
    table.add_column("Fixed effects")
    table.add_column("County effects")
    table.add_column("Params", justify="right")

    for i, spec in enumerate(specs, start=1):
        table.add_row(
            str(i),
            spec.name,
            ", ".join(spec.fixed_effects),
            ", ".join(spec.random_effects),
            str(spec.n_parameters),
        )
    return table


def rate_table(summaries: dict[str, RateSummary], title: str = "Per-capita daily rates") -> Table:
    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("Model", style="dim")
    table.add_column("Mean (per 100k)", justify="right")
    table.add_column("Interval (per 100k)", justify="right")
    table.add_column("Max (per 100k)", justify="right")
    table.add_column("Draws > population", justify="right")

    for name, s in summaries.items():
        exceed = f"{s.exceed_population} ({s.share_exceeding:.2%})"
        table.add_row(
            name,
            f"{1e5 * s.mean:.2f}",
            f"{1e5 * s.lower:.2f} to {1e5 * s.upper:.2f}",
            f"{1e5 * s.max:.1f}",
            f"[green]{exceed}[/green]" if s.plausible else f"[red]{exceed}[/red]",
        )
    return table


def diagnostics_table(reports: dict[str, DiagnosticsReport]) -> Table:
    table = Table(title="MCMC diagnostics", show_header=True, header_style="bold cyan")
    table.add_column("Model", style="dim")
    table.add_column("Status")
    table.add_column("Divergences", justify="right")
    table.add_column("Max R-hat", justify="right")
    table.add_column("Min ESS", justify="right")

    for name, r in reports.items():
        style = _STATUS_STYLE[r.overall_status]
        table.add_row(
            name,
            f"[{style}]{r.overall_status}[/{style}]",
            str(r.divergences),
            f"{r.max_rhat:.3f}",
            f"{r.min_ess_bulk:.0f}",
        )
    return table


def comparison_table(
    comparison: pd.DataFrame,
    selection: Optional[ModelSelection] = None,
) -> Table:
    table = Table(title="PSIS-LOO comparison", show_header=True, header_style="bold cyan")
    table.add_column("Rank", justify="right", style="dim")
    table.add_column("Model")
    table.add_column("ELPD", justify="right")
    table.add_column("SE", justify="right")
    table.add_column("p_loo", justify="right")
    table.add_column("dELPD", justify="right")
    table.add_column("dSE", justify="right")
    table.add_column("Weight", justify="right")

    for name, row in comparison.iterrows():
        label = str(name)
        if selection is not None and label == selection.selected:
            label = f"[bold green]{label} *[/bold green]"
        table.add_row(
            str(int(row["rank"])),
            label,
            f"{row['elpd_loo']:.1f}",
            f"{row['se']:.1f}",
            f"{row['p_loo']:.1f}",
            f"{row['elpd_diff']:.1f}",
            f"{row['dse']:.1f}",
            f"{row['weight']:.2f}",
        )
    return table


def influential_table(loo: LooSummary, limit: int = 20) -> Table:
    table = Table(
        title=f"{loo.name}: {loo.n_influential} observations with high Pareto k",
        show_header=True,
        header_style="bold cyan",
    )
    for col in loo.influential.columns:
        table.add_column(str(col), justify="right")

    top = loo.influential.sort_values("pareto_k", ascending=False).head(limit)
    for _, row in top.iterrows():
        cells = []
        for col in loo.influential.columns:
            value = row[col]
            if isinstance(value, pd.Timestamp):
                cells.append(value.date().isoformat())
            elif col == "pareto_k":
                cells.append(f"{value:.2f}")
            else:
                cells.append(str(value))
        table.add_row(*cells)
    return table


def plot_rate_histogram(
    idata: az.InferenceData,
    group: str = "prior",
    bins: int = 60,
    figsize: tuple[int, int] = (8, 5),
) -> "matplotlib.figure.Figure":
    """Histogram of log10 expected daily cases per resident."""
    import matplotlib.pyplot as plt

    rates = per_capita_rates(idata, group=group).values.ravel()
    rates = rates[np.isfinite(rates) & (rates > 0)]

    fig, ax = plt.subplots(figsize=figsize)
    ax.hist(np.log10(rates), bins=bins, color="steelblue", alpha=0.8)
    ax.axvline(0.0, color="red", linestyle="--", label="cases = population")
    ax.set_xlabel("log10 expected daily cases per resident")
    ax.set_ylabel("Count")
    ax.set_title(f"{group.capitalize()} predictive per-capita rates")
    ax.legend()
    plt.tight_layout()
    return fig


def plot_observed_vs_predicted(
    idata: az.InferenceData,
    frame: pd.DataFrame,
    prob: float = 0.9,
    var_name: str = "new_cases",
    max_counties: int = 12,
) -> "matplotlib.figure.Figure":
    """Observed daily cases against the posterior predictive band, one panel per county."""
    import matplotlib.pyplot as plt

    draws = idata.posterior_predictive[var_name]
    tail = (1 - prob) / 2
    band = draws.quantile([tail, 1 - tail], dim=("chain", "draw")).values
    mean = draws.mean(dim=("chain", "draw")).values

    counties = sorted(frame["fips"].unique())[:max_counties]
    ncols = min(3, len(counties))
    nrows = int(np.ceil(len(counties) / ncols))
    fig, axes = plt.subplots(nrows, ncols, figsize=(5 * ncols, 3.5 * nrows), squeeze=False)

    for ax, county in zip(axes.ravel(), counties):
        mask = (frame["fips"] == county).to_numpy()
        t = frame.loc[mask, "day"].to_numpy()
        order = np.argsort(t)
        ax.fill_between(t[order], band[0][mask][order], band[1][mask][order], alpha=0.3)
        ax.plot(t[order], mean[mask][order], label="predicted")
        ax.scatter(t, frame.loc[mask, var_name], s=8, color="black", label="observed")
        name = frame.loc[mask, "county"].iloc[0] if "county" in frame else ""
        ax.set_title(f"{county} {name}".strip())
        ax.set_xlabel("day")
    for ax in axes.ravel()[len(counties):]:
        ax.set_visible(False)

    axes[0][0].legend()
    plt.tight_layout()
    return fig


def plot_pareto_k(
    loo: LooSummary,
    threshold: float = 0.7,
    figsize: tuple[int, int] = (9, 4),
) -> "matplotlib.figure.Figure":
    import matplotlib.pyplot as plt

    k = loo.pareto_k
    high = k > threshold

    fig, ax = plt.subplots(figsize=figsize)
    ax.scatter(np.flatnonzero(~high), k[~high], s=6, color="steelblue")
    ax.scatter(np.flatnonzero(high), k[high], s=12, color="red")
    ax.axhline(threshold, color="red", linestyle="--", linewidth=1)
    ax.set_xlabel("observation")
    ax.set_ylabel("Pareto k")
    ax.set_title(f"{loo.name}: {int(high.sum())} of {k.size} above {threshold}")
    plt.tight_layout()
    return fig


def plot_coefficients(
    idatas: dict[str, az.InferenceData],
    var_names: tuple[str, ...] = ("beta",),
) -> "matplotlib.figure.Figure":
    """Forest plot of population-level coefficients across models."""
    axes = az.plot_forest(
        list(idatas.values()),
        model_names=list(idatas),
        var_names=list(var_names),
        combined=True,
        hdi_prob=0.94,
    )
    return np.ravel(axes)[0].figure


def save_figure(fig: "matplotlib.figure.Figure", path: Path) -> Path:
    import matplotlib.pyplot as plt

    path = Path(path)
    path.parent.mkdir(exist_ok=True, parents=True)
    fig.savefig(path, dpi=150, bbox_inches="tight")
    plt.close(fig)
    return path
