import logging
from enum import Enum
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

app = typer.Typer(
    name="casecurve",
    help="County COVID-19 case growth: hierarchical negative-binomial models and LOO comparison",
    add_completion=False,
)

console = Console()
logger = logging.getLogger("casecurve")


class SpecName(str, Enum):
    time_only = "time_only"
    census = "census"
    mobility = "mobility"
    county_mobility_one = "county_mobility_one"
    county_mobility_all = "county_mobility_all"


@app.callback()
def _main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
        force=True,
    )
    # PyMC and PyTensor are chatty at INFO.
    for name in ("pymc", "pytensor"):
        logging.getLogger(name).setLevel(logging.DEBUG if verbose else logging.WARNING)


def _load_config(
    config_path: Optional[Path],
    state: Optional[str] = None,
    draws: Optional[int] = None,
    tune: Optional[int] = None,
    chains: Optional[int] = None,
    target_accept: Optional[float] = None,
    seed: Optional[int] = None,
):
    from casecurve.config import AnalysisConfig

    config = AnalysisConfig.from_json(config_path) if config_path else AnalysisConfig()
    overrides = {
        k: v
        for k, v in {
            "draws": draws,
            "tune": tune,
            "chains": chains,
            "target_accept": target_accept,
            "random_seed": seed,
        }.items()
        if v is not None
    }
    if overrides:
        config = config.model_copy(update={"sampler": config.sampler.model_copy(update=overrides)})
    if state is not None:
        config = config.model_copy(update={"state": state})
    return config


def _load_frame(data_path: Path, config):
    """Model frame from a prepared CSV, or built from a directory of raw tables."""
    import pandas as pd
    from pandera.errors import SchemaError, SchemaErrors

    from casecurve.config import DataPaths
    from casecurve.data.loading import load_sources
    from casecurve.data.schemas import ModelFrameSchema
    from casecurve.transforms.features import build_model_frame

    try:
        if data_path.is_dir():
            console.print(f"📂 Loading raw tables from [cyan]{data_path}[/cyan]")
            merged = load_sources(DataPaths.from_directory(data_path), state=config.state)
            frame = build_model_frame(merged, config)
        else:
            console.print(f"📂 Loading model frame from [cyan]{data_path}[/cyan]")
            frame = ModelFrameSchema.validate(pd.read_csv(data_path, parse_dates=["date"]))
    except (SchemaError, SchemaErrors) as e:
        console.print(f"   ❌ [red]Validation failed: {e}[/red]")
        raise typer.Exit(1)
    except ValueError as e:
        console.print(f"   ❌ [red]{e}[/red]")
        raise typer.Exit(1)

    console.print(
        f"   ✅ {len(frame)} rows, {frame['fips'].nunique()} counties, "
        f"{frame['date'].min().date()} to {frame['date'].max().date()}\n"
    )
    return frame


@app.command()
def generate(
    output_dir: Path = typer.Option(
        Path("data/"), "--output", "-o", help="Output directory for generated tables"
    ),
    seed: int = typer.Option(42, "--seed", "-s", help="Random seed for reproducibility"),
    days: int = typer.Option(30, "--days", help="Days of data per county"),
    revision_day: Optional[int] = typer.Option(
        None, "--revision-day", help="Insert a downward cumulative revision on this day"
    ),
) -> None:
    from casecurve.data.synthetic import (
        SyntheticDataConfig,
        generate_synthetic_tables,
        save_synthetic_data,
    )

    console.print("\n🧪 [bold blue]casecurve[/bold blue] — Synthetic Data Generator\n")

    config = SyntheticDataConfig(n_days=days, revision_day=revision_day, random_seed=seed)
    tables, truth = generate_synthetic_tables(config)
    written = save_synthetic_data(tables, truth, output_dir=output_dir)

    console.print(f"✅ [green]Data saved to {output_dir}[/green]")
    for path in written.values():
        console.print(f"   {path}")

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Parameter", style="dim")
    table.add_column("True value", justify="right")
    table.add_row("intercept", f"{truth.intercept:.3f}")
    for name, value in truth.fixed_effects.items():
        table.add_row(name, f"{value:.4f}")
    table.add_row("county_sd", f"{truth.county_sd:.3f}")
    table.add_row("alpha", f"{truth.alpha:.1f}")
    console.print()
    console.print(table)
    console.print()


@app.command()
def prepare(
    data_dir: Path = typer.Argument(
        ..., help="Directory with cases/population/census/metro/mobility CSVs", exists=True
    ),
    output: Path = typer.Option(
        Path("data/model_frame.csv"), "--output", "-o", help="Where to write the model frame"
    ),
    config_path: Optional[Path] = typer.Option(None, "--config", help="AnalysisConfig JSON"),
    state: Optional[str] = typer.Option(None, "--state", help="Override the target state"),
) -> None:
    from casecurve.data.schemas import counties_from_frame

    config = _load_config(config_path, state=state)
    console.print(f"\n🗺️  [bold blue]casecurve[/bold blue] — Model frame for {config.state}\n")

    frame = _load_frame(data_dir, config)

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("FIPS", style="dim")
    table.add_column("County")
    table.add_column("Population", justify="right")
    table.add_column("Days", justify="right")
    table.add_column("Near city", justify="center")
    table.add_column("High risk", justify="center")
    for county in counties_from_frame(frame):
        table.add_row(
            str(county.fips),
            county.name,
            f"{county.population:,.0f}",
            str(county.n_days),
            "✅" if county.near_city else "",
            "✅" if county.high_risk else "",
        )
    console.print(table)

    output.parent.mkdir(exist_ok=True, parents=True)
    frame.to_csv(output, index=False)
    console.print(f"\n✅ [green]Model frame saved to {output}[/green]\n")


@app.command()
def specs() -> None:
    from casecurve.models.specification import build_specification_sequence
    from casecurve.reporting import specification_table

    console.print("\n📐 [bold blue]casecurve[/bold blue] — Candidate specifications\n")
    sequence = build_specification_sequence()
    console.print(specification_table(sequence))
    for spec in sequence:
        console.print(f"  [bold]{spec.name}[/bold]: {spec.formula()}")
    console.print()


@app.command("prior-check")
def prior_check(
    data_path: Path = typer.Argument(..., help="Model frame CSV or raw data directory", exists=True),
    model: Optional[SpecName] = typer.Option(
        None, "--model", "-m", help="Single specification (default: all)"
    ),
    draws: int = typer.Option(500, "--draws", "-d", help="Prior draws"),
    seed: int = typer.Option(42, "--seed", "-s", help="Random seed"),
    plots: Optional[Path] = typer.Option(None, "--plots", help="Save rate histograms here"),
    config_path: Optional[Path] = typer.Option(None, "--config", help="AnalysisConfig JSON"),
) -> None:
    from casecurve.evaluation import summarize_rates
    from casecurve.models.sampling import sample_prior_only
    from casecurve.models.specification import build_specification_sequence
    from casecurve.reporting import plot_rate_histogram, rate_table, save_figure
    from casecurve.transforms.features import select_complete_cases

    config = _load_config(config_path, seed=seed)
    console.print("\n🎲 [bold blue]casecurve[/bold blue] — Prior predictive check\n")
    frame = _load_frame(data_path, config)

    sequence = build_specification_sequence()
    if model is not None:
        sequence = [s for s in sequence if s.name == model.value]

    summaries = {}
    for spec in sequence:
        data = select_complete_cases(frame, spec)
        idata = sample_prior_only(spec, data, draws=draws, random_seed=seed)
        summaries[spec.name] = summarize_rates(idata, group="prior")
        if plots is not None:
            path = save_figure(
                plot_rate_histogram(idata, group="prior"), plots / f"{spec.name}_prior_rates.png"
            )
            console.print(f"   Saved {path}")

    console.print(rate_table(summaries, title="Prior per-capita daily rates"))
    implausible = [name for name, s in summaries.items() if not s.plausible]
    if implausible:
        console.print(
            f"\n⚠️  [yellow]Priors imply more cases than residents for: "
            f"{', '.join(implausible)}[/yellow]"
        )
    console.print()


@app.command()
def fit(
    data_path: Path = typer.Argument(..., help="Model frame CSV or raw data directory", exists=True),
    model: SpecName = typer.Option(SpecName.time_only, "--model", "-m", help="Specification to fit"),
    draws: Optional[int] = typer.Option(None, "--draws", "-d", help="Posterior draws per chain"),
    tune: Optional[int] = typer.Option(None, "--tune", "-t", help="Number of tuning steps"),
    chains: Optional[int] = typer.Option(None, "--chains", "-c", help="Number of MCMC chains"),
    target_accept: Optional[float] = typer.Option(
        None, "--target-accept", help="Target acceptance rate"
    ),
    seed: Optional[int] = typer.Option(None, "--seed", "-s", help="Random seed"),
    output_dir: Optional[Path] = typer.Option(
        None, "--output", "-o", help="Output directory for traces"
    ),
    config_path: Optional[Path] = typer.Option(None, "--config", help="AnalysisConfig JSON"),
) -> None:
    from casecurve.evaluation import (
        compute_loo,
        format_diagnostics_report,
        posterior_predictive_check_by_county,
        run_mcmc_diagnostics,
        summarize_rates,
    )
    from casecurve.models.sampling import fit_model
    from casecurve.models.specification import get_specification
    from casecurve.reporting import influential_table, rate_table
    from casecurve.transforms.features import select_complete_cases

    config = _load_config(config_path, None, draws, tune, chains, target_accept, seed)
    output_dir = output_dir or config.output_dir
    console.print(f"\n🏗️  [bold blue]casecurve[/bold blue] — Fitting {model.value}\n")

    frame = _load_frame(data_path, config)
    spec = get_specification(model.value)
    data = select_complete_cases(frame, spec)
    console.print(f"   {spec.formula()}")
    console.print(
        f"🎲 Sampling ({config.sampler.draws} draws × {config.sampler.chains} chains, "
        f"{config.sampler.tune} tuning steps) on {len(data)} rows...\n"
    )

    result = fit_model(spec, data, config.sampler)

    console.print("\n🔍 Running diagnostics...")
    console.print(format_diagnostics_report(run_mcmc_diagnostics(result.idata)))
    console.print(rate_table({spec.name: summarize_rates(result.idata)}))

    if "posterior_predictive" in result.idata.groups():
        console.print(posterior_predictive_check_by_county(result.idata, result.frame).to_string())

    loo = compute_loo(result.idata, result.frame, spec.name, config.pareto_k_threshold)
    console.print(f"\nELPD (LOO): {loo.elpd:.1f} ± {loo.se:.1f}, p_loo {loo.p_loo:.1f}")
    if loo.n_influential:
        console.print(influential_table(loo))

    path = result.save(output_dir)
    console.print(f"\n✅ [green]Trace saved to {path}[/green]\n")


@app.command()
def compare(
    results_dir: Path = typer.Argument(Path("results/"), help="Directory containing fitted traces"),
    se_multiplier: Optional[float] = typer.Option(
        None, "--se-multiplier", help="Prefer a simpler model within this many SEs"
    ),
    config_path: Optional[Path] = typer.Option(None, "--config", help="AnalysisConfig JSON"),
) -> None:
    import arviz as az

    from casecurve.evaluation import compare_models, select_model
    from casecurve.models.specification import SPECIFICATION_ORDER
    from casecurve.reporting import comparison_table

    config = _load_config(config_path)
    if se_multiplier is None:
        se_multiplier = config.selection_se_multiplier

    console.print("\n⚖️  [bold blue]casecurve[/bold blue] — Model Comparison\n")

    trace_files = sorted(results_dir.glob("*_trace.nc"))
    if len(trace_files) < 2:
        console.print("[red]Need at least 2 fitted models to compare.[/red]")
        console.print(f"Found {len(trace_files)} trace(s) in {results_dir}")
        raise typer.Exit(1)

    traces: dict[str, az.InferenceData] = {}
    for trace_file in trace_files:
        idata = az.from_netcdf(trace_file)
        name = str(idata.posterior.attrs.get("specification", trace_file.stem.replace("_trace", "")))
        console.print(f"   Loading {name}...")
        traces[name] = idata

    rank = {name: i for i, name in enumerate(SPECIFICATION_ORDER)}
    order = sorted(traces, key=lambda n: (rank.get(n, len(rank)), n))

    try:
        comparison = compare_models(traces)
    except ValueError as e:
        console.print(f"[red]Comparison failed: {e}[/red]")
        raise typer.Exit(1)

    selection = select_model(comparison, order=order, se_multiplier=se_multiplier)
    console.print()
    console.print(comparison_table(comparison, selection))
    console.print(f"\n🏆 [green]Selected: {selection.selected}[/green] ({selection.reason})")

    out = results_dir / "comparison.csv"
    comparison.to_csv(out, index_label="model")
    console.print(f"   Comparison saved to {out}\n")


RUN_HELP = (
    "Fit, check, compare and select across the specification sequence. "
    "By default every model is fitted on the rows complete for all candidates, "
    "so the time_only baseline loses rows with missing mobility and its N "
    "depends on which candidates are run (see --no-harmonize)."
)


@app.command(help=RUN_HELP)
def run(
    data_path: Path = typer.Argument(..., help="Model frame CSV or raw data directory", exists=True),
    draws: Optional[int] = typer.Option(None, "--draws", "-d", help="Posterior draws per chain"),
    tune: Optional[int] = typer.Option(None, "--tune", "-t", help="Number of tuning steps"),
    chains: Optional[int] = typer.Option(None, "--chains", "-c", help="Number of MCMC chains"),
    target_accept: Optional[float] = typer.Option(
        None, "--target-accept", help="Target acceptance rate"
    ),
    seed: Optional[int] = typer.Option(None, "--seed", "-s", help="Random seed"),
    prior_checks: bool = typer.Option(
        True, "--prior-check/--no-prior-check", help="Run prior predictive checks"
    ),
    harmonize: Optional[bool] = typer.Option(
        None,
        "--harmonize/--no-harmonize",
        help="Fit every model on the rows complete for all candidates (baseline N shrinks to match)",
    ),
    output_dir: Optional[Path] = typer.Option(None, "--output", "-o", help="Output directory"),
    config_path: Optional[Path] = typer.Option(None, "--config", help="AnalysisConfig JSON"),
) -> None:
    from casecurve.pipeline import run_model_sequence
    from casecurve.reporting import (
        comparison_table,
        diagnostics_table,
        influential_table,
        plot_coefficients,
        plot_observed_vs_predicted,
        plot_pareto_k,
        rate_table,
        save_figure,
    )

    config = _load_config(config_path, None, draws, tune, chains, target_accept, seed)
    if harmonize is not None:
        config = config.model_copy(update={"harmonize_samples": harmonize})
    output_dir = output_dir or config.output_dir

    console.print("\n🚀 [bold blue]casecurve[/bold blue] — Full model sequence\n")
    frame = _load_frame(data_path, config)

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        task = progress.add_task("Starting...", total=None)
        result = run_model_sequence(
            frame,
            config=config,
            run_prior_check=prior_checks,
            on_stage=lambda name, label: progress.update(task, description=f"{name}: {label}"),
        )

    if prior_checks:
        console.print(
            rate_table(
                {n: r.prior_rates for n, r in result.runs.items() if r.prior_rates is not None},
                title="Prior per-capita daily rates",
            )
        )
    console.print(diagnostics_table({n: r.diagnostics for n, r in result.runs.items()}))
    console.print(
        rate_table(
            {n: r.posterior_rates for n, r in result.runs.items()},
            title="Posterior per-capita daily rates",
        )
    )
    for run_ in result.runs.values():
        if run_.loo.n_influential:
            console.print(influential_table(run_.loo, limit=10))

    written = result.save(output_dir)
    plots = output_dir / "plots"
    for name, run_ in result.runs.items():
        written.append(
            save_figure(plot_pareto_k(run_.loo, config.pareto_k_threshold), plots / f"{name}_pareto_k.png")
        )
    written.append(
        save_figure(
            plot_coefficients({n: r.fit.idata for n, r in result.runs.items()}),
            plots / "coefficients.png",
        )
    )

    if result.comparison is None:
        console.print("\n[yellow]Models were fitted on different rows; no comparison.[/yellow]\n")
        return

    console.print(comparison_table(result.comparison, result.selection))
    selected = result.selected
    console.print(
        f"\n🏆 [green]Selected: {result.selection.selected}[/green] ({result.selection.reason})"
    )
    if "posterior_predictive" in selected.fit.idata.groups():
        written.append(
            save_figure(
                plot_observed_vs_predicted(selected.fit.idata, selected.fit.frame),
                plots / f"{selected.spec.name}_observed_vs_predicted.png",
            )
        )
    console.print(f"\n✅ [green]{len(written)} files written to {output_dir}[/green]\n")


@app.command()
def info() -> None:
    console.print(
        """
[bold blue]casecurve[/bold blue]
[dim]County COVID-19 case growth and mobility[/dim]

[bold]The Question[/bold]
Did changes in where people went (shops, workplaces, home) explain the
growth of daily confirmed cases across metropolitan counties, beyond the
shape of the epidemic curve and county demographics?

[bold]The Models[/bold]
Hierarchical negative-binomial regressions of daily new cases with a
log-population offset and a county random intercept, nested from a
quadratic time trend up to county-varying mobility slopes. Candidates are
compared with PSIS-LOO, preferring the simpler model when the ELPD
difference is within noise.

[bold]Commands[/bold]
  casecurve generate      Generate synthetic input tables
  casecurve prepare       Build and validate the model frame
  casecurve specs         List the candidate specifications
  casecurve prior-check   Prior predictive per-capita rates
  casecurve fit           Fit one specification
  casecurve compare       Compare saved traces with PSIS-LOO
  casecurve run           Full loop: prior check, fit, LOO, select
  casecurve info          This message

[bold]Quick Start[/bold]
  casecurve generate -o data/
  casecurve run data/ --draws 500 --tune 500
"""
    )


def main() -> None:
    app()


if __name__ == "__main__":
    main()
