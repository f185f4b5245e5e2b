"""CLI entrypoint for the DiD treatment-effect walkthrough."""
from __future__ import annotations

import pandas as pd
import typer
from rich.console import Console

from did_teffect.config import load_config
from did_teffect.data.panel import build_panel as build_analysis_panel
from did_teffect.data.sample import write_sample_inputs
from did_teffect.models.descriptives import describe_panel
from did_teffect.models.eventstudy import estimate_event_study as run_estimate_event_study
from did_teffect.models.fe import estimate_main as run_estimate_main
from did_teffect.models.figures import render_all_figures
from did_teffect.models.simulations import summarize_simulation_results
from did_teffect.models.tables import print_table
from did_teffect.paths import Paths
from did_teffect.pipeline import run_all_pipeline

app = typer.Typer(help="Difference-in-differences treatment-effect walkthrough")


@app.command()
def run_all(
    config: str = typer.Option(..., "--config", help="Path to config TOML"),
    force: bool = typer.Option(False, "--force"),
    sample: bool = typer.Option(False, "--sample", help="Generate and use synthetic inputs."),
) -> None:
    """Run the full pipeline."""
    run_all_pipeline(config, force=force, sample=sample)


data_app = typer.Typer(help="Input data")

describe_app = typer.Typer(help="Descriptive statistics")

estimate_app = typer.Typer(help="Estimate DiD models")

simulate_app = typer.Typer(help="Monte Carlo simulation results")

render_app = typer.Typer(help="Render figures")


@data_app.command("sample")
def data_sample(
    config: str = typer.Option(..., "--config"),
    force: bool = typer.Option(False, "--force"),
) -> None:
    """Write a synthetic panel and simulation-results table to the raw data directory."""
    cfg = load_config(config)
    write_sample_inputs(cfg, force=force)


@data_app.command("build-panel")
def data_build_panel(
    config: str = typer.Option(..., "--config"),
    force: bool = typer.Option(False, "--force"),
    sample: bool = typer.Option(False, "--sample", help="Use synthetic inputs when the data are missing."),
) -> None:
    """Validate the raw panel, derive treatment variables and winsorize the outcome."""
    cfg = load_config(config)
    build_analysis_panel(cfg, force=force, sample=sample)


@describe_app.command("all")
def describe_all(
    config: str = typer.Option(..., "--config"),
    force: bool = typer.Option(False, "--force"),
    sample: bool = typer.Option(False, "--sample", help="Use synthetic inputs when the data are missing."),
) -> None:
    cfg = load_config(config)
    describe_panel(cfg, force=force, sample=sample)


@estimate_app.command("main")
def estimate_main(
    config: str = typer.Option(..., "--config"),
    force: bool = typer.Option(False, "--force"),
    sample: bool = typer.Option(False, "--sample", help="Use synthetic inputs when the data are missing."),
) -> None:
    """Classic DiD and TWFE across winsorization and clustering choices."""
    cfg = load_config(config)
    run_estimate_main(cfg, force=force, sample=sample)


@estimate_app.command("event-study")
def estimate_event_study(
    config: str = typer.Option(..., "--config"),
    force: bool = typer.Option(False, "--force"),
    sample: bool = typer.Option(False, "--sample", help="Use synthetic inputs when the data are missing."),
) -> None:
    cfg = load_config(config)
    run_estimate_event_study(cfg, force=force, sample=sample)


@simulate_app.command("summarize")
def simulate_summarize(
    config: str = typer.Option(..., "--config"),
    force: bool = typer.Option(False, "--force"),
    sample: bool = typer.Option(False, "--sample", help="Use synthetic inputs when the data are missing."),
) -> None:
    """Power and type-1 error of the precomputed simulation runs."""
    cfg = load_config(config)
    summarize_simulation_results(cfg, force=force, sample=sample)


@render_app.command("all")
def render_all(
    config: str = typer.Option(..., "--config"),
    force: bool = typer.Option(False, "--force"),
    sample: bool = typer.Option(False, "--sample", help="Use synthetic inputs when the data are missing."),
) -> None:
    cfg = load_config(config)
    render_all_figures(cfg, force=force, sample=sample)


@app.command()
def report(config: str = typer.Option(..., "--config")) -> None:
    """Print the rendered tables to the terminal."""
    cfg = load_config(config)
    paths = Paths.from_config(cfg)
    console = Console()
    tables = [
        ("Table1_summary_stats.csv", "Summary statistics"),
        ("TableA2_treatment_by_country.csv", "Treatment assignment by country"),
        ("TableA1_obs_by_year_country.csv", "Observations by year and country"),
        ("Table2_did_estimates.csv", "DiD estimates of the treatment effect"),
        ("Table3_eventstudy_coeffs.csv", "Event-study coefficients"),
        ("Table4_simulation_summary.csv", "Simulation summary"),
    ]
    for name, title in tables:
        path = paths.tables_dir / name
        if not path.exists():
            console.print(f"[yellow]{path} not found; run the pipeline first.[/yellow]")
            continue
        print_table(pd.read_csv(path), title, console=console)


app.add_typer(data_app, name="data")
app.add_typer(describe_app, name="describe")
app.add_typer(estimate_app, name="estimate")
app.add_typer(simulate_app, name="simulate")
app.add_typer(render_app, name="render")


if __name__ == "__main__":
    app()
