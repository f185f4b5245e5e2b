"""Figure rendering utilities."""
from __future__ import annotations

import math
from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from did_teffect.config import AppConfig
from did_teffect.data.panel import require_analysis_panel
from did_teffect.data.sample import write_sample_inputs
from did_teffect.data.simulations import load_simulations
from did_teffect.logging import setup_logging
from did_teffect.models.descriptives import obs_by_year_country
from did_teffect.models.simulations import summarize_simulations
from did_teffect.paths import Paths
from did_teffect.pipeline import record_manifest
from did_teffect.utils.io import read_parquet


GROUP_LABELS = {True: "Treated countries", False: "Control countries"}
GROUP_COLORS = {True: "tab:red", False: "tab:blue"}


def _save_obs_by_year_country(panel: pd.DataFrame, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    counts = obs_by_year_country(panel)
    fig, ax = plt.subplots(figsize=(8, 4.5))
    bottom = np.zeros(counts.shape[0])
    for country in counts.columns:
        ax.bar(counts.index, counts[country], bottom=bottom, label=country)
        bottom += counts[country].to_numpy()
    ax.set_title("Firm-year observations by fiscal year and country")
    ax.set_xlabel("Fiscal year")
    ax.set_ylabel("Observations")
    ax.legend(frameon=False, ncol=min(4, counts.shape[1]), fontsize=8)
    fig.tight_layout()
    fig.savefig(path)
    plt.close(fig)


def _save_winsorization_hist(raw: pd.Series, winsorized: pd.Series, path: Path, outcome: str) -> None:
    """Outcome distribution before and after winsorization."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fig, axes = plt.subplots(nrows=1, ncols=2, figsize=(11, 4), sharey=True)
    for ax, series, title in [(axes[0], raw, "raw"), (axes[1], winsorized, "winsorized")]:
        values = series.dropna()
        ax.hist(values, bins=50, color="steelblue", alpha=0.7)
        ax.set_title(f"{outcome} ({title}; min={values.min():.3f}, max={values.max():.3f})", fontsize=9)
        ax.set_xlabel(outcome)
    axes[0].set_ylabel("Count")
    fig.tight_layout()
    fig.savefig(path)
    plt.close(fig)


def _save_trend_bands(bands: pd.DataFrame, path: Path, *, start_year: int, outcome: str) -> None:
    """Group means over time with the event-study band around the treated group."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fig, ax = plt.subplots(figsize=(8, 4.5))
    for group in [False, True]:
        subset = bands[bands["treated_country"].astype(bool) == group].sort_values("year")
        if subset.empty:
            continue
        ax.plot(
            subset["year"],
            subset["mean_outcome"],
            marker="o",
            color=GROUP_COLORS[group],
            label=GROUP_LABELS[group],
        )
        mask = subset["band_lower"].notna() & subset["band_upper"].notna()
        if mask.any():
            ax.fill_between(
                subset.loc[mask, "year"],
                subset.loc[mask, "band_lower"],
                subset.loc[mask, "band_upper"],
                color=GROUP_COLORS[group],
                alpha=0.2,
            )
    ax.axvline(start_year - 0.5, color="black", linestyle="--", linewidth=1)
    ax.set_title(f"Mean {outcome} by treatment group")
    ax.set_xlabel("Fiscal year")
    ax.set_ylabel(f"Mean {outcome}")
    ax.legend(frameon=False)
    fig.tight_layout()
    fig.savefig(path)
    plt.close(fig)


def _save_event_study(coeffs: pd.DataFrame, path: Path, *, reference_period: int) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    coeffs = coeffs.sort_values("period")
    center = (coeffs["upper"] + coeffs["lower"]) / 2
    fig, ax = plt.subplots(figsize=(7, 4))
    ax.errorbar(
        coeffs["period"],
        center,
        yerr=coeffs["delta"],
        fmt="o",
        capsize=3,
        color="tab:red",
    )
    ax.axhline(0, color="black", linestyle="--", linewidth=1)
    ax.axvline(reference_period + 0.5, color="grey", linestyle=":", linewidth=1)
    ax.set_title("Event study: treatment effect by time to treatment")
    ax.set_xlabel("Years relative to treatment start")
    ax.set_ylabel("Coefficient")
    fig.tight_layout()
    fig.savefig(path)
    plt.close(fig)


def _save_simulation_power(summary: pd.DataFrame, path: Path) -> None:
    """Power and type-1 error by true effect, one panel per winsorization level."""
    path.parent.mkdir(parents=True, exist_ok=True)
    levels = sorted(summary["winsorize"].unique().tolist())
    fig, axes = plt.subplots(
        nrows=2, ncols=len(levels), figsize=(5.5 * len(levels), 7), squeeze=False, sharey="row"
    )
    for col, level in enumerate(levels):
        subset = summary[summary["winsorize"] == level]
        for (model, cluster), group in subset.groupby(["model", "cluster"]):
            group = group.sort_values("true_effect")
            label = f"{model} / {cluster}"
            axes[0, col].plot(group["true_effect"], group["power"], marker="o", label=label)
            axes[1, col].plot(group["true_effect"], group["type1error"], marker="o", label=label)
        title = "no winsorization" if level == 0 else f"winsorized at {level:g}"
        axes[0, col].set_title(f"Power ({title})", fontsize=10)
        axes[1, col].set_title(f"Interval misses true effect ({title})", fontsize=10)
        axes[1, col].axhline(0.05, color="black", linestyle="--", linewidth=1)
        axes[1, col].set_xlabel("True effect")
        axes[0, col].set_ylim(0, 1)
        axes[1, col].set_ylim(0, 1)
    axes[0, 0].set_ylabel("Share of runs")
    axes[1, 0].set_ylabel("Share of runs")
    handles, labels = axes[0, 0].get_legend_handles_labels()
    if handles:
        fig.legend(handles, labels, loc="lower center", ncol=min(4, len(labels)), frameon=False, fontsize=8)
    fig.tight_layout(rect=[0, 0.08, 1, 1])
    fig.savefig(path)
    plt.close(fig)


def _save_simulation_estimates(sims: pd.DataFrame, path: Path) -> None:
    """Dispersion of estimates around the true effect by model and winsorization."""
    path.parent.mkdir(parents=True, exist_ok=True)
    effects = sorted(sims["true_effect"].unique().tolist())
    ncols = min(len(effects), 4)
    nrows = int(math.ceil(len(effects) / ncols))
    fig, axes = plt.subplots(nrows=nrows, ncols=ncols, figsize=(4 * ncols, 3.5 * nrows), squeeze=False)
    axes_arr = axes.reshape(-1)
    # estimates repeat across clustering schemes; keep one copy per run
    runs = sims.drop_duplicates(subset=["sim_run", "model", "winsorize", "true_effect"])
    for ax, effect in zip(axes_arr, effects):
        subset = runs[runs["true_effect"] == effect]
        groups = list(subset.groupby(["model", "winsorize"]))
        ax.boxplot([g["estimate"].to_numpy() for _, g in groups], showfliers=False)
        ax.set_xticks(range(1, len(groups) + 1))
        ax.set_xticklabels([f"{m}\nw={w:g}" for (m, w), _ in groups], fontsize=8)
        ax.axhline(effect, color="black", linestyle="--", linewidth=1)
        ax.set_title(f"True effect {effect:g}", fontsize=10)
    for ax in axes_arr[len(effects):]:
        ax.axis("off")
    fig.suptitle("Simulated estimates by model and winsorization")
    fig.tight_layout()
    fig.savefig(path)
    plt.close(fig)


def render_all_figures(config: AppConfig, force: bool = False, sample: bool = False) -> None:
    logger = setup_logging()
    paths = Paths.from_config(config)
    paths.ensure()
    outcome = config.estimation.outcome
    figures = paths.figures_dir

    fig1 = figures / "Figure1_obs_by_year_country.png"
    fig2 = figures / "Figure2_outcome_winsorization.png"
    fig3 = figures / "Figure3_parallel_trends.png"
    fig4 = figures / "Figure4_eventstudy.png"
    fig5 = figures / "Figure5_simulation_power.png"
    fig6 = figures / "Figure6_simulation_estimates.png"

    if sample:
        write_sample_inputs(config)
    require_analysis_panel(config, sample)
    panel = read_parquet(paths.data_final / "panel.parquet")
    if not fig1.exists() or force:
        _save_obs_by_year_country(panel, fig1)

    if not fig2.exists() or force:
        winsorized = read_parquet(paths.data_final / "panel_winsorized.parquet")
        _save_winsorization_hist(panel[outcome], winsorized[outcome], fig2, outcome)

    bands_path = paths.tables_dir / "eventstudy_trend_bands.csv"
    coeffs_path = paths.tables_dir / "Table3_eventstudy_coeffs.csv"
    if bands_path.exists() and coeffs_path.exists():
        if not fig3.exists() or force:
            _save_trend_bands(
                pd.read_csv(bands_path), fig3, start_year=config.treatment.start_year, outcome=outcome
            )
        if not fig4.exists() or force:
            _save_event_study(pd.read_csv(coeffs_path), fig4, reference_period=config.treatment.reference_period)
    else:
        logger.warning(
            "Event study outputs missing in %s; run `dte estimate event-study` before rendering Figures 3-4.",
            paths.tables_dir,
        )

    if paths.simulations_file.exists():
        if not fig5.exists() or not fig6.exists() or force:
            sims = load_simulations(paths.simulations_file)
            _save_simulation_power(summarize_simulations(sims), fig5)
            _save_simulation_estimates(sims, fig6)
    else:
        logger.warning("Simulation results %s not found; skipping Figures 5-6.", paths.simulations_file)

    logger.info("Rendered figures")
    record_manifest(
        paths,
        config.model_dump(),
        "render_figures",
        [paths.data_final / "panel.parquet", paths.simulations_file],
        [fig for fig in [fig1, fig2, fig3, fig4, fig5, fig6] if fig.exists()],
    )
