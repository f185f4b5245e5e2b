"""Summaries of the precomputed Monte Carlo results: bias, precision, power, size."""
from __future__ import annotations

import logging

import pandas as pd

from did_teffect.config import AppConfig
from did_teffect.data.sample import write_sample_inputs
from did_teffect.data.simulations import load_simulations
from did_teffect.logging import setup_logging
from did_teffect.models.tables import write_table
from did_teffect.paths import Paths
from did_teffect.pipeline import record_manifest


GROUP_COLUMNS = ["model", "true_effect", "cluster", "winsorize"]


def summarize_simulations(sims: pd.DataFrame, logger: logging.Logger | None = None) -> pd.DataFrame:
    """Aggregate simulation runs per (model, true effect, clustering, winsorization).

    power: share of runs whose lower confidence bound is above zero.
    type1error: share of runs whose interval excludes the true effect.

    Runs with a missing estimate or interval bound are left out of every
    statistic, `n_runs` included; their number is logged as a warning.
    """
    logger = logger if logger is not None else logging.getLogger("did_teffect")
    missing = [col for col in [*GROUP_COLUMNS, "estimate", "ci_lower", "ci_upper"] if col not in sims.columns]
    if missing:
        raise RuntimeError(f"Simulation results are missing required columns: {missing}")

    df = sims.dropna(subset=["estimate", "ci_lower", "ci_upper"]).copy()
    n_dropped = sims.shape[0] - df.shape[0]
    if n_dropped:
        logger.warning(
            "Dropped %s of %s simulation runs with a missing estimate or interval bound.",
            n_dropped,
            sims.shape[0],
        )
    df["sig_positive"] = df["ci_lower"] > 0
    df["excludes_truth"] = (df["true_effect"] < df["ci_lower"]) | (df["true_effect"] > df["ci_upper"])

    summary = (
        df.groupby(GROUP_COLUMNS, as_index=False)
        .agg(
            n_runs=("estimate", "size"),
            mean_est=("estimate", "mean"),
            sd_est=("estimate", "std"),
            power=("sig_positive", "mean"),
            type1error=("excludes_truth", "mean"),
        )
        .sort_values(GROUP_COLUMNS)
        .reset_index(drop=True)
    )
    summary["bias"] = summary["mean_est"] - summary["true_effect"]
    return summary[[*GROUP_COLUMNS, "n_runs", "mean_est", "bias", "sd_est", "power", "type1error"]]


def summarize_simulation_results(config: AppConfig, force: bool = False, sample: bool = False) -> None:
    logger = setup_logging()
    paths = Paths.from_config(config)
    paths.ensure()
    output_csv = paths.tables_dir / "Table4_simulation_summary.csv"
    output_tex = paths.tables_dir / "Table4_simulation_summary.tex"
    if output_csv.exists() and output_tex.exists() and not force:
        logger.info("Simulation summary already exists; skipping.")
        return

    if sample:
        write_sample_inputs(config)
    sims = load_simulations(paths.simulations_file)
    summary = summarize_simulations(sims, logger=logger)
    null_rows = summary[summary["true_effect"] == 0]
    if not null_rows.empty:
        worst = null_rows.sort_values("type1error", ascending=False).iloc[0]
        logger.info(
            "Largest rejection rate under a zero effect: %.3f (%s, cluster=%s, winsorize=%s)",
            worst["type1error"],
            worst["model"],
            worst["cluster"],
            worst["winsorize"],
        )
    write_table(
        summary,
        output_csv,
        output_tex,
        caption="Monte Carlo simulation summary",
        label="tab:sims",
    )
    logger.info("Wrote simulation summary for %s runs", sims.shape[0])
    record_manifest(
        paths,
        config.model_dump(),
        "summarize_simulations",
        [paths.simulations_file],
        [output_csv, output_tex],
    )
