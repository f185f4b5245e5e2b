"""Descriptive statistics for the firm-year panel."""
from __future__ import annotations

import numpy as np
import pandas as pd

from did_teffect.config import AppConfig
from did_teffect.data.panel import require_analysis_panel
from did_teffect.logging import setup_logging
from did_teffect.models.tables import write_table
from did_teffect.paths import Paths
from did_teffect.pipeline import record_manifest
from did_teffect.utils.io import read_parquet


def obs_by_year_country(panel: pd.DataFrame) -> pd.DataFrame:
    """Firm-year counts, one row per year and one column per country."""
    table = pd.crosstab(panel["year"], panel["country_code"])
    table.columns.name = None
    return table.sort_index()


def firms_per_country(panel: pd.DataFrame) -> pd.DataFrame:
    return (
        panel.groupby("country_code", as_index=False)
        .agg(n_firms=("firm_id", "nunique"))
        .sort_values("country_code")
        .reset_index(drop=True)
    )


def summarize_column(panel: pd.DataFrame, column: str) -> pd.DataFrame:
    values = pd.to_numeric(panel[column], errors="coerce")
    clean = values.dropna()
    quantiles = clean.quantile([0.01, 0.25, 0.5, 0.75, 0.99]) if not clean.empty else None

    def q(level: float) -> float:
        return float(quantiles.loc[level]) if quantiles is not None else np.nan

    return pd.DataFrame(
        [
            {
                "variable": column,
                "n": int(clean.shape[0]),
                "missing": int(values.isna().sum()),
                "mean": float(clean.mean()) if not clean.empty else np.nan,
                "sd": float(clean.std()) if clean.shape[0] > 1 else np.nan,
                "min": float(clean.min()) if not clean.empty else np.nan,
                "p1": q(0.01),
                "p25": q(0.25),
                "median": q(0.5),
                "p75": q(0.75),
                "p99": q(0.99),
                "max": float(clean.max()) if not clean.empty else np.nan,
            }
        ]
    )


def treatment_overview(panel: pd.DataFrame) -> pd.DataFrame:
    return (
        panel.groupby(["country_code", "country"], as_index=False)
        .agg(
            treated_country=("treated_country", "max"),
            n_firms=("firm_id", "nunique"),
            n_obs=("firm_id", "size"),
            first_year=("year", "min"),
            last_year=("year", "max"),
        )
        .sort_values(["treated_country", "country_code"], ascending=[False, True])
        .reset_index(drop=True)
    )


def outcome_trends(panel: pd.DataFrame, outcome: str) -> pd.DataFrame:
    """Mean outcome by year and treatment group."""
    return (
        panel.groupby(["year", "treated_country"], as_index=False)
        .agg(
            mean_outcome=(outcome, "mean"),
            n_obs=(outcome, "count"),
        )
        .sort_values(["treated_country", "year"])
        .reset_index(drop=True)
    )


def describe_panel(config: AppConfig, force: bool = False, sample: bool = False) -> None:
    logger = setup_logging()
    paths = Paths.from_config(config)
    paths.ensure()
    tables = paths.tables_dir
    output_csv = tables / "Table1_summary_stats.csv"
    output_tex = tables / "Table1_summary_stats.tex"
    if output_csv.exists() and output_tex.exists() and not force:
        logger.info("Descriptive tables already exist; skipping.")
        return

    require_analysis_panel(config, sample)
    panel = read_parquet(paths.data_final / "panel.parquet")
    winsorized = read_parquet(paths.data_final / "panel_winsorized.parquet")
    outcome = config.estimation.outcome

    summary = pd.concat(
        [
            summarize_column(panel, outcome),
            summarize_column(winsorized, outcome).assign(variable=f"{outcome} (winsorized)"),
            summarize_column(panel, "avg_assets"),
        ],
        ignore_index=True,
    )
    write_table(summary, output_csv, output_tex, caption="Summary statistics", label="tab:summary")

    counts = obs_by_year_country(panel)
    write_table(
        counts,
        tables / "TableA1_obs_by_year_country.csv",
        tables / "TableA1_obs_by_year_country.tex",
        caption="Firm-year observations by fiscal year and country",
        label="tab:obs",
        index=True,
    )

    firms = firms_per_country(panel)
    total_firms = panel["firm_id"].nunique()
    if int(firms["n_firms"].sum()) != total_firms:
        raise RuntimeError(
            f"Per-country firm counts sum to {int(firms['n_firms'].sum())} "
            f"but the panel has {total_firms} distinct firms."
        )
    overview = treatment_overview(panel)
    write_table(
        overview,
        tables / "TableA2_treatment_by_country.csv",
        tables / "TableA2_treatment_by_country.tex",
        caption="Treatment assignment by country",
        label="tab:treatment",
    )

    trends = outcome_trends(panel, outcome)
    trends.to_csv(tables / "outcome_trends.csv", index=False)

    logger.info(
        "Wrote descriptive tables (%s firm-years, %s firms, %s countries)",
        panel.shape[0],
        total_firms,
        panel["country_code"].nunique(),
    )
    record_manifest(
        paths,
        config.model_dump(),
        "describe_panel",
        [paths.data_final / "panel.parquet", paths.data_final / "panel_winsorized.parquet"],
        [
            output_csv,
            output_tex,
            tables / "TableA1_obs_by_year_country.csv",
            tables / "TableA2_treatment_by_country.csv",
            tables / "outcome_trends.csv",
        ],
    )
