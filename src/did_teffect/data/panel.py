"""Firm-year panel loading, validation and treatment assignment."""
from __future__ import annotations

from pathlib import Path

import pandas as pd

from did_teffect.config import AppConfig
from did_teffect.data.sample import write_sample_inputs
from did_teffect.logging import setup_logging
from did_teffect.paths import Paths
from did_teffect.pipeline import record_manifest
from did_teffect.utils.io import read_table, write_parquet
from did_teffect.utils.pandas_helpers import winsorize_panel


PANEL_KEY = ["firm_id", "year"]

PANEL_COLUMNS = [
    "firm_id",
    "firm_name",
    "country_code",
    "country",
    "year",
    "treated_country",
    "treated",
    "time_to_treatment",
    "roa",
    "avg_assets",
]


def _as_bool(series: pd.Series) -> pd.Series:
    if series.dtype == bool:
        return series
    if pd.api.types.is_numeric_dtype(series):
        return series.fillna(0).astype(float) != 0
    text = series.astype(str).str.strip().str.lower()
    return text.isin({"true", "t", "1", "yes"})


def validate_panel(df: pd.DataFrame) -> pd.DataFrame:
    """Check schema and key uniqueness; return a copy with canonical dtypes."""
    missing = [col for col in ["firm_id", "country_code", "year", "treated_country", "roa"] if col not in df.columns]
    if missing:
        raise RuntimeError(f"Panel is missing required columns: {missing}")

    out = df.copy()
    out["firm_id"] = out["firm_id"].astype(str)
    out["country_code"] = out["country_code"].astype(str)
    if "firm_name" not in out.columns:
        out["firm_name"] = out["firm_id"]
    if "country" not in out.columns:
        out["country"] = out["country_code"]
    years = pd.to_numeric(out["year"], errors="coerce")
    bad_years = out.loc[years.isna(), "firm_id"]
    if not bad_years.empty:
        raise RuntimeError(
            f"Panel has {bad_years.shape[0]} rows with a missing or non-numeric year, "
            f"e.g. firms {bad_years.drop_duplicates().head(5).tolist()}"
        )
    out["year"] = years.astype(int)
    out["treated_country"] = _as_bool(out["treated_country"])
    for col in ["roa", "avg_assets"]:
        if col in out.columns:
            out[col] = pd.to_numeric(out[col], errors="coerce").astype(float)

    dupes = out[out.duplicated(subset=PANEL_KEY, keep=False)]
    if not dupes.empty:
        examples = dupes[PANEL_KEY].drop_duplicates().head(5).to_dict("records")
        raise RuntimeError(
            f"Panel has {dupes.shape[0]} rows with duplicated (firm_id, year) keys, e.g. {examples}"
        )

    countries_per_firm = out.groupby("firm_id")["country_code"].nunique()
    movers = countries_per_firm[countries_per_firm > 1]
    if not movers.empty:
        raise RuntimeError(
            f"Firms assigned to more than one country: {movers.index[:5].tolist()}"
        )
    return out


def assign_treatment(df: pd.DataFrame, start_year: int) -> pd.DataFrame:
    """Derive firm-year treatment and time-to-treatment from the country flag."""
    out = df.copy()
    out["treated_country"] = _as_bool(out["treated_country"])
    out["post"] = out["year"] >= start_year
    out["treated"] = out["treated_country"] & out["post"]
    out["time_to_treatment"] = (out["year"] - start_year).where(out["treated_country"], 0).astype(int)
    return out


def load_panel(path: Path, start_year: int, logger=None) -> pd.DataFrame:
    """Read, validate and (re)derive treatment variables for the raw panel."""
    raw = read_table(path)
    panel = validate_panel(raw)
    derived = assign_treatment(panel, start_year)
    if logger is not None and "treated" in panel.columns:
        disagree = int((_as_bool(panel["treated"]) != derived["treated"]).sum())
        if disagree:
            logger.warning(
                "Recomputed firm-year treatment differs from the stored flag in %s rows "
                "(start year %s).",
                disagree,
                start_year,
            )
    ordered = [col for col in PANEL_COLUMNS if col in derived.columns]
    extra = [col for col in derived.columns if col not in ordered]
    return derived[ordered + extra].sort_values(PANEL_KEY).reset_index(drop=True)


def build_panel(config: AppConfig, force: bool = False, sample: bool = False) -> None:
    """Write the analysis panel and its winsorized twin to data/final."""
    logger = setup_logging()
    paths = Paths.from_config(config)
    paths.ensure()
    output_path = paths.data_final / "panel.parquet"
    output_w_path = paths.data_final / "panel_winsorized.parquet"
    if output_path.exists() and output_w_path.exists() and not force:
        logger.info("Analysis panel exists; skipping.")
        return

    if sample:
        write_sample_inputs(config)
    panel = load_panel(paths.panel_file, config.treatment.start_year, logger)
    panel = panel[panel["year"].between(config.years.start, config.years.end)]
    if panel.empty:
        raise RuntimeError(
            f"No panel observations between {config.years.start} and {config.years.end} "
            f"in {paths.panel_file}."
        )
    if panel["treated_country"].nunique() < 2:
        raise RuntimeError("Panel needs both treated and untreated countries for a DiD design.")

    outcome = config.estimation.outcome
    winsorized = winsorize_panel(panel, [outcome], config.winsorize.lower, config.winsorize.upper)
    n_clipped = int(((winsorized[outcome] != panel[outcome]) & panel[outcome].notna()).sum())

    write_parquet(panel, output_path)
    write_parquet(winsorized, output_w_path)
    logger.info(
        "Wrote panel with %s firm-years (%s firms); winsorized %s values of %s",
        panel.shape[0],
        panel["firm_id"].nunique(),
        n_clipped,
        outcome,
    )
    record_manifest(
        paths,
        config.model_dump(),
        "build_panel",
        [paths.panel_file],
        [output_path, output_w_path],
    )


def require_analysis_panel(config: AppConfig, sample: bool = False) -> Paths:
    """Make sure data/final holds the analysis panel; build it from sample inputs if asked."""
    paths = Paths.from_config(config)
    outputs = [paths.data_final / "panel.parquet", paths.data_final / "panel_winsorized.parquet"]
    if all(path.exists() for path in outputs):
        return paths
    if not sample:
        raise FileNotFoundError(
            f"Analysis panel not found in {paths.data_final}. Run `dte data build-panel` first, "
            "or pass --sample to use synthetic data."
        )
    build_panel(config, sample=True)
    return paths
