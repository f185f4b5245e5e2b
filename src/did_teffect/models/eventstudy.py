"""Event-study regression and parallel-trend band reconstruction."""
from __future__ import annotations

import logging

import numpy as np
import pandas as pd
from linearmodels.panel import PanelOLS

from did_teffect.config import AppConfig
from did_teffect.data.panel import require_analysis_panel
from did_teffect.logging import setup_logging
from did_teffect.models.fe import _fit, prepare_panel
from did_teffect.models.tables import coefficient_intervals
from did_teffect.paths import Paths
from did_teffect.pipeline import record_manifest
from did_teffect.utils.io import read_parquet, write_csv


def _period_name(period: int) -> str:
    return f"ttt_m{abs(period)}" if period < 0 else f"ttt_p{period}"


def event_study_regressors(
    panel: pd.DataFrame, reference_period: int = -1
) -> tuple[pd.DataFrame, dict[str, int]]:
    """One indicator per time-to-treatment offset for firms in treated countries.

    The reference period gets no indicator. Returns the indicator frame (same
    index as `panel`) and the column -> period mapping.
    """
    treated = panel["treated_country"].astype(bool)
    periods = sorted(int(p) for p in panel.loc[treated, "time_to_treatment"].unique())
    if reference_period not in periods:
        raise RuntimeError(
            f"Reference period {reference_period} is not observed for treated firms "
            f"(observed offsets: {periods})."
        )
    columns: dict[str, int] = {}
    data = {}
    for period in periods:
        if period == reference_period:
            continue
        name = _period_name(period)
        data[name] = (treated & (panel["time_to_treatment"] == period)).astype(float)
        columns[name] = period
    return pd.DataFrame(data, index=panel.index), columns


def fit_event_study(
    panel: pd.DataFrame,
    outcome: str,
    reference_period: int = -1,
    cluster: str = "firm",
    ci_level: float = 0.95,
    logger: logging.Logger | None = None,
) -> pd.DataFrame:
    """TWFE event-study regression; one CI row per non-reference period."""
    logger = logger if logger is not None else logging.getLogger("did_teffect")
    df = prepare_panel(panel, outcome)
    exog, mapping = event_study_regressors(df, reference_period)
    model = PanelOLS(
        df[outcome],
        exog,
        entity_effects=True,
        time_effects=True,
        drop_absorbed=True,
    )
    res = _fit(model, df, cluster)
    ci = coefficient_intervals(res, ci_level=ci_level, label=f"event study | {cluster}", logger=logger)
    absorbed = [period for name, period in mapping.items() if name not in set(ci["variable"])]
    for period in absorbed:
        logger.warning("Event-study indicator for period %s was absorbed; skipping.", period)
    ci = ci[ci["variable"].isin(list(mapping))].copy()
    ci.insert(0, "period", ci["variable"].map(mapping).astype(int))
    ci = ci.drop(columns="variable")
    return ci.sort_values("period").reset_index(drop=True)


def reconstruct_event_bands(ci: pd.DataFrame, reference_period: int = -1) -> pd.DataFrame:
    """Complete the per-period confidence intervals and add the symmetric half-width.

    The reference period is inserted in chronological position with bounds (0, 0);
    an existing reference row is replaced. `delta = upper - (upper + lower) / 2`.
    """
    missing = {"period", "lower", "upper"} - set(ci.columns)
    if missing:
        raise RuntimeError(f"Confidence interval table is missing columns: {sorted(missing)}")
    rows = ci[ci["period"] != reference_period].copy()
    ref = pd.DataFrame({"period": [reference_period], "lower": [0.0], "upper": [0.0]})
    if "coef" in rows.columns:
        ref["coef"] = 0.0
    bands = pd.concat([rows, ref], ignore_index=True)
    bands["period"] = bands["period"].astype(int)
    bands = bands.sort_values("period", kind="mergesort").reset_index(drop=True)
    bands["delta"] = bands["upper"] - (bands["upper"] + bands["lower"]) / 2
    return bands


def group_means_by_period(panel: pd.DataFrame, outcome: str, start_year: int) -> pd.DataFrame:
    """Mean outcome per (year, treatment group) with the offset from the start year."""
    means = (
        panel.dropna(subset=[outcome])
        .groupby(["year", "treated_country"], as_index=False)
        .agg(mean_outcome=(outcome, "mean"))
    )
    means["period"] = means["year"].astype(int) - int(start_year)
    return means.sort_values(["treated_country", "year"]).reset_index(drop=True)


def build_plot_bands(bands: pd.DataFrame, group_means: pd.DataFrame) -> pd.DataFrame:
    """Attach `mean +/- delta` bands to treated-group means; control rows get none."""
    merged = group_means.merge(bands[["period", "delta"]], on="period", how="left")
    treated = merged["treated_country"].astype(bool)
    merged["band_lower"] = np.where(treated, merged["mean_outcome"] - merged["delta"], np.nan)
    merged["band_upper"] = np.where(treated, merged["mean_outcome"] + merged["delta"], np.nan)
    return merged.sort_values(["treated_country", "period"]).reset_index(drop=True)


def estimate_event_study(config: AppConfig, force: bool = False, sample: bool = False) -> None:
    logger = setup_logging()
    paths = Paths.from_config(config)
    paths.ensure()
    coeffs_csv = paths.tables_dir / "Table3_eventstudy_coeffs.csv"
    bands_csv = paths.tables_dir / "eventstudy_trend_bands.csv"
    if coeffs_csv.exists() and bands_csv.exists() and not force:
        logger.info("Event study estimates already exist; skipping.")
        return

    outcome = config.estimation.outcome
    reference = config.treatment.reference_period
    require_analysis_panel(config, sample)
    panel = read_parquet(paths.data_final / "panel.parquet")

    ci = fit_event_study(
        panel,
        outcome,
        reference_period=reference,
        cluster=config.estimation.event_study_cluster,
        ci_level=config.estimation.ci_level,
        logger=logger,
    )
    bands = reconstruct_event_bands(ci, reference)
    pre = bands[bands["period"] < reference]
    if not pre.empty:
        n_excl = int(((pre["lower"] > 0) | (pre["upper"] < 0)).sum())
        logger.info("%s of %s pre-treatment periods have intervals excluding zero", n_excl, pre.shape[0])

    plot_bands = build_plot_bands(bands, group_means_by_period(panel, outcome, config.treatment.start_year))
    write_csv(bands, coeffs_csv)
    write_csv(plot_bands, bands_csv)
    logger.info("Wrote event study coefficients and trend bands")
    record_manifest(
        paths,
        config.model_dump(),
        "estimate_event_study",
        [paths.data_final / "panel.parquet"],
        [coeffs_csv, bands_csv],
    )
