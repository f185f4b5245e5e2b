"""Difference-in-differences regressions: classic pooled DiD and two-way fixed effects."""
from __future__ import annotations

import logging

import numpy as np
import pandas as pd
from linearmodels.panel import PanelOLS, PooledOLS

from did_teffect.config import CLUSTER_SCHEMES, AppConfig
from did_teffect.data.panel import require_analysis_panel
from did_teffect.logging import setup_logging
from did_teffect.models.tables import regression_frame, write_table
from did_teffect.paths import Paths
from did_teffect.pipeline import record_manifest
from did_teffect.utils.io import read_parquet


CLUSTER_COLUMNS = {
    "firm": ["firm_id"],
    "country": ["country_code"],
    "year": ["year"],
    "firm_year": ["firm_id", "year"],
    "country_year": ["country_code", "year"],
}

MODELS = ("did", "twfe")


def _default_logger(logger: logging.Logger | None) -> logging.Logger:
    return logger if logger is not None else logging.getLogger("did_teffect")


def prepare_panel(panel: pd.DataFrame, outcome: str) -> pd.DataFrame:
    """Drop missing outcomes and index by (firm_id, year)."""
    if outcome not in panel.columns:
        raise RuntimeError(f"Outcome column {outcome!r} not in panel.")
    df = panel.dropna(subset=[outcome])
    return df.set_index(["firm_id", "year"]).sort_index()


def make_clusters(frame: pd.DataFrame, scheme: str) -> pd.DataFrame | None:
    """Integer cluster codes for `scheme`; None for unadjusted standard errors."""
    if scheme not in CLUSTER_SCHEMES:
        raise ValueError(f"Unknown clustering scheme {scheme!r}; choose from {list(CLUSTER_SCHEMES)}.")
    if scheme == "none":
        return None
    data = {}
    for col in CLUSTER_COLUMNS[scheme]:
        if col in frame.index.names:
            values = frame.index.get_level_values(col)
        else:
            values = frame[col]
        data[col] = pd.Categorical(np.asarray(values).astype(str)).codes.astype(np.int64)
    return pd.DataFrame(data, index=frame.index)


def _fit(model, frame: pd.DataFrame, cluster: str):
    clusters = make_clusters(frame, cluster)
    if clusters is None:
        return model.fit(cov_type="unadjusted")
    return model.fit(cov_type="clustered", clusters=clusters)


def _select_fe_flags(exog: pd.DataFrame, columns: list[str], logger) -> tuple[bool, bool]:
    """Choose FE flags that keep regressors identified.

    If a regressor has no cross-sectional variation in any year, time effects absorb it.
    If a regressor has no within-firm variation, firm effects absorb it.
    """

    entity_effects = True
    time_effects = True
    for col in columns:
        series = exog[col].dropna()
        if series.nunique() <= 1:
            raise RuntimeError(
                f"Regressor {col} has no variation after filtering; cannot estimate "
                f"(n={series.shape[0]}, unique={series.nunique()}). "
                "Check the treatment start year and the panel's year range."
            )
        within_entity = series.groupby(level=0).var()
        within_year = series.groupby(level=1).var()
        if (within_entity.fillna(0) == 0).all():
            entity_effects = False
        if (within_year.fillna(0) == 0).all():
            time_effects = False

    if not entity_effects and not time_effects:
        raise RuntimeError(
            "Regressors are fully absorbed by fixed effects; "
            "no identified variation remains."
        )

    if not entity_effects or not time_effects:
        logger.warning(
            "Adjusting fixed effects for identification (entity_effects=%s, time_effects=%s).",
            entity_effects,
            time_effects,
        )

    return entity_effects, time_effects


def _ensure_full_rank(exog: pd.DataFrame, logger, keep: str | None = None) -> pd.DataFrame:
    """Drop collinear columns to ensure full column rank."""

    if exog.shape[1] <= 1:
        return exog
    selected: list[str] = []
    for col in exog.columns:
        candidate = exog[selected + [col]]
        if np.linalg.matrix_rank(candidate.to_numpy()) > len(selected):
            selected.append(col)
        else:
            logger.warning("Dropping collinear regressor: %s", col)
    if keep is not None and keep not in selected:
        raise RuntimeError(f"Treatment regressor {keep} is collinear with the controls; cannot estimate.")
    return exog[selected]


def estimate_did(
    panel: pd.DataFrame,
    outcome: str,
    cluster: str = "none",
    logger: logging.Logger | None = None,
):
    """Classic DiD: outcome ~ 1 + treated_country + post + treated (pooled OLS)."""
    logger = _default_logger(logger)
    df = prepare_panel(panel, outcome)
    exog = df[["treated_country", "post", "treated"]].astype(float)
    if exog["treated"].nunique() <= 1:
        raise RuntimeError("Regressor treated has no variation after filtering; cannot estimate.")
    exog.insert(0, "const", 1.0)
    exog = _ensure_full_rank(exog, logger, keep="treated")
    model = PooledOLS(df[outcome], exog)
    return _fit(model, df, cluster)


def estimate_twfe(
    panel: pd.DataFrame,
    outcome: str,
    cluster: str = "none",
    logger: logging.Logger | None = None,
):
    """Two-way fixed effects DiD: outcome ~ treated + firm FE + year FE."""
    logger = _default_logger(logger)
    df = prepare_panel(panel, outcome)
    exog = df[["treated"]].astype(float)
    entity_effects, time_effects = _select_fe_flags(exog, ["treated"], logger)
    model = PanelOLS(
        df[outcome],
        exog,
        entity_effects=entity_effects,
        time_effects=time_effects,
        drop_absorbed=True,
    )
    return _fit(model, df, cluster)


ESTIMATORS = {"did": estimate_did, "twfe": estimate_twfe}


def run_specifications(
    panel: pd.DataFrame,
    winsorized: pd.DataFrame,
    outcome: str,
    clusters: list[str],
    ci_level: float = 0.95,
    logger: logging.Logger | None = None,
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """Fit every model x winsorization x clustering combination.

    Returns the tidy treatment-effect table and the full coefficient table.
    """
    logger = _default_logger(logger)
    results = {}
    meta = {}
    for model in MODELS:
        for is_winsorized, frame in [(False, panel), (True, winsorized)]:
            for cluster in clusters:
                name = f"{model} | {'winsorized' if is_winsorized else 'raw'} | {cluster}"
                results[name] = ESTIMATORS[model](frame, outcome, cluster, logger)
                meta[name] = {"estimator": model, "winsorized": is_winsorized, "cluster": cluster}

    full = regression_frame(results, ci_level=ci_level, logger=logger)
    labels = pd.DataFrame.from_dict(meta, orient="index").rename_axis("model").reset_index()
    full = labels.merge(full, on="model", how="right")
    tidy = (
        full[full["variable"] == "treated"]
        .drop(columns=["model", "variable"])
        .rename(columns={"estimator": "model"})
        .reset_index(drop=True)
    )
    for row in tidy.itertuples(index=False):
        logger.info(
            "%-4s winsorized=%-5s cluster=%-12s coef=%.4f se=%.4f",
            row.model,
            row.winsorized,
            row.cluster,
            row.coef,
            row.std_err,
        )
    return tidy, full


def estimate_main(config: AppConfig, force: bool = False, sample: bool = False) -> None:
    logger = setup_logging()
    paths = Paths.from_config(config)
    paths.ensure()
    output_csv = paths.tables_dir / "Table2_did_estimates.csv"
    output_tex = paths.tables_dir / "Table2_did_estimates.tex"
    full_csv = paths.tables_dir / "Table2_did_estimates_full.csv"
    if output_csv.exists() and output_tex.exists() and not force:
        logger.info("DiD estimates already exist; skipping.")
        return

    require_analysis_panel(config, sample)
    panel = read_parquet(paths.data_final / "panel.parquet")
    winsorized = read_parquet(paths.data_final / "panel_winsorized.parquet")
    tidy, full = run_specifications(
        panel,
        winsorized,
        config.estimation.outcome,
        config.estimation.clusters,
        ci_level=config.estimation.ci_level,
        logger=logger,
    )
    write_table(
        tidy,
        output_csv,
        output_tex,
        caption="Difference-in-differences estimates of the treatment effect",
        label="tab:did",
    )
    full.to_csv(full_csv, index=False)
    logger.info("Wrote DiD regression table")
    record_manifest(
        paths,
        config.model_dump(),
        "estimate_main",
        [paths.data_final / "panel.parquet", paths.data_final / "panel_winsorized.parquet"],
        [output_csv, output_tex, full_csv],
    )
