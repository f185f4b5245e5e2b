"""Synthetic inputs for running the pipeline without the proprietary panel."""
from __future__ import annotations

from typing import Sequence

import numpy as np
import pandas as pd

from did_teffect.config import AppConfig
from did_teffect.logging import setup_logging
from did_teffect.paths import Paths
from did_teffect.pipeline import record_manifest
from did_teffect.utils.io import write_rds


COUNTRY_NAMES = {
    "AUT": "Austria",
    "BEL": "Belgium",
    "DEU": "Germany",
    "DNK": "Denmark",
    "ESP": "Spain",
    "FIN": "Finland",
    "FRA": "France",
    "GBR": "United Kingdom",
    "ITA": "Italy",
    "NLD": "Netherlands",
    "SWE": "Sweden",
}


def make_sample_panel(
    countries: Sequence[str],
    treated_countries: Sequence[str],
    years: Sequence[int],
    start_year: int,
    *,
    firms_per_country: int = 40,
    effect: float = 0.03,
    drop_share: float = 0.0,
    noise_sd: float = 0.02,
    heavy_tails: bool = True,
    seed: int = 0,
) -> pd.DataFrame:
    """Simulate a firm-year panel with a known treatment effect.

    ROA is firm level + common year shock + `effect` for treated firm-years + noise.
    Year shocks are shared by all countries, so treated and control groups follow
    parallel trends by construction. With `drop_share` > 0 a random share of
    firm-years is removed (each firm keeps at least one year).
    """
    rng = np.random.default_rng(seed)
    years = sorted(int(y) for y in years)
    year_shock = dict(zip(years, rng.normal(0.0, 0.01, size=len(years))))
    treated_set = set(treated_countries)

    rows = []
    for country in countries:
        for idx in range(firms_per_country):
            firm_id = f"{country}{idx + 1:04d}"
            firm_level = rng.normal(0.05, 0.03)
            log_assets = rng.normal(6.0, 1.5)
            for year in years:
                if heavy_tails:
                    noise = noise_sd * rng.standard_t(3)
                else:
                    noise = rng.normal(0.0, noise_sd)
                is_treated = country in treated_set and year >= start_year
                rows.append(
                    {
                        "firm_id": firm_id,
                        "firm_name": f"Firm {country} {idx + 1:04d}",
                        "country_code": country,
                        "country": COUNTRY_NAMES.get(country, country),
                        "year": year,
                        "treated_country": country in treated_set,
                        "treated": is_treated,
                        "time_to_treatment": year - start_year if country in treated_set else 0,
                        "roa": firm_level + year_shock[year] + (effect if is_treated else 0.0) + noise,
                        "avg_assets": float(np.exp(log_assets + rng.normal(0.0, 0.1))),
                    }
                )
    panel = pd.DataFrame(rows)

    if drop_share > 0:
        drop = rng.random(panel.shape[0]) < drop_share
        # keep the first observed year of every firm
        first = ~panel.duplicated(subset=["firm_id"], keep="first")
        panel = panel[~drop | first.to_numpy()]
    return panel.reset_index(drop=True)


def make_sample_simulations(
    clusters: Sequence[str],
    winsorize_levels: Sequence[float],
    true_effects: Sequence[float],
    *,
    runs: int = 200,
    seed: int = 0,
) -> pd.DataFrame:
    """Synthetic stand-in for the precomputed Monte Carlo results table.

    Draws estimates around the true effect with model-specific dispersion and
    reports intervals whose width depends on the clustering scheme. Unclustered
    and firm-clustered intervals are too narrow relative to the sampling spread.
    """
    rng = np.random.default_rng(seed)
    sampling_sd = {"did": 0.012, "twfe": 0.009}
    # ratio of reported standard error to the sampling standard deviation
    se_ratio = {
        "none": 0.45,
        "firm": 0.6,
        "year": 0.8,
        "firm_year": 0.85,
        "country": 1.0,
        "country_year": 1.05,
    }
    rows = []
    for model, sd in sampling_sd.items():
        for level in winsorize_levels:
            sd_w = sd * (0.8 if level > 0 else 1.0)
            for effect in true_effects:
                estimates = rng.normal(effect, sd_w, size=runs)
                for cluster in clusters:
                    se = sd_w * se_ratio.get(cluster, 1.0) * rng.uniform(0.9, 1.1, size=runs)
                    frame = pd.DataFrame(
                        {
                            "sim_run": np.arange(1, runs + 1),
                            "model": model,
                            "cluster": cluster,
                            "winsorize": float(level),
                            "true_effect": float(effect),
                            "estimate": estimates,
                            "ci_lower": estimates - 1.96 * se,
                            "ci_upper": estimates + 1.96 * se,
                        }
                    )
                    rows.append(frame)
    return pd.concat(rows, ignore_index=True)


def write_sample_inputs(config: AppConfig, force: bool = False) -> None:
    logger = setup_logging()
    paths = Paths.from_config(config)
    paths.ensure()
    if paths.panel_file.exists() and paths.simulations_file.exists() and not force:
        logger.info("Sample inputs already exist; skipping.")
        return

    sample = config.sample
    logger.info("Creating sample panel and simulation results")
    panel = make_sample_panel(
        sample.countries,
        sample.treated_countries,
        range(config.years.start, config.years.end + 1),
        config.treatment.start_year,
        firms_per_country=sample.firms_per_country,
        effect=sample.effect,
        drop_share=sample.drop_share,
        seed=sample.seed,
    )
    sims = make_sample_simulations(
        config.estimation.clusters,
        [0.0, config.winsorize.lower],
        sample.simulation_effects,
        runs=sample.simulation_runs,
        seed=sample.seed + 1,
    )
    write_rds(panel, paths.panel_file)
    write_rds(sims, paths.simulations_file)
    logger.info(
        "Wrote sample panel (%s firm-years) and %s simulation rows to %s",
        panel.shape[0],
        sims.shape[0],
        paths.data_raw,
    )
    record_manifest(
        paths,
        config.model_dump(),
        "sample_inputs",
        [],
        [paths.panel_file, paths.simulations_file],
    )
