import json
from pathlib import Path

import pandas as pd
import pytest

from did_teffect.config import load_config
from did_teffect.data.panel import build_panel
from did_teffect.models.descriptives import describe_panel
from did_teffect.models.fe import estimate_main
from did_teffect.models.figures import render_all_figures
from did_teffect.paths import Paths
from did_teffect.pipeline import run_all_pipeline


def test_pipeline_sample(monkeypatch, tmp_path):
    config = load_config("config/default.toml")
    paths = Paths.from_config(config, root=tmp_path)
    paths.ensure()

    monkeypatch.setattr("did_teffect.pipeline.Paths.from_config", lambda cfg: paths)

    run_all_pipeline("config/default.toml", force=True, sample=True)

    assert paths.panel_file.exists()
    assert paths.simulations_file.exists()
    assert (paths.data_final / "panel.parquet").exists()
    assert (paths.data_final / "panel_winsorized.parquet").exists()

    tables = paths.tables_dir
    for name in [
        "Table1_summary_stats.csv",
        "Table1_summary_stats.tex",
        "TableA1_obs_by_year_country.csv",
        "TableA2_treatment_by_country.csv",
        "Table2_did_estimates.csv",
        "Table3_eventstudy_coeffs.csv",
        "Table4_simulation_summary.csv",
        "eventstudy_trend_bands.csv",
    ]:
        assert (tables / name).exists(), name

    estimates = pd.read_csv(tables / "Table2_did_estimates.csv")
    assert estimates.shape[0] == 2 * 2 * len(config.estimation.clusters)
    assert estimates["coef"].between(config.sample.effect - 0.02, config.sample.effect + 0.02).all()
    assert estimates[["std_err", "ci_lower", "ci_upper"]].notna().all().all()
    assert (estimates["ci_lower"] < estimates["coef"]).all() and (estimates["coef"] < estimates["ci_upper"]).all()

    coeffs = pd.read_csv(tables / "Table3_eventstudy_coeffs.csv")
    ref = coeffs[coeffs["period"] == config.treatment.reference_period]
    assert ref[["lower", "upper"]].to_numpy().tolist() == [[0.0, 0.0]]
    assert coeffs["period"].is_monotonic_increasing

    for name in ["Figure1_obs_by_year_country.png", "Figure3_parallel_trends.png", "Figure5_simulation_power.png"]:
        assert (paths.figures_dir / name).exists(), name

    manifest = json.loads((paths.output / "run_manifest.json").read_text())
    steps = [run["step"] for run in manifest["runs"]]
    assert steps[0] == "sample_inputs"
    assert steps[-1] == "run_all"
    assert "estimate_main" in steps


def test_pipeline_requires_panel_without_sample(monkeypatch, tmp_path):
    config = load_config("config/default.toml")
    paths = Paths.from_config(config, root=tmp_path)
    monkeypatch.setattr("did_teffect.pipeline.Paths.from_config", lambda cfg: paths)

    with pytest.raises(FileNotFoundError, match="--sample"):
        run_all_pipeline("config/default.toml", force=True, sample=False)


def test_single_step_builds_sample_inputs(monkeypatch, tmp_path):
    config = load_config("config/default.toml")
    paths = Paths.from_config(config, root=tmp_path)
    monkeypatch.setattr("did_teffect.pipeline.Paths.from_config", lambda cfg: paths)

    with pytest.raises(FileNotFoundError, match="--sample"):
        estimate_main(config, force=True)

    describe_panel(config, force=True, sample=True)
    assert paths.panel_file.exists()
    assert (paths.data_final / "panel.parquet").exists()
    assert (paths.tables_dir / "Table1_summary_stats.csv").exists()


def test_manifest_lists_only_rendered_figures(monkeypatch, tmp_path):
    config = load_config("config/default.toml")
    paths = Paths.from_config(config, root=tmp_path)
    monkeypatch.setattr("did_teffect.pipeline.Paths.from_config", lambda cfg: paths)

    build_panel(config, force=True, sample=True)
    paths.simulations_file.unlink()
    render_all_figures(config, force=True)

    manifest = json.loads((paths.output / "run_manifest.json").read_text())
    record = [run for run in manifest["runs"] if run["step"] == "render_figures"][-1]
    rendered = {Path(name).name for name in record["outputs"]}
    assert rendered == {"Figure1_obs_by_year_country.png", "Figure2_outcome_winsorization.png"}
