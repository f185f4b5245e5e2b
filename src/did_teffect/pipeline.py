"""Pipeline orchestration and manifest writing."""
from __future__ import annotations

import hashlib
import json
import subprocess
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

from did_teffect.config import load_config
from did_teffect.logging import setup_logging
from did_teffect.paths import Paths


def _git_hash(root: Path) -> str:
    try:
        result = subprocess.run(
            ["git", "-C", str(root), "rev-parse", "HEAD"],
            check=True,
            capture_output=True,
            text=True,
        )
        return result.stdout.strip()
    except (subprocess.SubprocessError, OSError):
        return "unknown"


def config_hash(payload: dict[str, Any]) -> str:
    dumped = json.dumps(payload, sort_keys=True, default=str).encode("utf-8")
    return hashlib.sha256(dumped).hexdigest()


def record_manifest(
    paths: Paths,
    config_payload: dict,
    step: str,
    inputs: Iterable[Path],
    outputs: Iterable[Path],
) -> None:
    manifest_path = paths.output / "run_manifest.json"
    manifest_path.parent.mkdir(parents=True, exist_ok=True)
    record = {
        "step": step,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "inputs": [str(path) for path in inputs],
        "outputs": [str(path) for path in outputs],
    }
    payload = {
        "git_commit": _git_hash(paths.root),
        "config_hash": config_hash(config_payload),
        "runs": [record],
    }
    if manifest_path.exists():
        existing = json.loads(manifest_path.read_text())
        existing.setdefault("runs", []).append(record)
        existing["git_commit"] = payload["git_commit"]
        existing["config_hash"] = payload["config_hash"]
        manifest_path.write_text(json.dumps(existing, indent=2))
    else:
        manifest_path.write_text(json.dumps(payload, indent=2))


def run_all_pipeline(config_path: str, force: bool = False, sample: bool = False) -> None:
    from did_teffect.data.panel import build_panel
    from did_teffect.data.sample import write_sample_inputs
    from did_teffect.models.descriptives import describe_panel
    from did_teffect.models.eventstudy import estimate_event_study
    from did_teffect.models.fe import estimate_main
    from did_teffect.models.figures import render_all_figures
    from did_teffect.models.simulations import summarize_simulation_results

    logger = setup_logging()
    config = load_config(config_path)
    paths = Paths.from_config(config)
    paths.ensure()

    logger.info("Starting run-all pipeline")

    if sample:
        write_sample_inputs(config, force=force)
    elif not paths.panel_file.exists():
        raise FileNotFoundError(
            f"Panel input {paths.panel_file} not found. Rerun with --sample to use synthetic data."
        )

    build_panel(config, force=force, sample=sample)
    describe_panel(config, force=force, sample=sample)
    estimate_main(config, force=force, sample=sample)
    estimate_event_study(config, force=force, sample=sample)
    summarize_simulation_results(config, force=force, sample=sample)
    render_all_figures(config, force=force, sample=sample)
    record_manifest(
        paths,
        config.model_dump(),
        "run_all",
        [paths.panel_file, paths.simulations_file],
        [paths.tables_dir, paths.figures_dir],
    )

    logger.info("Pipeline completed")
