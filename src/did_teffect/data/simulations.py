"""Reader for the precomputed Monte Carlo simulation results."""
from __future__ import annotations

from pathlib import Path

import pandas as pd

from did_teffect.utils.io import read_table


SIMULATION_COLUMNS = [
    "sim_run",
    "model",
    "cluster",
    "winsorize",
    "true_effect",
    "estimate",
    "ci_lower",
    "ci_upper",
]


def validate_simulations(df: pd.DataFrame) -> pd.DataFrame:
    missing = [col for col in SIMULATION_COLUMNS if col not in df.columns]
    if missing:
        raise RuntimeError(f"Simulation results are missing required columns: {missing}")
    out = df.copy()
    out["model"] = out["model"].astype(str)
    out["cluster"] = out["cluster"].astype(str)
    for col in ["winsorize", "true_effect", "estimate", "ci_lower", "ci_upper"]:
        out[col] = pd.to_numeric(out[col], errors="coerce").astype(float)
    out["sim_run"] = pd.to_numeric(out["sim_run"], errors="raise").astype(int)
    inverted = out[out["ci_lower"] > out["ci_upper"]]
    if not inverted.empty:
        raise RuntimeError(
            f"{inverted.shape[0]} simulation rows have ci_lower > ci_upper; "
            "check the column order of the results file."
        )
    return out


def load_simulations(path: Path) -> pd.DataFrame:
    return validate_simulations(read_table(path))
