"""IO helpers for parquet/CSV/R data files."""
from __future__ import annotations

from pathlib import Path

import pandas as pd
import pyreadr


def write_parquet(df: pd.DataFrame, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_parquet(path, index=False)


def read_parquet(path: Path) -> pd.DataFrame:
    return pd.read_parquet(path)


def write_csv(df: pd.DataFrame, path: Path, index: bool = False) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, index=index)


def write_rds(df: pd.DataFrame, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    pyreadr.write_rds(str(path), df.reset_index(drop=True))


def read_table(path: Path) -> pd.DataFrame:
    """Read a persisted table, dispatching on the file suffix (.rds, .parquet, .csv)."""
    if not path.exists():
        raise FileNotFoundError(
            f"Missing input table {path}. Place the file there or run `dte data sample` "
            "to generate synthetic inputs."
        )
    suffix = path.suffix.lower()
    if suffix in {".rds", ".rdata", ".rda"}:
        result = pyreadr.read_r(str(path))
        if not result:
            raise RuntimeError(f"No data frame found in {path}")
        # .rds files hold a single unnamed object
        return next(iter(result.values()))
    if suffix == ".parquet":
        return read_parquet(path)
    if suffix == ".csv":
        return pd.read_csv(path)
    raise ValueError(f"Unsupported table format {suffix!r} for {path}")
