"""Pandas helper utilities."""
from __future__ import annotations

from typing import Iterable

import pandas as pd


def percentile_bounds(values: pd.Series, lower: float = 0.01, upper: float = 0.99) -> tuple[float, float]:
    """Linear-interpolation quantiles of the non-missing values (R's type 7)."""
    if not 0.0 <= lower < upper <= 1.0:
        raise ValueError(f"Percentile levels must satisfy 0 <= lower < upper <= 1 (got {lower}, {upper}).")
    clean = pd.to_numeric(values, errors="coerce").dropna()
    if clean.empty:
        return float("nan"), float("nan")
    lo, hi = clean.quantile([lower, upper], interpolation="linear")
    return float(lo), float(hi)


def winsorize(values: pd.Series, lower: float = 0.01, upper: float = 0.99) -> pd.Series:
    """Clip a numeric series at its `lower`/`upper` percentiles.

    Missing values are excluded from the percentile computation and stay missing.
    The input series is not modified; a new series with the same index is returned.
    """
    series = pd.to_numeric(pd.Series(values), errors="coerce").astype(float)
    lo, hi = percentile_bounds(series, lower, upper)
    if pd.isna(lo):
        return series.copy()
    return series.clip(lower=lo, upper=hi)


def winsorize_panel(
    df: pd.DataFrame, columns: Iterable[str], lower: float = 0.01, upper: float = 0.99
) -> pd.DataFrame:
    out = df.copy()
    for col in columns:
        out[col] = winsorize(out[col], lower, upper)
    return out
