import numpy as np
import pandas as pd
import pytest

from did_teffect.utils.pandas_helpers import percentile_bounds, winsorize, winsorize_panel


def _heavy_tailed(n=1000, seed=7):
    rng = np.random.default_rng(seed)
    return pd.Series(0.05 + 0.02 * rng.standard_t(2, size=n))


def test_winsorize_clips_to_percentile_bounds():
    values = _heavy_tailed()
    lo, hi = values.quantile([0.01, 0.99])
    out = winsorize(values)

    assert out.min() >= lo
    assert out.max() <= hi
    inside = (values > lo) & (values < hi)
    pd.testing.assert_series_equal(out[inside], values[inside])
    assert (out[values < lo] == lo).all()
    assert (out[values > hi] == hi).all()
    assert out.index.equals(values.index)


def test_winsorize_uses_linear_interpolation():
    values = pd.Series(np.arange(1, 101, dtype=float))
    lo, hi = percentile_bounds(values)
    assert lo == pytest.approx(1.99)
    assert hi == pytest.approx(99.01)
    out = winsorize(values)
    assert out.iloc[0] == pytest.approx(1.99)
    assert out.iloc[-1] == pytest.approx(99.01)
    assert out.iloc[50] == values.iloc[50]


def test_winsorize_ignores_and_keeps_missing_values():
    values = pd.Series([np.nan] + list(np.arange(1, 101, dtype=float)) + [np.nan])
    out = winsorize(values)
    assert out.isna().sum() == 2
    assert np.isnan(out.iloc[0]) and np.isnan(out.iloc[-1])
    assert out.min() == pytest.approx(1.99)


def test_winsorize_does_not_mutate_input():
    values = _heavy_tailed()
    before = values.copy()
    winsorize(values)
    pd.testing.assert_series_equal(values, before)

    frame = pd.DataFrame({"roa": values, "other": values})
    out = winsorize_panel(frame, ["roa"])
    pd.testing.assert_series_equal(frame["roa"], before, check_names=False)
    pd.testing.assert_series_equal(out["other"], frame["other"])
    assert out["roa"].max() < frame["roa"].max()


def test_winsorize_is_near_idempotent():
    values = _heavy_tailed(n=2000)
    once = winsorize(values)
    twice = winsorize(once)
    changed = (once != twice).mean()
    assert changed <= 0.03
    assert (once - twice).abs().max() <= (once.max() - once.min()) * 0.1


def test_winsorize_all_missing_returns_missing():
    out = winsorize(pd.Series([np.nan, np.nan]))
    assert out.isna().all()


def test_winsorize_rejects_invalid_levels():
    with pytest.raises(ValueError):
        winsorize(pd.Series([1.0, 2.0, 3.0]), lower=0.5, upper=0.5)
