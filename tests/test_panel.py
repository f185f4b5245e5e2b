import pandas as pd
import pytest

from did_teffect.data.panel import assign_treatment, load_panel, validate_panel
from did_teffect.data.sample import make_sample_panel


def _raw_panel():
    return pd.DataFrame(
        {
            "firm_id": ["a", "a", "a", "b", "b", "b"],
            "country_code": ["DEU", "DEU", "DEU", "AUT", "AUT", "AUT"],
            "year": [2011, 2012, 2013, 2011, 2012, 2013],
            "treated_country": [1, 1, 1, 0, 0, 0],
            "roa": [0.01, 0.02, 0.05, 0.02, 0.01, 0.02],
        }
    )


def test_assign_treatment_uses_country_flag_and_start_year():
    panel = assign_treatment(validate_panel(_raw_panel()), start_year=2012)
    treated = panel.set_index(["firm_id", "year"])["treated"]
    assert not treated[("a", 2011)]
    assert treated[("a", 2012)] and treated[("a", 2013)]
    assert not treated.loc["b"].any()

    ttt = panel.set_index(["firm_id", "year"])["time_to_treatment"]
    assert ttt.loc["a"].tolist() == [-1, 0, 1]
    assert ttt.loc["b"].tolist() == [0, 0, 0]


def test_validate_panel_rejects_duplicate_keys():
    raw = pd.concat([_raw_panel(), _raw_panel().iloc[[0]]], ignore_index=True)
    with pytest.raises(RuntimeError, match="duplicated"):
        validate_panel(raw)


def test_validate_panel_rejects_missing_columns():
    with pytest.raises(RuntimeError, match="roa"):
        validate_panel(_raw_panel().drop(columns=["roa"]))


def test_validate_panel_rejects_firms_switching_country():
    raw = _raw_panel()
    raw.loc[2, "country_code"] = "FRA"
    with pytest.raises(RuntimeError, match="more than one country"):
        validate_panel(raw)


def test_load_panel_from_csv(tmp_path):
    path = tmp_path / "panel.csv"
    _raw_panel().to_csv(path, index=False)
    panel = load_panel(path, start_year=2013)
    assert panel["treated_country"].dtype == bool
    assert panel["treated"].sum() == 1
    assert list(panel.columns[:4]) == ["firm_id", "firm_name", "country_code", "country"]


def test_load_panel_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError, match="dte data sample"):
        load_panel(tmp_path / "absent.rds", start_year=2013)


def test_sample_panel_is_unique_and_unbalanced():
    panel = make_sample_panel(
        ["AUT", "DEU"], ["DEU"], range(2010, 2016), 2013, firms_per_country=20, drop_share=0.2, seed=3
    )
    assert not panel.duplicated(subset=["firm_id", "year"]).any()
    assert panel["firm_id"].nunique() == 40
    assert panel.shape[0] < 40 * 6
    derived = assign_treatment(panel, 2013)
    pd.testing.assert_series_equal(derived["treated"], panel["treated"])
    pd.testing.assert_series_equal(derived["time_to_treatment"], panel["time_to_treatment"].astype(int))


def test_missing_year_is_reported_with_firms():
    raw = _raw_panel().astype({"year": float})
    raw.loc[4, "year"] = float("nan")
    with pytest.raises(RuntimeError, match=r"missing or non-numeric year.*'b'"):
        validate_panel(raw)
