import logging
from types import SimpleNamespace

import numpy as np
import pandas as pd
import pytest

from did_teffect.config import CLUSTER_SCHEMES
from did_teffect.data.panel import assign_treatment
from did_teffect.data.sample import make_sample_panel
from did_teffect.models.fe import estimate_did, estimate_twfe, make_clusters, prepare_panel, run_specifications
from did_teffect.models.tables import coefficient_intervals, psd_covariance
from did_teffect.utils.pandas_helpers import winsorize_panel


def _two_country_panel(**kwargs):
    options = dict(firms_per_country=30, effect=0.03, noise_sd=0.002, heavy_tails=False, seed=5)
    options.update(kwargs)
    raw = make_sample_panel(["AAA", "BBB"], ["BBB"], range(2001, 2005), 2003, **options)
    return assign_treatment(raw, 2003)


def test_did_and_twfe_recover_injected_effect():
    panel = _two_country_panel()
    did = estimate_did(panel, "roa", cluster="none")
    twfe = estimate_twfe(panel, "roa", cluster="none")
    assert did.params["treated"] == pytest.approx(0.03, abs=0.005)
    assert twfe.params["treated"] == pytest.approx(0.03, abs=0.005)
    assert did.nobs == panel.shape[0]


def test_did_and_twfe_find_nothing_without_effect():
    panel = _two_country_panel(effect=0.0)
    for fitted in [estimate_did(panel, "roa", "firm"), estimate_twfe(panel, "roa", "firm")]:
        ci = fitted.conf_int()
        assert ci.loc["treated", "lower"] < 0.005
        assert abs(fitted.params["treated"]) < 0.005


def test_twfe_handles_unbalanced_panel():
    panel = _two_country_panel(drop_share=0.2, noise_sd=0.01)
    res = estimate_twfe(panel, "roa", cluster="firm")
    assert res.nobs == panel.shape[0]
    assert res.params["treated"] == pytest.approx(0.03, abs=0.015)


def test_make_clusters():
    frame = prepare_panel(_two_country_panel(), "roa")
    assert make_clusters(frame, "none") is None
    country = make_clusters(frame, "country")
    assert list(country.columns) == ["country_code"]
    assert country["country_code"].nunique() == 2
    two_way = make_clusters(frame, "country_year")
    assert list(two_way.columns) == ["country_code", "year"]
    assert two_way["year"].nunique() == 4
    with pytest.raises(ValueError):
        make_clusters(frame, "industry")


def test_no_treatment_variation_raises():
    panel = _two_country_panel()
    panel = panel[panel["year"] < 2003]
    with pytest.raises(RuntimeError, match="no variation"):
        estimate_twfe(panel, "roa")
    with pytest.raises(RuntimeError, match="no variation"):
        estimate_did(panel, "roa")


def test_run_specifications_grid():
    panel = _two_country_panel(noise_sd=0.01, heavy_tails=True)
    winsorized = winsorize_panel(panel, ["roa"])
    tidy, full = run_specifications(panel, winsorized, "roa", ["none", "firm"])
    assert tidy.shape[0] == 2 * 2 * 2
    assert set(tidy["model"]) == {"did", "twfe"}
    assert set(tidy["cluster"]) == {"none", "firm"}
    assert tidy["winsorized"].tolist().count(True) == 4
    assert (tidy["ci_lower"] < tidy["coef"]).all() and (tidy["coef"] < tidy["ci_upper"]).all()
    # clustering changes standard errors, not point estimates
    pivot = tidy.pivot_table(index=["model", "winsorized"], columns="cluster", values="coef")
    pd.testing.assert_series_equal(pivot["none"], pivot["firm"], check_names=False)
    assert {"const", "treated_country", "post", "treated"} <= set(full["variable"])


def _six_country_panel():
    raw = make_sample_panel(
        ["AUT", "BEL", "DEU", "ESP", "FRA", "ITA"],
        ["DEU", "FRA", "ITA"],
        range(2008, 2018),
        2013,
        firms_per_country=40,
        effect=0.03,
        drop_share=0.1,
        seed=266,
    )
    return assign_treatment(raw, 2013)


def test_every_cluster_scheme_gives_finite_intervals():
    panel = _six_country_panel()
    winsorized = winsorize_panel(panel, ["roa"])
    tidy, _ = run_specifications(panel, winsorized, "roa", list(CLUSTER_SCHEMES))
    assert tidy.shape[0] == 2 * 2 * len(CLUSTER_SCHEMES)
    assert np.isfinite(tidy[["std_err", "ci_lower", "ci_upper"]].to_numpy()).all()
    assert (tidy["std_err"] > 0).all()
    assert (tidy["ci_lower"] < tidy["coef"]).all() and (tidy["coef"] < tidy["ci_upper"]).all()


def test_psd_covariance_clips_negative_eigenvalues():
    names = ["a", "b"]
    # eigenvalues 3 and -1
    cov = pd.DataFrame([[1.0, 2.0], [2.0, 1.0]], index=names, columns=names)
    fixed, clipped = psd_covariance(cov)
    assert clipped
    np.testing.assert_allclose(fixed.to_numpy(), [[1.5, 1.5], [1.5, 1.5]])
    assert list(fixed.index) == names

    psd = pd.DataFrame([[2.0, 0.5], [0.5, 1.0]], index=names, columns=names)
    unchanged, clipped = psd_covariance(psd)
    assert not clipped
    np.testing.assert_allclose(unchanged.to_numpy(), psd.to_numpy())


def test_coefficient_intervals_use_repaired_covariance(caplog):
    names = ["treated", "post"]
    res = SimpleNamespace(
        params=pd.Series([0.03, 0.01], index=names),
        cov=pd.DataFrame([[1e-4, 2e-4], [2e-4, 1e-4]], index=names, columns=names),
    )
    with caplog.at_level(logging.WARNING, logger="did_teffect"):
        frame = coefficient_intervals(res, ci_level=0.95, label="did | raw | country_year")
    assert "did | raw | country_year" in caplog.text
    se = np.sqrt(1.5e-4)
    np.testing.assert_allclose(frame["std_err"], [se, se])
    np.testing.assert_allclose(frame["lower"], frame["coef"] - 1.959964 * se, rtol=1e-6)
    np.testing.assert_allclose(frame["upper"], frame["coef"] + 1.959964 * se, rtol=1e-6)

    narrow = coefficient_intervals(res, ci_level=0.90)
    assert (narrow["upper"] - narrow["lower"] < frame["upper"] - frame["lower"]).all()
