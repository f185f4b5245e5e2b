import pytest
from pydantic import ValidationError

from did_teffect.config import AppConfig, load_config


def test_load_config():
    cfg = load_config("config/default.toml")
    assert cfg.years.start == 2008
    assert cfg.treatment.start_year == 2013
    assert cfg.treatment.reference_period == -1
    assert cfg.inputs.simulations == "did_teffect_sims.rds"
    assert cfg.winsorize.lower == 0.01 and cfg.winsorize.upper == 0.99
    assert "country" in cfg.estimation.clusters
    assert set(cfg.sample.treated_countries) <= set(cfg.sample.countries)


def test_config_rejects_unknown_cluster():
    payload = load_config("config/default.toml").model_dump()
    payload["estimation"]["clusters"] = ["firm", "industry"]
    with pytest.raises(ValidationError):
        AppConfig.model_validate(payload)


def test_config_rejects_inverted_winsorize_levels():
    payload = load_config("config/default.toml").model_dump()
    payload["winsorize"] = {"lower": 0.99, "upper": 0.01}
    with pytest.raises(ValidationError):
        AppConfig.model_validate(payload)
