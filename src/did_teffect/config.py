"""Configuration loader for the DiD treatment-effect walkthrough."""
from __future__ import annotations

from pathlib import Path
from typing import List

from pydantic import BaseModel, Field, model_validator

try:
    import tomllib  # py311+
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib


CLUSTER_SCHEMES = ("none", "firm", "country", "year", "firm_year", "country_year")


class YearsConfig(BaseModel):
    start: int
    end: int


class TreatmentConfig(BaseModel):
    start_year: int
    reference_period: int = -1


class InputsConfig(BaseModel):
    panel: str
    simulations: str


class PathsConfig(BaseModel):
    data_raw: str
    data_final: str
    output: str


class WinsorizeConfig(BaseModel):
    lower: float = 0.01
    upper: float = 0.99

    @model_validator(mode="after")
    def _check_levels(self) -> "WinsorizeConfig":
        if not 0.0 <= self.lower < self.upper <= 1.0:
            raise ValueError(
                f"Winsorization levels must satisfy 0 <= lower < upper <= 1 "
                f"(got lower={self.lower}, upper={self.upper})."
            )
        return self


class EstimationConfig(BaseModel):
    outcome: str = "roa"
    clusters: List[str] = Field(default_factory=lambda: ["none", "firm"])
    event_study_cluster: str = "firm"
    ci_level: float = 0.95

    @model_validator(mode="after")
    def _check_clusters(self) -> "EstimationConfig":
        unknown = [c for c in [*self.clusters, self.event_study_cluster] if c not in CLUSTER_SCHEMES]
        if unknown:
            raise ValueError(f"Unknown clustering scheme(s) {unknown}; choose from {list(CLUSTER_SCHEMES)}.")
        return self


class SampleConfig(BaseModel):
    seed: int = 266
    countries: List[str] = Field(default_factory=lambda: ["AUT", "DEU"])
    treated_countries: List[str] = Field(default_factory=lambda: ["DEU"])
    firms_per_country: int = 40
    effect: float = 0.03
    drop_share: float = 0.1
    simulation_runs: int = 200
    simulation_effects: List[float] = Field(default_factory=lambda: [0.0, 0.03])


class AppConfig(BaseModel):
    years: YearsConfig
    treatment: TreatmentConfig
    inputs: InputsConfig
    paths: PathsConfig
    winsorize: WinsorizeConfig = Field(default_factory=WinsorizeConfig)
    estimation: EstimationConfig = Field(default_factory=EstimationConfig)
    sample: SampleConfig = Field(default_factory=SampleConfig)

    model_config = {
        "extra": "allow",
    }


def load_config(path: str | Path) -> AppConfig:
    """Load TOML config into AppConfig."""
    path = Path(path)
    with path.open("rb") as handle:
        payload = tomllib.load(handle)
    return AppConfig.model_validate(payload)
