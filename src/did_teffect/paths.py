"""Path management for pipeline inputs and outputs."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from did_teffect.config import AppConfig


@dataclass(frozen=True)
class Paths:
    root: Path
    data_raw: Path
    data_final: Path
    output: Path
    panel_file: Path
    simulations_file: Path

    @classmethod
    def from_config(cls, config: AppConfig, root: Path | None = None) -> "Paths":
        root = root or Path.cwd()
        data_raw = root / config.paths.data_raw
        return cls(
            root=root,
            data_raw=data_raw,
            data_final=root / config.paths.data_final,
            output=root / config.paths.output,
            panel_file=data_raw / config.inputs.panel,
            simulations_file=data_raw / config.inputs.simulations,
        )

    def ensure(self) -> None:
        for path in [self.data_raw, self.data_final, self.tables_dir, self.figures_dir]:
            path.mkdir(parents=True, exist_ok=True)

    @property
    def tables_dir(self) -> Path:
        return self.output / "tables"

    @property
    def figures_dir(self) -> Path:
        return self.output / "figures"
