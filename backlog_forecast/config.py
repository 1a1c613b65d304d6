from __future__ import annotations

import re
import tomllib
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator

from backlog_forecast.common.logging_config import resolve_level

EXAMPLE_CONFIG_PATH = Path(__file__).resolve().parents[1] / "forecast_config.example.toml"


def _read_toml(path: Path) -> dict[str, Any]:
    return tomllib.loads(path.read_text(encoding="utf-8"))


class AggregationConfig(BaseModel):
    lookback_weeks: int = Field(default=12, gt=0, description="Weeks of history to aggregate.")


class SimulationConfig(BaseModel):
    sample_count: int = Field(default=10_000, gt=0, description="Monte Carlo trials per forecast.")
    week_cap: int = Field(default=104, gt=0, description="A trial that has not finished by then reports the cap.")
    workers: int = Field(default=1, ge=1, description="Threads used to run trial blocks.")


class EstimationConfig(BaseModel):
    min_samples: int = Field(default=3, ge=1)
    high_variability_pct: float = Field(default=50.0, ge=0.0)
    high_variability_min_count: int = Field(default=3, ge=1)
    slow_factor: float = Field(default=1.5, gt=0.0)


class LoggingConfig(BaseModel):
    level: str = Field(default="INFO")
    log_dir: str | None = Field(default=None, description="Also write '<log_dir>/forecast.log' at DEBUG when set.")

    @field_validator("level")
    @classmethod
    def _known_level(cls, v: str) -> str:
        resolve_level(v)
        return v.upper()


class ForecastConfig(BaseModel):
    aggregation: AggregationConfig = Field(default_factory=AggregationConfig)
    simulation: SimulationConfig = Field(default_factory=SimulationConfig)
    estimation: EstimationConfig = Field(default_factory=EstimationConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def load(cls, path: Path) -> "ForecastConfig":
        raw = _read_toml(Path(path).expanduser())
        return cls.model_validate(raw)


def render_example_config(
    lookback_weeks: int | None = None,
    sample_count: int | None = None,
    workers: int | None = None,
) -> str:
    """The example TOML with the given keys filled in, comments preserved.

    The result is validated before it is returned, so a bad override raises
    ``pydantic.ValidationError`` instead of producing an unloadable file.
    """
    text = EXAMPLE_CONFIG_PATH.read_text(encoding="utf-8")
    for key, value in (("lookback_weeks", lookback_weeks), ("sample_count", sample_count), ("workers", workers)):
        if value is not None:
            text = re.sub(rf"^{key} = .*$", f"{key} = {int(value)}", text, count=1, flags=re.MULTILINE)
    ForecastConfig.model_validate(tomllib.loads(text))
    return text
