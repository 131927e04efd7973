"""
Configuration for metrics_collector.

Settings are pydantic-validated and loaded from:
1. an optional YAML file (defaults and the metric catalog)
2. environment variables prefixed with METRICS_COLLECTOR_ (overrides)
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from metrics_collector.errors import ConfigurationError
from metrics_collector.sources import MonitoringServiceKind


def validate_metric_id(value: str) -> str:
    """A metric id becomes one object key segment, so it may not hold separators."""
    if not value or "/" in value or value in (".", ".."):
        raise ConfigurationError(f"metric_id must be a non-empty path segment, got {value!r}")
    return value


class MetricStatus(str, Enum):
    VISIBLE = "visible"
    HIDDEN = "hidden"


class MetricDefinition(BaseModel):
    metric_id: str
    type: MonitoringServiceKind = MonitoringServiceKind.CLOUDWATCH
    title: str = ""
    unit: str = ""
    description: str = ""
    status: MetricStatus = MetricStatus.VISIBLE
    props: dict[str, Any] = Field(default_factory=dict)
    enabled: bool = True

    @field_validator("metric_id")
    @classmethod
    def check_metric_id(cls, value: str) -> str:
        return validate_metric_id(value)


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: Literal["console", "json"] = "console"


class CollectorSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="METRICS_COLLECTOR_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    data_bucket: str = "metrics-data"
    region: str | None = None
    endpoint_url: str | None = None
    store: Literal["s3", "filesystem"] = "s3"
    workspace: Path = Path("./data")
    max_lookback_days: int = Field(default=1, ge=1)
    max_workers: int = Field(default=4, ge=1)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    metrics: list[MetricDefinition] = Field(default_factory=list)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Environment wins over values read from YAML.
        return env_settings, init_settings, dotenv_settings, file_secret_settings

    def get_metric(self, metric_id: str) -> MetricDefinition:
        for metric in self.metrics:
            if metric.metric_id == metric_id:
                return metric
        raise ConfigurationError(f"Unknown metric {metric_id!r}")


def load_settings(config_path: str | Path | None = None) -> CollectorSettings:
    """Load settings from YAML, then apply environment variable overrides."""
    raw: dict[str, Any] = {}
    if config_path:
        path = Path(config_path)
        if not path.exists():
            raise ConfigurationError(f"Config file not found: {path}")
        with path.open("r", encoding="utf-8") as handle:
            raw = yaml.safe_load(handle) or {}
        if not isinstance(raw, dict):
            raise ConfigurationError(f"Config file {path} must contain a mapping")
    try:
        return CollectorSettings(**raw)
    except ValidationError as exc:
        raise ConfigurationError(str(exc)) from exc
