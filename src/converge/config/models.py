"""Typed engine settings with Pydantic validation."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_COMMAND_PATH = "/usr/bin:/bin:/usr/sbin:/sbin:/usr/local/bin:/usr/local/sbin"


class LoggingSettings(BaseModel):
    """Logging configuration."""

    model_config = ConfigDict(frozen=True)

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Log level"
    )
    format: Literal["json", "text"] = Field(default="text", description="Log output format")
    sampling: float | None = Field(
        default=None,
        ge=0.0,
        le=1.0,
        description="Optional sampling ratio for low-severity logs",
    )


class RunnerSettings(BaseModel):
    """External command execution defaults."""

    model_config = ConfigDict(frozen=True)

    path: str = Field(
        default=DEFAULT_COMMAND_PATH,
        min_length=1,
        description="PATH used for every command unless a resource overrides it",
    )
    cwd: str = Field(default="/", min_length=1, description="Default working directory")

    @field_validator("path")
    @classmethod
    def _absolute_path_entries(cls, value: str) -> str:
        for entry in value.split(":"):
            if not entry.startswith("/"):
                raise ValueError(f"PATH entry '{entry}' must be absolute")
        return value


class MetricsSettings(BaseModel):
    """Prometheus metrics exporter settings."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = Field(default=False, description="Enable Prometheus metrics")
    prefix: str = Field(default="converge", min_length=1, description="Metric name prefix")
    port: int | None = Field(
        default=None,
        ge=1,
        le=65535,
        description="Start a background exporter on this port when set",
    )
    host: str = Field(default="127.0.0.1", description="Exporter bind address")


class ConvergeSettings(BaseModel):
    """Root settings for a convergence run."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(default="converge", min_length=1, description="Name used in log records")
    noop: bool = Field(default=False, description="Report intended changes without applying them")
    working_dir: Path | None = Field(
        default=None,
        description="Directory that manifests and relative sources are resolved against",
    )
    data: dict[str, Any] = Field(
        default_factory=dict,
        description="External data merged over manifest data",
    )
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    runner: RunnerSettings = Field(default_factory=RunnerSettings)
    metrics: MetricsSettings = Field(default_factory=MetricsSettings)
