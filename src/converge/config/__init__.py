"""Configuration loading and validation module."""

from converge.config.errors import (
    ConfigError,
    ConfigFileNotFoundError,
    ConfigValidationError,
    PlaceholderResolutionError,
)
from converge.config.loader import deep_merge, load_config, validate_settings
from converge.config.models import (
    DEFAULT_COMMAND_PATH,
    ConvergeSettings,
    LoggingSettings,
    MetricsSettings,
    RunnerSettings,
)
from converge.config.placeholders import resolve_placeholders

__all__ = [
    "DEFAULT_COMMAND_PATH",
    "ConfigError",
    "ConfigFileNotFoundError",
    "ConfigValidationError",
    "ConvergeSettings",
    "LoggingSettings",
    "MetricsSettings",
    "PlaceholderResolutionError",
    "RunnerSettings",
    "deep_merge",
    "load_config",
    "resolve_placeholders",
    "validate_settings",
]
