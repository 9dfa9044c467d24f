"""Configuration loader with hierarchical merge and validation."""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from converge.config.errors import (
    ConfigFileNotFoundError,
    ConfigValidationError,
)
from converge.config.models import ConvergeSettings
from converge.config.placeholders import resolve_placeholders

DEFAULT_CONFIG_DIR = Path("config")
DEFAULT_BASE_FILE = "converge.json"
ENV_VAR_NAME = "CONVERGE_ENV"
DEFAULT_ENV = "development"


def deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Deep merge two mappings. Override values take precedence.

    Args:
        base: Base mapping.
        override: Override mapping (values take precedence).

    Returns:
        New merged dictionary.
    """
    result = dict(base)

    for key, value in override.items():
        if key in result and isinstance(result[key], Mapping) and isinstance(value, Mapping):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def load_json_file(path: Path) -> dict[str, Any]:
    """Load and parse a JSON configuration file.

    Raises:
        ConfigFileNotFoundError: If the file does not exist.
    """
    if not path.exists():
        raise ConfigFileNotFoundError(str(path))

    with path.open(encoding="utf-8") as f:
        return json.load(f)


def validate_settings(config: Mapping[str, Any]) -> ConvergeSettings:
    """Validate a raw mapping into settings, reporting every failing location."""
    try:
        return ConvergeSettings.model_validate(config)
    except ValidationError as e:
        errors = [
            {"loc": " -> ".join(str(loc) for loc in err["loc"]), "msg": err["msg"]}
            for err in e.errors()
        ]
        raise ConfigValidationError(errors) from e


def load_config(
    *,
    config_dir: Path | str | None = None,
    env: str | None = None,
    strict_placeholders: bool = True,
) -> ConvergeSettings:
    """Load engine configuration with hierarchical merging.

    Configuration is loaded in the following order (later sources override earlier):
    1. config/converge.json (base configuration)
    2. config/converge.<environment>.json (environment-specific overrides)
    3. Environment variable placeholder resolution

    Args:
        config_dir: Directory containing configuration files. Defaults to "config".
        env: Environment name. Defaults to CONVERGE_ENV or "development".
        strict_placeholders: If True, raise error for unresolved placeholders.

    Returns:
        Validated and frozen ConvergeSettings instance.

    Raises:
        ConfigFileNotFoundError: If base configuration file is not found.
        ConfigValidationError: If configuration validation fails.
        PlaceholderResolutionError: If strict_placeholders=True and a placeholder
            cannot be resolved.
    """
    config_dir = DEFAULT_CONFIG_DIR if config_dir is None else Path(config_dir)

    if env is None:
        env = os.environ.get(ENV_VAR_NAME, DEFAULT_ENV)

    config = load_json_file(config_dir / DEFAULT_BASE_FILE)

    env_path = config_dir / f"converge.{env}.json"
    if env_path.exists():
        config = deep_merge(config, load_json_file(env_path))

    config = resolve_placeholders(config, strict=strict_placeholders)
    return validate_settings(config)
