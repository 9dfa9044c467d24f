"""Environment variable placeholder resolution."""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from typing import Any

from converge.config.errors import PlaceholderResolutionError

PLACEHOLDER_PATTERN = re.compile(r"\$\{([^}]+)\}")


def resolve_placeholders(
    data: Mapping[str, Any],
    *,
    strict: bool = True,
    environ: Mapping[str, str] | None = None,
    _path: str = "",
) -> dict[str, Any]:
    """Resolve ${ENV_VAR} placeholders in configuration data.

    Args:
        data: Configuration mapping to process.
        strict: If True, raise error for unresolved placeholders.
        environ: Variables to resolve against. Defaults to ``os.environ``.
        _path: Internal path tracker for error messages.

    Returns:
        New dictionary with placeholders resolved.

    Raises:
        PlaceholderResolutionError: If strict=True and a placeholder cannot be resolved.
    """
    env = os.environ if environ is None else environ
    result: dict[str, Any] = {}

    for key, value in data.items():
        current_path = f"{_path}.{key}" if _path else str(key)
        result[key] = _resolve_node(value, current_path, strict, env)

    return result


def _resolve_node(value: Any, path: str, strict: bool, env: Mapping[str, str]) -> Any:
    if isinstance(value, Mapping):
        return resolve_placeholders(value, strict=strict, environ=env, _path=path)
    if isinstance(value, list):
        return [_resolve_node(item, f"{path}[{i}]", strict, env) for i, item in enumerate(value)]
    return _resolve_value(value, path, strict, env)


def _resolve_value(value: Any, path: str, strict: bool, env: Mapping[str, str]) -> Any:
    """Resolve placeholders in a single value."""
    if not isinstance(value, str):
        return value

    def replace_match(match: re.Match[str]) -> str:
        env_var = match.group(1)
        env_value = env.get(env_var)

        if env_value is None:
            if strict:
                raise PlaceholderResolutionError(f"${{{env_var}}}", path)
            return match.group(0)

        return env_value

    return PLACEHOLDER_PATTERN.sub(replace_match, value)
