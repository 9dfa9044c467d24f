"""Template environment and the default lookup-only resolver."""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from converge.errors import TemplateResolutionError

TEMPLATE_PATTERN = re.compile(r"\{\{\s*(.*?)\s*\}\}")
_LOOKUP_PATH = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z0-9_-]+)*$")


@dataclass(frozen=True, slots=True)
class TemplateEnv:
    """Values exposed to property templates."""

    facts: Mapping[str, Any] = field(default_factory=dict)
    data: Mapping[str, Any] = field(default_factory=dict)
    environ: Mapping[str, str] = field(default_factory=dict)
    working_dir: str = ""

    def roots(self) -> dict[str, Any]:
        return {
            "facts": self.facts,
            "data": self.data,
            "environ": self.environ,
            "working_dir": self.working_dir,
        }


TemplateResolver = Callable[[str, TemplateEnv], str]


def resolve_template_string(value: str, env: TemplateEnv) -> str:
    """Replace ``{{ facts.a.b }}`` style lookups in ``value``.

    Only dotted lookups rooted at ``facts``, ``data``, ``environ`` or
    ``working_dir`` are supported.

    Raises:
        TemplateResolutionError: When an expression is not a lookup or the key is missing.
    """
    if "{{" not in value:
        return value

    def replace_match(match: re.Match[str]) -> str:
        return _stringify(lookup(match.group(1), env))

    return TEMPLATE_PATTERN.sub(replace_match, value)


def lookup(expression: str, env: TemplateEnv) -> Any:
    """Resolve a dotted ``root.key.key`` expression against ``env``."""
    if not _LOOKUP_PATH.match(expression):
        raise TemplateResolutionError(f"unsupported template expression {expression!r}")

    root, *keys = expression.split(".")
    roots = env.roots()
    if root not in roots:
        raise TemplateResolutionError(f"unknown template root {root!r} in {expression!r}")

    current: Any = roots[root]
    for key in keys:
        if isinstance(current, Mapping) and key in current:
            current = current[key]
        elif isinstance(current, list | tuple) and key.isdigit() and int(key) < len(current):
            current = current[int(key)]
        else:
            raise TemplateResolutionError(f"cannot resolve {expression!r}: no key {key!r}")
    return current


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    return str(value)
