"""Manifest documents: ordered resource declarations plus data."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from converge.errors import ManifestError


@dataclass(frozen=True, slots=True)
class ResourceDeclaration:
    type_name: str
    properties: Mapping[str, Any]


@dataclass(frozen=True, slots=True)
class Manifest:
    resources: tuple[ResourceDeclaration, ...] = ()
    data: dict[str, Any] = field(default_factory=dict)


def parse_manifest(document: Any) -> Manifest:
    """Build a manifest from a decoded document.

    ``resources`` is a list whose items each map one resource type to a
    property mapping or a list of property mappings::

        resources:
          - package:
              name: nginx
              ensure: present
          - service:
              - name: nginx
                subscribe: package#nginx
    """
    if document is None:
        return Manifest()
    if not isinstance(document, Mapping):
        raise ManifestError("manifest must be a mapping")

    data = document.get("data") or {}
    if not isinstance(data, Mapping):
        raise ManifestError("manifest data must be a mapping")

    raw_resources = document.get("resources") or []
    if not isinstance(raw_resources, list):
        raise ManifestError("manifest resources must be a list")

    declarations: list[ResourceDeclaration] = []
    for index, item in enumerate(raw_resources):
        if not isinstance(item, Mapping) or len(item) != 1:
            raise ManifestError(
                f"resource {index} must map exactly one resource type to its properties"
            )
        ((type_name, body),) = item.items()
        entries = body if isinstance(body, list) else [body]
        for entry in entries:
            if not isinstance(entry, Mapping):
                raise ManifestError(f"resource {index} ({type_name}) properties must be a mapping")
            declarations.append(ResourceDeclaration(type_name=str(type_name), properties=entry))

    return Manifest(resources=tuple(declarations), data=dict(data))


def load_manifest(path: str | Path) -> Manifest:
    """Read a YAML (or JSON) manifest file.

    Raises:
        ManifestError: When the file is missing, unparsable or malformed.
    """
    path = Path(path)
    try:
        with path.open(encoding="utf-8") as f:
            document = yaml.safe_load(f)
    except FileNotFoundError as exc:
        raise ManifestError(f"manifest not found: {path}") from exc
    except yaml.YAMLError as exc:
        raise ManifestError(f"could not parse manifest {path}: {exc}") from exc
    return parse_manifest(document)
