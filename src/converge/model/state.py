"""Observed resource state reported by providers."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Generic, TypeVar

from converge.health import HealthCheckResult

STATE_PROTOCOL_PREFIX = "converge.v1.resource"


@dataclass(slots=True)
class PackageMetadata:
    name: str
    version: str = ""
    arch: str = ""
    provider: str = ""
    extended: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ServiceMetadata:
    name: str
    provider: str = ""
    enabled: bool = False
    running: bool = False


@dataclass(slots=True)
class FileMetadata:
    name: str
    provider: str = ""
    checksum: str = ""
    owner: str = ""
    group: str = ""
    mode: str = ""
    size: int = 0
    mtime: datetime | None = None
    extended: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ExecMetadata:
    name: str
    provider: str = ""
    creates_satisfied: bool = False
    exit_code: int | None = None
    runtime_seconds: float | None = None


@dataclass(slots=True)
class ArchiveMetadata:
    name: str
    provider: str = ""
    checksum: str = ""
    archive_exists: bool = False
    creates_exists: bool = False
    owner: str = ""
    group: str = ""
    size: int = 0
    mtime: datetime | None = None


@dataclass(slots=True)
class ScaffoldMetadata:
    name: str
    provider: str = ""
    target_exists: bool = False
    changed: tuple[str, ...] = ()
    purged: tuple[str, ...] = ()
    stable: tuple[str, ...] = ()


M = TypeVar("M")


@dataclass(slots=True)
class ResourceState(Generic[M]):
    """Actual state of a resource plus the outcome flags of the last apply."""

    resource_type: str
    name: str
    ensure: str
    metadata: M
    protocol: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    changed: bool = False
    refreshed: bool = False
    stable: bool = False
    skipped: bool = False
    noop: bool = False
    noop_message: str = ""
    health_check: HealthCheckResult | None = None

    def __post_init__(self) -> None:
        if not self.protocol:
            self.protocol = f"{STATE_PROTOCOL_PREFIX}.{self.resource_type}.state"

    def replace(self, **changes: Any) -> ResourceState[M]:
        return dataclasses.replace(self, **changes)

    def with_metadata(self, **changes: Any) -> ResourceState[M]:
        """Copy with selected metadata fields replaced."""
        return dataclasses.replace(self, metadata=dataclasses.replace(self.metadata, **changes))

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-serializable representation."""
        payload: dict[str, Any] = {
            "protocol": self.protocol,
            "timestamp": self.timestamp.isoformat(),
            "type": self.resource_type,
            "name": self.name,
            "ensure": self.ensure,
            "changed": self.changed,
            "refreshed": self.refreshed,
            "stable": self.stable,
            "skipped": self.skipped,
            "noop": self.noop,
            "metadata": _jsonable(dataclasses.asdict(self.metadata))
            if dataclasses.is_dataclass(self.metadata)
            else self.metadata,
        }
        if self.noop_message:
            payload["noop_message"] = self.noop_message
        if self.health_check is not None:
            payload["health_check"] = self.health_check.to_dict()
        return payload


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, list | tuple):
        return [_jsonable(item) for item in value]
    return value
