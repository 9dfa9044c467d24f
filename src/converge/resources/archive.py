"""Archive resource."""

from __future__ import annotations

from typing import Any, Protocol

from converge.model.properties import ENSURE_ABSENT, ArchiveProperties
from converge.model.state import ArchiveMetadata, ResourceState
from converge.resources.base import PlannedChange, Resource

ArchiveState = ResourceState[ArchiveMetadata]


class ArchiveProvider(Protocol):
    @property
    def name(self) -> str:
        ...

    async def status(self, properties: ArchiveProperties) -> ArchiveState:
        ...

    async def download(self, properties: ArchiveProperties) -> None:
        ...

    async def extract(self, properties: ArchiveProperties) -> None:
        ...

    async def remove(self, path: str) -> None:
        ...


class ArchiveResource(Resource[ArchiveProperties, ArchiveProvider]):
    """Downloads an archive and optionally extracts it and removes the download.

    The ``creates`` marker records a finished extraction. When ``cleanup`` is
    set the downloaded archive is removed once extracted.
    """

    type_name = "archive"

    async def _status(self, provider: ArchiveProvider) -> ArchiveState:
        return await provider.status(self.properties)

    def is_desired_state(self, state: ResourceState[Any], *, from_status: bool) -> bool:
        props = self.properties
        if props.ensure == ENSURE_ABSENT:
            return state.ensure == ENSURE_ABSENT

        meta = state.metadata
        if props.creates and not meta.creates_exists:
            return False
        if props.cleanup and not props.creates and meta.archive_exists:
            return False
        if not props.cleanup and not meta.archive_exists:
            return False

        if meta.archive_exists:
            if meta.owner != props.owner or meta.group != props.group:
                return False
            if props.checksum and meta.checksum != props.checksum:
                return False

        return True

    def _plan(
        self, provider: ArchiveProvider, state: ResourceState[Any], *, refresh: bool
    ) -> list[PlannedChange]:
        props = self.properties
        if props.ensure == ENSURE_ABSENT:
            return [PlannedChange("removed", lambda: provider.remove(props.name))]

        meta = state.metadata
        changes: list[PlannedChange] = []
        checksum_matches = bool(meta.checksum) and meta.checksum == props.checksum
        download = not (checksum_matches and meta.archive_exists)
        if download:
            changes.append(PlannedChange("downloaded", lambda: provider.download(props)))

        if props.extract_parent and (download or not meta.creates_exists):
            changes.append(PlannedChange("extracted", lambda: provider.extract(props)))

        if props.cleanup:
            changes.append(PlannedChange("cleaned up", lambda: provider.remove(props.name)))

        return changes
