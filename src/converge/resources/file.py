"""File and directory resource."""

from __future__ import annotations

import os
from typing import Any, Protocol

from converge._utils import sha256_bytes, sha256_file
from converge.errors import ResourceInvalidError
from converge.model.properties import ENSURE_ABSENT, FileProperties, parse_file_mode
from converge.model.state import FileMetadata, ResourceState
from converge.resources.base import PlannedChange, Resource

ENSURE_DIRECTORY = "directory"

FileState = ResourceState[FileMetadata]


class FileProvider(Protocol):
    @property
    def name(self) -> str:
        ...

    async def status(self, path: str) -> FileState:
        ...

    async def create_directory(self, path: str, owner: str, group: str, mode: str) -> None:
        ...

    async def store(
        self,
        path: str,
        contents: bytes,
        source: str,
        owner: str,
        group: str,
        mode: str,
    ) -> None:
        ...

    async def remove(self, path: str) -> None:
        ...


class FileResource(Resource[FileProperties, FileProvider]):
    """Manages a file's content, ownership and mode, or a directory."""

    type_name = "file"

    async def _status(self, provider: FileProvider) -> FileState:
        return await provider.status(self.name)

    def source_path(self) -> str:
        """Absolute path of ``source``, relative sources resolve against the working dir."""
        source = self.properties.source
        if os.path.isabs(source):
            return source
        working_dir = self._manager.working_dir or os.getcwd()
        return os.path.join(working_dir, source)

    def desired_checksum(self) -> str:
        if self.properties.source:
            try:
                return sha256_file(self.source_path())
            except OSError as exc:
                raise ResourceInvalidError(f"{self}: cannot read source: {exc}") from exc
        return sha256_bytes(self.properties.contents.encode("utf-8"))

    def is_desired_state(self, state: ResourceState[Any], *, from_status: bool) -> bool:
        props = self.properties
        if props.ensure == ENSURE_ABSENT:
            return state.ensure == ENSURE_ABSENT
        if props.ensure != state.ensure:
            return False

        metadata = state.metadata
        if props.ensure != ENSURE_DIRECTORY and self.desired_checksum() != metadata.checksum:
            self._log.debug("Content does not match", extra={"checksum": metadata.checksum})
            return False
        if metadata.owner != props.owner:
            return False
        if metadata.group != props.group:
            return False
        if not metadata.mode:
            return False
        return parse_file_mode(metadata.mode) == props.parsed_mode()

    def _plan(
        self, provider: FileProvider, state: ResourceState[Any], *, refresh: bool
    ) -> list[PlannedChange]:
        props = self.properties
        if props.ensure == ENSURE_DIRECTORY:
            return [
                PlannedChange(
                    "created directory",
                    lambda: provider.create_directory(
                        props.name, props.owner, props.group, props.mode
                    ),
                )
            ]
        if props.ensure == ENSURE_ABSENT:
            if state.ensure == ENSURE_ABSENT:
                return []
            return [PlannedChange("removed the file", lambda: provider.remove(props.name))]

        source = self.source_path() if props.source else ""
        return [
            PlannedChange(
                "created the file" if state.ensure == ENSURE_ABSENT else "updated the file",
                lambda: provider.store(
                    props.name,
                    props.contents.encode("utf-8"),
                    source,
                    props.owner,
                    props.group,
                    props.mode,
                ),
            )
        ]
