"""File provider for POSIX systems."""

from __future__ import annotations

import asyncio
import grp
import logging
import os
import pwd
import shutil
import stat
import tempfile
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from converge._utils import sha256_file
from converge.errors import ProviderError
from converge.model.properties import (
    ENSURE_ABSENT,
    ENSURE_PRESENT,
    ResourceProperties,
    parse_file_mode,
)
from converge.model.state import FileMetadata, ResourceState
from converge.runtime.runner import CommandRunner

PROVIDER_NAME = "posix"


def lookup_owner_group(owner: str, group: str) -> tuple[int, int]:
    """Resolve user and group names to numeric ids."""
    try:
        uid = pwd.getpwnam(owner).pw_uid
    except KeyError as exc:
        raise ProviderError(f"could not lookup user {owner!r}") from exc
    try:
        gid = grp.getgrnam(group).gr_gid
    except KeyError as exc:
        raise ProviderError(f"could not lookup group {group!r}") from exc
    return uid, gid


def describe_owner_group(uid: int, gid: int) -> tuple[str, str]:
    """Names for ``uid`` and ``gid``, falling back to the numeric ids."""
    try:
        owner = pwd.getpwuid(uid).pw_name
    except KeyError:
        owner = str(uid)
    try:
        group = grp.getgrgid(gid).gr_name
    except KeyError:
        group = str(gid)
    return owner, group


class PosixFileProvider:
    """Writes files atomically through a temporary file in the target directory."""

    def __init__(self, logger: logging.Logger | logging.LoggerAdapter) -> None:
        self._logger = logger

    @property
    def name(self) -> str:
        return PROVIDER_NAME

    async def status(self, path: str) -> ResourceState[FileMetadata]:
        return await asyncio.to_thread(self._status, path)

    async def create_directory(self, path: str, owner: str, group: str, mode: str) -> None:
        await asyncio.to_thread(self._create_directory, path, owner, group, mode)

    async def store(
        self,
        path: str,
        contents: bytes,
        source: str,
        owner: str,
        group: str,
        mode: str,
    ) -> None:
        await asyncio.to_thread(self._store, path, contents, source, owner, group, mode)

    async def remove(self, path: str) -> None:
        await asyncio.to_thread(self._remove, path)

    def _status(self, path: str) -> ResourceState[FileMetadata]:
        metadata = FileMetadata(name=path, provider=PROVIDER_NAME)
        state = ResourceState(
            resource_type="file", name=path, ensure=ENSURE_PRESENT, metadata=metadata
        )
        try:
            info = os.stat(path)
        except FileNotFoundError:
            state.ensure = ENSURE_ABSENT
            return state
        except PermissionError as exc:
            self._logger.warning(
                "Permission denied reading file", extra={"path": path, "error": str(exc)}
            )
            state.ensure = ENSURE_ABSENT
            return state

        metadata.size = info.st_size
        metadata.mtime = datetime.fromtimestamp(info.st_mtime, tz=UTC)
        metadata.owner, metadata.group = describe_owner_group(info.st_uid, info.st_gid)
        metadata.mode = "%04o" % stat.S_IMODE(info.st_mode & 0o777)

        if stat.S_ISDIR(info.st_mode):
            state.ensure = "directory"
            return state

        try:
            metadata.checksum = sha256_file(path)
        except OSError as exc:
            self._logger.warning(
                "Failed to calculate checksum", extra={"path": path, "error": str(exc)}
            )
        return state

    def _create_directory(self, path: str, owner: str, group: str, mode: str) -> None:
        parsed_mode = parse_file_mode(mode)
        uid, gid = lookup_owner_group(owner, group)
        os.makedirs(path, mode=parsed_mode, exist_ok=True)
        os.chmod(path, parsed_mode)
        os.chown(path, uid, gid)

    def _store(
        self,
        path: str,
        contents: bytes,
        source: str,
        owner: str,
        group: str,
        mode: str,
    ) -> None:
        directory = os.path.dirname(path)
        if not os.path.isdir(directory):
            raise ProviderError(f"{directory!r} is not a directory")

        parsed_mode = parse_file_mode(mode)
        uid, gid = lookup_owner_group(owner, group)

        fd, temp_path = tempfile.mkstemp(prefix=f"{os.path.basename(path)}.", dir=directory)
        try:
            with os.fdopen(fd, "wb") as handle:
                if source:
                    with open(source, "rb") as source_handle:
                        shutil.copyfileobj(source_handle, handle)
                else:
                    handle.write(contents)
                os.fchmod(handle.fileno(), parsed_mode)
                os.fchown(handle.fileno(), uid, gid)
            os.replace(temp_path, path)
        except BaseException:
            if os.path.exists(temp_path):
                os.remove(temp_path)
            raise

    def _remove(self, path: str) -> None:
        if os.path.isdir(path) and not os.path.islink(path):
            os.rmdir(path)
        elif os.path.lexists(path):
            os.remove(path)


class PosixFileFactory:
    type_name = "file"
    name = PROVIDER_NAME

    def is_manageable(
        self, facts: Mapping[str, Any], properties: ResourceProperties
    ) -> tuple[bool, int]:
        return os.name == "posix", 1

    def new(
        self, logger: logging.Logger | logging.LoggerAdapter, runner: CommandRunner
    ) -> PosixFileProvider:
        return PosixFileProvider(logger)
