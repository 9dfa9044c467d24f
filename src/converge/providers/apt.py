"""Package provider for Debian family systems using apt and dpkg."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Any

from converge._utils import executable_in_path
from converge.errors import CommandExecutionError
from converge.model.properties import ENSURE_ABSENT, ENSURE_PRESENT, ResourceProperties
from converge.model.state import PackageMetadata, ResourceState
from converge.runtime.runner import CommandResult, CommandRunner, ExecOptions

PROVIDER_NAME = "apt"
REQUIRED_COMMANDS = ("apt-get", "apt-cache", "apt-mark", "dpkg-query")
DPKG_QUERY_FORMAT = "${Package} ${Version} ${Architecture} ${db:Status-Status}"

_APT_ENVIRONMENT = {
    "DEBIAN_FRONTEND": "noninteractive",
    "APT_LISTBUGS_FRONTEND": "none",
    "APT_LISTCHANGES_FRONTEND": "none",
}

# apt and dpkg hold a system wide lock, never run two of them at once.
_PACKAGE_LOCK = asyncio.Lock()


def parse_dpkg_query(output: str) -> tuple[list[str], str]:
    """Split dpkg-query output into its fields and the package status."""
    parts = output.strip().split(" ")
    if len(parts) == 4:
        return parts, parts[3]
    return parts, "unknown"


def parse_candidate_version(output: str, package: str) -> str:
    """Return the ``Candidate:`` version from ``apt-cache policy`` output."""
    for line in output.splitlines():
        line = line.strip()
        if line.startswith("Candidate:"):
            return line.removeprefix("Candidate:").strip()
    raise CommandExecutionError(
        f"could not find Candidate: line in apt-cache policy output for {package}"
    )


class AptProvider:
    def __init__(
        self, logger: logging.Logger | logging.LoggerAdapter, runner: CommandRunner
    ) -> None:
        self._logger = logger
        self._runner = runner

    @property
    def name(self) -> str:
        return PROVIDER_NAME

    async def _execute(self, command: str, *args: str) -> CommandResult:
        async with _PACKAGE_LOCK:
            return await self._runner.execute_with_options(
                ExecOptions(command=command, args=args, environment=_APT_ENVIRONMENT)
            )

    async def status(self, name: str) -> ResourceState[PackageMetadata]:
        result = await self._execute("dpkg-query", "-W", f"-f={DPKG_QUERY_FORMAT}", name)
        parts, status = parse_dpkg_query(result.stdout.decode("utf-8", errors="replace"))

        if not result.succeeded or status != "installed":
            return ResourceState(
                resource_type="package",
                name=name,
                ensure=ENSURE_ABSENT,
                metadata=PackageMetadata(
                    name=name,
                    version=ENSURE_ABSENT,
                    provider=PROVIDER_NAME,
                    extended={"status": status},
                ),
            )

        package, version, arch, _ = parts
        return ResourceState(
            resource_type="package",
            name=name,
            ensure=version,
            metadata=PackageMetadata(
                name=package,
                version=version,
                arch=arch,
                provider=PROVIDER_NAME,
                extended={"status": status},
            ),
        )

    async def install(self, name: str, version: str) -> None:
        args = ["install", "-y", "-q", "-o", "DPkg::Options::=--force-confold"]
        if version == "latest":
            candidate = await self._latest_available(name)
            self._logger.debug("Found latest candidate", extra={"candidate": candidate})
            args.append(f"{name}={candidate}")
        elif version == ENSURE_PRESENT:
            args.append(name)
        else:
            args.extend(["--allow-downgrades", f"{name}={version}"])

        result = await self._execute("apt-get", *args)
        if not result.succeeded:
            raise CommandExecutionError(
                f"failed to install package {name!r}, apt-get exited {result.exit_code}"
            )

    async def upgrade(self, name: str, version: str) -> None:
        await self.install(name, version)

    async def downgrade(self, name: str, version: str) -> None:
        await self.install(name, version)

    async def uninstall(self, name: str) -> None:
        result = await self._execute("apt-get", "-q", "-y", "remove", name)
        if not result.succeeded:
            raise CommandExecutionError(
                f"failed to uninstall {name}: {result.stderr.decode('utf-8', errors='replace')}"
            )

    async def _latest_available(self, name: str) -> str:
        result = await self._execute("apt-cache", "policy", name)
        return parse_candidate_version(result.stdout.decode("utf-8", errors="replace"), name)


class AptFactory:
    type_name = "package"
    name = PROVIDER_NAME

    def is_manageable(
        self, facts: Mapping[str, Any], properties: ResourceProperties
    ) -> tuple[bool, int]:
        manageable = all(executable_in_path(command) for command in REQUIRED_COMMANDS)
        return manageable, 1

    def new(
        self, logger: logging.Logger | logging.LoggerAdapter, runner: CommandRunner
    ) -> AptProvider:
        return AptProvider(logger, runner)
