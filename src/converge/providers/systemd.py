"""Service provider backed by ``systemctl``."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from converge._utils import executable_in_path
from converge.errors import CommandExecutionError
from converge.model.properties import ResourceProperties
from converge.model.state import ResourceState, ServiceMetadata
from converge.runtime.runner import CommandResult, CommandRunner

PROVIDER_NAME = "systemd"

_ENABLED_STATES = frozenset(
    {"enabled", "enabled-runtime", "alias", "static", "indirect", "generated", "transient"}
)
_DISABLED_STATES = frozenset({"linked", "linked-runtime", "masked", "masked-runtime", "disabled"})
_ACTIVE_STATES = frozenset({"active"})
_INACTIVE_STATES = frozenset({"inactive", "failed", "activating"})


class SystemdProvider:
    def __init__(
        self, logger: logging.Logger | logging.LoggerAdapter, runner: CommandRunner
    ) -> None:
        self._logger = logger
        self._runner = runner

    @property
    def name(self) -> str:
        return PROVIDER_NAME

    async def status(self, name: str) -> ResourceState[ServiceMetadata]:
        running = await self._is_active(name)
        enabled = await self._is_enabled(name)
        return ResourceState(
            resource_type="service",
            name=name,
            ensure="running" if running else "stopped",
            metadata=ServiceMetadata(
                name=name, provider=PROVIDER_NAME, enabled=enabled, running=running
            ),
        )

    async def start(self, name: str) -> None:
        await self._systemctl("start", name)

    async def stop(self, name: str) -> None:
        await self._systemctl("stop", name)

    async def restart(self, name: str) -> None:
        await self._systemctl("restart", name)

    async def enable(self, name: str) -> None:
        await self._systemctl("enable", name)

    async def disable(self, name: str) -> None:
        await self._systemctl("disable", name)

    async def _systemctl(self, action: str, name: str) -> CommandResult:
        result = await self._runner.execute("systemctl", action, "--system", name)
        if not result.succeeded:
            raise CommandExecutionError(
                f"systemctl {action} {name} exited {result.exit_code}: {result.output_text()}"
            )
        return result

    async def _is_active(self, name: str) -> bool:
        result = await self._runner.execute("systemctl", "is-active", "--system", name)
        output = result.stdout.decode("utf-8", errors="replace").strip()
        if output in _ACTIVE_STATES:
            return True
        if output in _INACTIVE_STATES:
            return False
        raise CommandExecutionError(f"invalid systemctl is-active output: {output!r}")

    async def _is_enabled(self, name: str) -> bool:
        result = await self._runner.execute("systemctl", "is-enabled", "--system", name)
        output = result.stdout.decode("utf-8", errors="replace").strip()
        if output in _ENABLED_STATES:
            return True
        if output in _DISABLED_STATES:
            return False
        raise CommandExecutionError(f"invalid systemctl is-enabled output: {output!r}")


class SystemdFactory:
    type_name = "service"
    name = PROVIDER_NAME

    def is_manageable(
        self, facts: Mapping[str, Any], properties: ResourceProperties
    ) -> tuple[bool, int]:
        return executable_in_path("systemctl") is not None, 1

    def new(
        self, logger: logging.Logger | logging.LoggerAdapter, runner: CommandRunner
    ) -> SystemdProvider:
        return SystemdProvider(logger, runner)
