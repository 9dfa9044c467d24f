"""Exec provider that hands the command line to ``/bin/sh -c``."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from converge._utils import file_exists
from converge.errors import CommandExecutionError
from converge.model.properties import ExecProperties, ResourceProperties
from converge.model.state import ExecMetadata, ResourceState
from converge.providers._exec import exec_status, run_exec
from converge.runtime.runner import CommandRunner

PROVIDER_NAME = "shell"
SHELL_PATH = "/bin/sh"


class ShellExecProvider:
    """Runs the command through the shell, so pipes and redirects work."""

    def __init__(
        self, logger: logging.Logger | logging.LoggerAdapter, runner: CommandRunner
    ) -> None:
        self._logger = logger
        self._runner = runner

    @property
    def name(self) -> str:
        return PROVIDER_NAME

    async def status(self, properties: ExecProperties) -> ResourceState[ExecMetadata]:
        return exec_status(properties, PROVIDER_NAME)

    async def execute(self, properties: ExecProperties) -> int:
        if not properties.name.strip():
            raise CommandExecutionError("no command to execute")
        return await run_exec(
            self._runner, self._logger, properties, SHELL_PATH, ("-c", properties.name)
        )


class ShellExecFactory:
    type_name = "exec"
    name = PROVIDER_NAME

    def is_manageable(
        self, facts: Mapping[str, Any], properties: ResourceProperties
    ) -> tuple[bool, int]:
        return file_exists(SHELL_PATH), 1

    def new(
        self, logger: logging.Logger | logging.LoggerAdapter, runner: CommandRunner
    ) -> ShellExecProvider:
        return ShellExecProvider(logger, runner)
