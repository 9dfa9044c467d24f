"""Exec provider that runs the command directly, without a shell."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from converge.errors import CommandExecutionError
from converge.model.properties import ExecProperties, ResourceProperties
from converge.model.state import ExecMetadata, ResourceState
from converge.providers._exec import exec_status, run_exec
from converge.runtime.runner import CommandRunner

PROVIDER_NAME = "posix"


class PosixExecProvider:
    """Splits the command with shell quoting rules and executes the first word."""

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
        words = properties.command_words()
        if not words:
            raise CommandExecutionError("no command specified")
        return await run_exec(self._runner, self._logger, properties, words[0], tuple(words[1:]))


class PosixExecFactory:
    type_name = "exec"
    name = PROVIDER_NAME

    def is_manageable(
        self, facts: Mapping[str, Any], properties: ResourceProperties
    ) -> tuple[bool, int]:
        return True, 2

    def new(
        self, logger: logging.Logger | logging.LoggerAdapter, runner: CommandRunner
    ) -> PosixExecProvider:
        return PosixExecProvider(logger, runner)
