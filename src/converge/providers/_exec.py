"""Helpers shared by the exec providers."""

from __future__ import annotations

import logging

from converge._utils import file_exists
from converge.model.properties import ENSURE_PRESENT, ExecProperties
from converge.model.state import ExecMetadata, ResourceState
from converge.runtime.runner import CommandResult, CommandRunner, ExecOptions


def exec_status(properties: ExecProperties, provider: str) -> ResourceState[ExecMetadata]:
    return ResourceState(
        resource_type="exec",
        name=properties.name,
        ensure=ENSURE_PRESENT,
        metadata=ExecMetadata(
            name=properties.name,
            provider=provider,
            creates_satisfied=bool(properties.creates) and file_exists(properties.creates),
        ),
    )


async def run_exec(
    runner: CommandRunner,
    logger: logging.Logger | logging.LoggerAdapter,
    properties: ExecProperties,
    command: str,
    args: tuple[str, ...],
) -> int:
    result: CommandResult = await runner.execute_with_options(
        ExecOptions(
            command=command,
            args=args,
            cwd=properties.cwd or None,
            environment=properties.environment_pairs(),
            path=properties.path or None,
            timeout=properties.timeout,
        )
    )
    logger.info(
        "Command finished",
        extra={"command": properties.name, "exit_code": result.exit_code},
    )

    if properties.logoutput:
        for line in result.stdout.decode("utf-8", errors="replace").splitlines():
            logger.info(line)

    return result.exit_code
