"""Asynchronous external command execution."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from time import perf_counter
from typing import Protocol

from converge.config.models import DEFAULT_COMMAND_PATH
from converge.errors import CommandExecutionError, CommandTimeoutError

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ExecOptions:
    """A fully specified command invocation."""

    command: str
    args: tuple[str, ...] = ()
    cwd: str | None = None
    environment: Mapping[str, str] = field(default_factory=dict)
    path: str | None = None
    timeout: float | None = None


@dataclass(frozen=True, slots=True)
class CommandResult:
    stdout: bytes
    stderr: bytes
    exit_code: int

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0

    def output_text(self) -> str:
        """Decoded stdout, falling back to stderr when stdout is empty."""
        text = self.stdout.decode("utf-8", errors="replace").strip()
        if text:
            return text
        return self.stderr.decode("utf-8", errors="replace").strip()


class CommandRunner(Protocol):
    """Runs external commands. A non-zero exit code is a result, not an error."""

    async def execute(self, command: str, *args: str) -> CommandResult:
        ...

    async def execute_with_options(self, options: ExecOptions) -> CommandResult:
        ...


class SubprocessCommandRunner:
    """CommandRunner backed by ``asyncio.create_subprocess_exec``.

    Every command gets a fixed ``PATH``, ``LANG=C`` and ``LC_ALL=C`` and runs
    from ``/`` unless the options say otherwise. Timeouts and task
    cancellation both kill the child process.
    """

    def __init__(
        self,
        *,
        path: str = DEFAULT_COMMAND_PATH,
        cwd: str = "/",
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> None:
        self._path = path
        self._cwd = cwd
        self._logger = logger or _LOGGER

    async def execute(self, command: str, *args: str) -> CommandResult:
        return await self.execute_with_options(ExecOptions(command=command, args=tuple(args)))

    async def execute_with_options(self, options: ExecOptions) -> CommandResult:
        env = {
            "PATH": options.path or self._path,
            "LANG": "C",
            "LC_ALL": "C",
        }
        env.update(options.environment)
        cwd = options.cwd or self._cwd

        started = perf_counter()
        try:
            process = await asyncio.create_subprocess_exec(
                options.command,
                *options.args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                env=env,
            )
        except OSError as exc:
            raise CommandExecutionError(f"could not execute {options.command}: {exc}") from exc

        try:
            if options.timeout is None:
                stdout, stderr = await process.communicate()
            else:
                stdout, stderr = await asyncio.wait_for(
                    process.communicate(), timeout=options.timeout
                )
        except TimeoutError as exc:
            await _kill(process)
            raise CommandTimeoutError(
                f"{options.command} timed out after {options.timeout}s"
            ) from exc
        except asyncio.CancelledError:
            await _kill(process)
            raise

        exit_code = process.returncode if process.returncode is not None else -1
        self._logger.debug(
            "Executed command",
            extra={
                "command": options.command,
                "exit_code": exit_code,
                "duration_seconds": perf_counter() - started,
            },
        )
        return CommandResult(stdout=stdout, stderr=stderr, exit_code=exit_code)


async def _kill(process: asyncio.subprocess.Process) -> None:
    if process.returncode is not None:
        return
    try:
        process.kill()
    except ProcessLookupError:
        return
    await process.wait()
