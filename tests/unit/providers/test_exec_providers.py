"""Tests for the posix and shell exec providers."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from converge.model.properties import parse_properties
from converge.providers.posix_exec import PosixExecFactory, PosixExecProvider
from converge.providers.shell_exec import SHELL_PATH, ShellExecProvider

LOGGER = logging.getLogger("tests.providers.exec")


def _exec(**properties):
    return parse_properties("exec", properties)


async def test_posix_splits_quoted_arguments(fake_runner) -> None:
    provider = PosixExecProvider(LOGGER, fake_runner)
    fake_runner.add("/usr/bin/printf", exit_code=0)

    exit_code = await provider.execute(_exec(name="/usr/bin/printf '%s\\n' 'hello world'"))

    assert exit_code == 0
    assert fake_runner.argvs == [("/usr/bin/printf", "%s\\n", "hello world")]


async def test_posix_passes_execution_options(fake_runner) -> None:
    provider = PosixExecProvider(LOGGER, fake_runner)

    await provider.execute(
        _exec(
            name="make install",
            cwd="/usr/src/app",
            environment=["PREFIX=/opt/app"],
            path=["/usr/local/bin", "/usr/bin"],
            timeout=30,
        )
    )

    options = fake_runner.calls[0]
    assert options.cwd == "/usr/src/app"
    assert dict(options.environment) == {"PREFIX": "/opt/app"}
    assert options.path == "/usr/local/bin:/usr/bin"
    assert options.timeout == 30


async def test_shell_runs_command_line_through_sh(fake_runner) -> None:
    provider = ShellExecProvider(LOGGER, fake_runner)
    fake_runner.add(SHELL_PATH, exit_code=3)

    exit_code = await provider.execute(_exec(name="grep -q nginx /etc/hosts || exit 3"))

    assert exit_code == 3
    assert fake_runner.argvs == [(SHELL_PATH, "-c", "grep -q nginx /etc/hosts || exit 3")]


async def test_logoutput_logs_every_line(fake_runner, caplog: pytest.LogCaptureFixture) -> None:
    provider = ShellExecProvider(LOGGER, fake_runner)
    fake_runner.add(SHELL_PATH, stdout="first\nsecond\n")

    with caplog.at_level(logging.INFO, logger="tests.providers.exec"):
        await provider.execute(_exec(name="echo first; echo second", logoutput=True))

    messages = [record.getMessage() for record in caplog.records]
    assert "first" in messages
    assert "second" in messages


async def test_status_reports_creates(tmp_path: Path, fake_runner) -> None:
    provider = PosixExecProvider(LOGGER, fake_runner)
    marker = tmp_path / "installed"

    before = await provider.status(_exec(name="/bin/true", creates=str(marker)))
    marker.touch()
    after = await provider.status(_exec(name="/bin/true", creates=str(marker)))

    assert before.metadata.creates_satisfied is False
    assert after.metadata.creates_satisfied is True
    assert fake_runner.calls == []


def test_posix_is_preferred_over_shell() -> None:
    assert PosixExecFactory().is_manageable({}, None) == (True, 2)
