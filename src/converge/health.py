"""Health check execution for converged resources."""

from __future__ import annotations

import asyncio
import logging
import shlex
from collections.abc import Iterable
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Protocol

from converge.errors import CommandExecutionError, CommandTimeoutError
from converge.model.properties import HealthCheckFormat, HealthCheckSpec
from converge.runtime.runner import CommandRunner, ExecOptions

_LOGGER = logging.getLogger(__name__)


class HealthCheckStatus(IntEnum):
    OK = 0
    WARNING = 1
    CRITICAL = 2
    UNKNOWN = 3

    def __str__(self) -> str:
        return self.name


_SEVERITY = {
    HealthCheckStatus.OK: 0,
    HealthCheckStatus.WARNING: 1,
    HealthCheckStatus.UNKNOWN: 2,
    HealthCheckStatus.CRITICAL: 3,
}


@dataclass(frozen=True, slots=True)
class HealthCheckResult:
    """Outcome of one health check after all of its attempts."""

    name: str
    status: HealthCheckStatus
    tries: int
    output: str = ""
    format: str = HealthCheckFormat.NAGIOS.value

    @property
    def severity(self) -> int:
        return _SEVERITY[self.status]

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-serializable representation."""
        return {
            "name": self.name,
            "status": str(self.status),
            "tries": self.tries,
            "output": self.output,
            "format": self.format,
        }


@dataclass(frozen=True, slots=True)
class RuleEvaluation:
    passed: bool
    summary: str = ""


class RuleEvaluator(Protocol):
    """Evaluates a goss rules document against the local host."""

    async def evaluate(self, rules: str) -> RuleEvaluation:
        ...


def parse_nagios_exit_code(exit_code: int) -> HealthCheckStatus:
    """Map a Nagios plugin exit code to a status; anything unexpected is UNKNOWN."""
    try:
        return HealthCheckStatus(exit_code)
    except ValueError:
        return HealthCheckStatus.UNKNOWN


def worst_health_result(results: Iterable[HealthCheckResult]) -> HealthCheckResult | None:
    """Return the highest severity result, ranking OK < WARNING < UNKNOWN < CRITICAL."""
    worst: HealthCheckResult | None = None
    for result in results:
        if worst is None or result.severity > worst.severity:
            worst = result
    return worst


async def execute_health_check(
    check: HealthCheckSpec,
    *,
    runner: CommandRunner,
    rule_evaluator: RuleEvaluator | None = None,
    logger: logging.Logger | logging.LoggerAdapter | None = None,
) -> HealthCheckResult:
    """Run ``check`` until it reports OK or its tries are exhausted.

    Attempts are separated by ``try_sleep`` seconds. An attempt that exceeds
    ``timeout`` counts as UNKNOWN and may be retried. A command that cannot be
    started, or a goss check without an evaluator, ends the check at once
    with UNKNOWN.
    """
    log = logger or _LOGGER
    tries = max(1, check.tries)
    name = check.display_name
    result = HealthCheckResult(name=name, status=HealthCheckStatus.UNKNOWN, tries=0)

    for attempt in range(1, tries + 1):
        try:
            status, output = await _attempt(check, runner, rule_evaluator)
        except (CommandTimeoutError, TimeoutError):
            status, output = HealthCheckStatus.UNKNOWN, f"timed out after {check.timeout}s"
        except _FatalCheckError as exc:
            log.error(
                "Health check could not be executed",
                extra={"check": name, "error": str(exc)},
            )
            return HealthCheckResult(
                name=name,
                status=HealthCheckStatus.UNKNOWN,
                tries=attempt,
                output=str(exc),
                format=check.format.value,
            )

        result = HealthCheckResult(
            name=name,
            status=status,
            tries=attempt,
            output=output,
            format=check.format.value,
        )
        if status is HealthCheckStatus.OK:
            break

        if attempt < tries:
            log.warning(
                "Health check attempt failed, retrying",
                extra={"check": name, "status": str(status), "attempt": attempt, "tries": tries},
            )
            if check.try_sleep > 0:
                await asyncio.sleep(check.try_sleep)

    return result


async def run_health_checks(
    checks: Iterable[HealthCheckSpec],
    *,
    runner: CommandRunner,
    rule_evaluator: RuleEvaluator | None = None,
    logger: logging.Logger | logging.LoggerAdapter | None = None,
) -> tuple[HealthCheckResult, ...]:
    """Run every check in declaration order."""
    results = []
    for check in checks:
        results.append(
            await execute_health_check(
                check, runner=runner, rule_evaluator=rule_evaluator, logger=logger
            )
        )
    return tuple(results)


class _FatalCheckError(Exception):
    pass


async def _attempt(
    check: HealthCheckSpec,
    runner: CommandRunner,
    rule_evaluator: RuleEvaluator | None,
) -> tuple[HealthCheckStatus, str]:
    if check.format is HealthCheckFormat.GOSS:
        return await _attempt_goss(check, rule_evaluator)

    words = shlex.split(check.command)
    if not words:
        raise _FatalCheckError("invalid health check command")
    try:
        result = await runner.execute_with_options(
            ExecOptions(command=words[0], args=tuple(words[1:]), timeout=check.timeout)
        )
    except CommandTimeoutError:
        raise
    except CommandExecutionError as exc:
        raise _FatalCheckError(str(exc)) from exc
    return parse_nagios_exit_code(result.exit_code), result.output_text()


async def _attempt_goss(
    check: HealthCheckSpec,
    rule_evaluator: RuleEvaluator | None,
) -> tuple[HealthCheckStatus, str]:
    if rule_evaluator is None:
        raise _FatalCheckError("no goss rule evaluator configured")

    try:
        outcome = await asyncio.wait_for(
            rule_evaluator.evaluate(check.goss_rules), timeout=check.timeout
        )
    except TimeoutError:
        raise
    except Exception as exc:
        raise _FatalCheckError(f"goss evaluation failed: {exc}") from exc

    status = HealthCheckStatus.OK if outcome.passed else HealthCheckStatus.CRITICAL
    return status, outcome.summary
