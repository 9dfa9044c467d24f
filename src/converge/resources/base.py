"""Generic convergence state machine shared by every resource type."""

from __future__ import annotations

import asyncio
import threading
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import timedelta
from time import perf_counter
from typing import TYPE_CHECKING, Any, ClassVar, Generic, TypeVar

from converge.errors import DesiredStateFailedError
from converge.health import HealthCheckResult, run_health_checks, worst_health_result
from converge.model.properties import ResourceProperties
from converge.model.state import ResourceState
from converge.model.transaction import TransactionEvent
from converge.observability.logging import resource_scope

if TYPE_CHECKING:
    from converge.runtime.manager import Manager
    from converge.runtime.registry import Provider

P = TypeVar("P", bound=ResourceProperties)
PR = TypeVar("PR", bound="Provider")


@dataclass(frozen=True, slots=True)
class PlannedChange:
    """One mutation the resource intends to make, described for noop reports."""

    description: str
    operation: Callable[[], Awaitable[Any]]


@dataclass(slots=True)
class ConvergeOutcome:
    state: ResourceState[Any] | None
    changed: bool = False
    refreshed: bool = False
    skipped: bool = False
    stable: bool = False
    noop_message: str = ""


def noop_message(changes: Sequence[PlannedChange]) -> str:
    if not changes:
        return ""
    return "Would have " + ", ".join(change.description for change in changes)


class Resource(ABC, Generic[P, PR]):
    """A declared resource bound to a manager.

    ``apply`` drives the resource through status, decide, act and verify and
    always records exactly one transaction event. Convergence errors are
    captured in that event; only setup errors such as provider selection
    failures are raised to the caller.
    """

    type_name: ClassVar[str] = ""

    def __init__(self, manager: Manager, properties: P) -> None:
        self._manager = manager
        self._properties = properties
        self._log = manager.logger(resource_type=self.type_name, resource_name=properties.name)
        self._provider: PR | None = None
        self._provider_lock = threading.Lock()

    def __str__(self) -> str:
        return f"{self.type_name}#{self._properties.name}"

    @property
    def properties(self) -> P:
        return self._properties

    @property
    def name(self) -> str:
        return self._properties.name

    @property
    def alias(self) -> str:
        return self._properties.alias

    @property
    def provider_name(self) -> str:
        """Name of the selected provider, empty until one has been selected."""
        return "" if self._provider is None else self._provider.name

    def select_provider(self) -> PR:
        """Resolve the provider on first use and reuse it afterwards."""
        with self._provider_lock:
            if self._provider is None:
                self._provider = self._manager.registry.find_suitable_provider(
                    self.type_name,
                    self._properties.provider,
                    self._manager.facts(),
                    self._properties,
                    logger=self._log,
                    runner=self._manager.new_runner(),
                )
            return self._provider

    async def info(self) -> ResourceState[Any]:
        """Current state as reported by the provider, without converging."""
        return await self._status(self.select_provider())

    async def apply(self) -> TransactionEvent:
        """Converge the resource, run its health checks and record the event."""
        return await self._execute(self.select_provider(), converge=True)

    async def health_check(self) -> TransactionEvent:
        """Report status and run health checks without changing anything."""
        return await self._execute(self.select_provider(), converge=False)

    @abstractmethod
    async def _status(self, provider: PR) -> ResourceState[Any]:
        ...

    @abstractmethod
    def is_desired_state(self, state: ResourceState[Any], *, from_status: bool) -> bool:
        """Whether ``state`` satisfies the properties.

        ``from_status`` is true for the pre-check on freshly read status and
        false for the verification after mutation.
        """

    @abstractmethod
    def _plan(
        self, provider: PR, state: ResourceState[Any], *, refresh: bool
    ) -> list[PlannedChange]:
        ...

    def _needs_change(self, state: ResourceState[Any], stable: bool) -> bool:
        return not stable

    def _can_refresh(self, state: ResourceState[Any]) -> bool:
        return False

    def _verified_state(
        self, state: ResourceState[Any], results: Sequence[Any]
    ) -> ResourceState[Any]:
        return state

    def _detect_change(
        self,
        initial: ResourceState[Any],
        final: ResourceState[Any],
        changes: Sequence[PlannedChange],
    ) -> bool:
        return bool(changes)

    def _refresh_trigger(self) -> str | None:
        for resource_type, name in self._properties.subscriptions():
            if self._manager.should_refresh(resource_type, name):
                return f"{resource_type}#{name}"
        return None

    async def _converge(self, provider: PR) -> ConvergeOutcome:
        props = self._properties
        initial = await self._status(provider)
        stable = self.is_desired_state(initial, from_status=True)
        trigger = self._refresh_trigger()
        refresh = trigger is not None and self._can_refresh(initial)
        self._log.debug(
            "Evaluated state",
            extra={"ensure": initial.ensure, "stable": stable, "refresh_trigger": trigger},
        )

        if props.refresh_only and trigger is None and not stable:
            self._log.info("Skipping refresh only resource, no subscribed resource changed")
            return ConvergeOutcome(state=initial, skipped=True)

        if not refresh and not self._needs_change(initial, stable):
            return ConvergeOutcome(state=initial, stable=True)

        changes = self._plan(provider, initial, refresh=refresh)

        if self._manager.noop_mode():
            message = noop_message(changes)
            if message:
                self._log.info("Skipping changes in noop mode", extra={"noop_message": message})
            return ConvergeOutcome(
                state=initial,
                changed=bool(changes),
                stable=not changes,
                noop_message=message,
            )

        results = []
        for change in changes:
            self._log.info("Applying change", extra={"change": change.description})
            results.append(await change.operation())

        final = self._verified_state(await self._status(provider), results)
        if not self.is_desired_state(final, from_status=False):
            raise DesiredStateFailedError(f"{self}: failed to reach desired state {props.ensure!r}")

        changed = self._detect_change(initial, final, changes)
        return ConvergeOutcome(state=final, changed=changed, refreshed=refresh, stable=not changed)

    async def _execute(self, provider: PR, *, converge: bool) -> TransactionEvent:
        event = TransactionEvent(
            resource_type=self.type_name,
            name=self._properties.name,
            alias=self._properties.alias,
            provider=provider.name,
            requested_ensure=self._properties.ensure,
            properties=self._properties.to_manifest(),
        )
        started = perf_counter()
        outcome = ConvergeOutcome(state=None)
        errors: list[str] = []
        health: tuple[HealthCheckResult, ...] = ()

        with resource_scope(str(self)):
            try:
                try:
                    if converge:
                        outcome = await self._converge(provider)
                    else:
                        outcome = ConvergeOutcome(state=await self._status(provider), stable=True)
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    self._log.error("Failed to apply resource", extra={"error": str(exc)})
                    errors.append(str(exc))

                if not errors and not outcome.skipped and self._properties.health_checks:
                    health = await run_health_checks(
                        self._properties.health_checks,
                        runner=self._manager.new_runner(),
                        rule_evaluator=self._manager.rule_evaluator,
                        logger=self._log,
                    )
            except asyncio.CancelledError:
                errors.append("apply cancelled")
                self._record(self._finish(event, started, outcome, errors, health))
                raise

            final = self._finish(event, started, outcome, errors, health)
            self._record(final)
            return final

    def _finish(
        self,
        event: TransactionEvent,
        started: float,
        outcome: ConvergeOutcome,
        errors: list[str],
        health: tuple[HealthCheckResult, ...],
    ) -> TransactionEvent:
        failed = bool(errors)
        noop = self._manager.noop_mode()
        state = outcome.state
        if state is not None:
            state = state.replace(
                changed=outcome.changed and not failed,
                refreshed=outcome.refreshed and not failed,
                stable=outcome.stable and not failed,
                skipped=outcome.skipped,
                noop=noop,
                noop_message=outcome.noop_message,
                health_check=worst_health_result(health),
            )
        return event.finalize(
            duration=timedelta(seconds=perf_counter() - started),
            status=state,
            final_ensure=state.ensure if state is not None else "",
            health_checks=health,
            errors=tuple(errors),
            changed=outcome.changed and not failed,
            refreshed=outcome.refreshed and not failed,
            failed=failed,
            skipped=outcome.skipped and not failed,
            noop=noop,
            noop_message=outcome.noop_message,
        )

    def _record(self, event: TransactionEvent) -> None:
        self._manager.record_event(event)

        metrics = self._manager.metrics
        if event.failed:
            outcome = "failed"
        elif event.skipped:
            outcome = "skipped"
        elif event.changed:
            outcome = "changed"
        else:
            outcome = "stable"
        metrics.observe_apply(
            resource_type=self.type_name,
            provider=event.provider,
            outcome=outcome,
            duration_seconds=event.duration.total_seconds(),
        )
        if event.failed:
            metrics.observe_error(
                resource_type=self.type_name,
                operation="apply",
                error_type="convergence",
            )
        for result in event.health_checks:
            metrics.observe_health_check(resource_type=self.type_name, status=str(result.status))
