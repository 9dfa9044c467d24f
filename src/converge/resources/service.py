"""Service resource."""

from __future__ import annotations

from typing import Any, Protocol

from converge.model.properties import ServiceProperties
from converge.model.state import ResourceState, ServiceMetadata
from converge.resources.base import PlannedChange, Resource

ENSURE_RUNNING = "running"
ENSURE_STOPPED = "stopped"

ServiceState = ResourceState[ServiceMetadata]


class ServiceProvider(Protocol):
    @property
    def name(self) -> str:
        ...

    async def status(self, name: str) -> ServiceState:
        ...

    async def start(self, name: str) -> None:
        ...

    async def stop(self, name: str) -> None:
        ...

    async def restart(self, name: str) -> None:
        ...

    async def enable(self, name: str) -> None:
        ...

    async def disable(self, name: str) -> None:
        ...


class ServiceResource(Resource[ServiceProperties, ServiceProvider]):
    """Keeps a service running or stopped and optionally enabled at boot.

    A change in a subscribed resource restarts the service, but only when it
    should be running and already is; a stopped service is simply started.
    """

    type_name = "service"

    async def _status(self, provider: ServiceProvider) -> ServiceState:
        return await provider.status(self.name)

    def is_desired_state(self, state: ResourceState[Any], *, from_status: bool) -> bool:
        if state.ensure != self.properties.ensure:
            return False
        enable = self.properties.enable
        return enable is None or enable == state.metadata.enabled

    def _can_refresh(self, state: ResourceState[Any]) -> bool:
        return self.properties.ensure == ENSURE_RUNNING and state.ensure == ENSURE_RUNNING

    def _plan(
        self, provider: ServiceProvider, state: ResourceState[Any], *, refresh: bool
    ) -> list[PlannedChange]:
        name = self.name
        changes: list[PlannedChange] = []

        if refresh:
            changes.append(
                PlannedChange("restarted via subscribe", lambda: provider.restart(name))
            )
        elif self.properties.ensure == ENSURE_STOPPED and state.ensure != ENSURE_STOPPED:
            changes.append(PlannedChange("stopped", lambda: provider.stop(name)))
        elif self.properties.ensure == ENSURE_RUNNING and state.ensure != ENSURE_RUNNING:
            changes.append(PlannedChange("started", lambda: provider.start(name)))

        enable = self.properties.enable
        if enable is True and not state.metadata.enabled:
            changes.append(PlannedChange("enabled", lambda: provider.enable(name)))
        elif enable is False and state.metadata.enabled:
            changes.append(PlannedChange("disabled", lambda: provider.disable(name)))

        return changes
