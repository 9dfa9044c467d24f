"""Exec resource."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Protocol

from converge.model.properties import ExecProperties
from converge.model.state import ExecMetadata, ResourceState
from converge.resources.base import PlannedChange, Resource

ExecState = ResourceState[ExecMetadata]


class ExecProvider(Protocol):
    @property
    def name(self) -> str:
        ...

    async def status(self, properties: ExecProperties) -> ExecState:
        ...

    async def execute(self, properties: ExecProperties) -> int:
        """Run the command and return its exit code."""
        ...


class ExecResource(Resource[ExecProperties, ExecProvider]):
    """Runs a command unless its ``creates`` file already exists.

    The command has converged when it exited with one of ``returns``
    (default ``0``). A change in a subscribed resource runs the command
    even when ``creates`` is satisfied.
    """

    type_name = "exec"

    async def _status(self, provider: ExecProvider) -> ExecState:
        return await provider.status(self.properties)

    def is_desired_state(self, state: ResourceState[Any], *, from_status: bool) -> bool:
        if self.properties.creates and state.metadata.creates_satisfied:
            return True
        exit_code = state.metadata.exit_code
        if exit_code is None:
            return False
        return exit_code in self.properties.expected_returns

    def _can_refresh(self, state: ResourceState[Any]) -> bool:
        return True

    def _plan(
        self, provider: ExecProvider, state: ResourceState[Any], *, refresh: bool
    ) -> list[PlannedChange]:
        description = "executed via subscribe" if refresh else "executed"
        return [PlannedChange(description, lambda: provider.execute(self.properties))]

    def _verified_state(
        self, state: ResourceState[Any], results: Sequence[Any]
    ) -> ResourceState[Any]:
        if not results:
            return state
        return state.with_metadata(exit_code=results[-1])
