"""Package resource."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Protocol

from converge._utils import version_cmp
from converge.model.properties import ENSURE_ABSENT, ENSURE_PRESENT, PackageProperties
from converge.model.state import PackageMetadata, ResourceState
from converge.resources.base import PlannedChange, Resource

ENSURE_LATEST = "latest"

PackageState = ResourceState[PackageMetadata]


class PackageProvider(Protocol):
    @property
    def name(self) -> str:
        ...

    async def status(self, name: str) -> PackageState:
        ...

    async def install(self, name: str, version: str) -> None:
        ...

    async def upgrade(self, name: str, version: str) -> None:
        ...

    async def downgrade(self, name: str, version: str) -> None:
        ...

    async def uninstall(self, name: str) -> None:
        ...


class PackageResource(Resource[PackageProperties, PackageProvider]):
    """Installs, upgrades, downgrades or removes a package.

    ``ensure`` is ``present``, ``absent``, ``latest`` or a version. ``latest``
    always asks the provider to install or upgrade because the installed
    version cannot be trusted to be the newest available. Unlike the other
    types it is never skipped as stable: every apply runs the upgrade and
    the event only reports a change when the installed version moved.
    """

    type_name = "package"

    async def _status(self, provider: PackageProvider) -> PackageState:
        return await provider.status(self.name)

    def is_desired_state(self, state: ResourceState[Any], *, from_status: bool) -> bool:
        ensure = self.properties.ensure
        if ensure in (ENSURE_PRESENT, ENSURE_LATEST):
            return state.ensure != ENSURE_ABSENT
        if ensure == ENSURE_ABSENT:
            return state.ensure == ENSURE_ABSENT
        if state.ensure == ENSURE_ABSENT:
            return False
        return version_cmp(state.ensure, ensure) == 0

    def _needs_change(self, state: ResourceState[Any], stable: bool) -> bool:
        return not stable or self.properties.ensure == ENSURE_LATEST

    def _plan(
        self, provider: PackageProvider, state: ResourceState[Any], *, refresh: bool
    ) -> list[PlannedChange]:
        name = self.name
        ensure = self.properties.ensure
        installed = state.ensure

        if ensure == ENSURE_LATEST:
            if installed == ENSURE_ABSENT:
                return [
                    PlannedChange(
                        "installed latest", lambda: provider.install(name, ENSURE_LATEST)
                    )
                ]
            return [
                PlannedChange("upgraded to latest", lambda: provider.upgrade(name, ENSURE_LATEST))
            ]

        if ensure == ENSURE_ABSENT:
            return [PlannedChange("uninstalled", lambda: provider.uninstall(name))]

        if installed == ENSURE_ABSENT:
            return [
                PlannedChange(f"installed version {ensure}", lambda: provider.install(name, ensure))
            ]

        comparison = version_cmp(installed, ensure)
        if comparison < 0:
            return [PlannedChange(f"upgraded to {ensure}", lambda: provider.upgrade(name, ensure))]
        if comparison > 0:
            return [
                PlannedChange(f"downgraded to {ensure}", lambda: provider.downgrade(name, ensure))
            ]
        return []

    def _detect_change(
        self,
        initial: ResourceState[Any],
        final: ResourceState[Any],
        changes: Sequence[PlannedChange],
    ) -> bool:
        return initial.ensure != final.ensure
