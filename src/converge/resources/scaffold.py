"""Scaffold resource: a directory tree rendered from a template source."""

from __future__ import annotations

from typing import Any, Protocol

from converge.model.properties import ENSURE_ABSENT, ScaffoldProperties
from converge.model.state import ResourceState, ScaffoldMetadata
from converge.resources.base import PlannedChange, Resource
from converge.templates import TemplateEnv

ScaffoldState = ResourceState[ScaffoldMetadata]


class ScaffoldProvider(Protocol):
    @property
    def name(self) -> str:
        ...

    async def status(self, env: TemplateEnv, properties: ScaffoldProperties) -> ScaffoldState:
        """Compare the rendered source against the target without writing anything.

        ``changed`` lists target files that differ from the rendered source,
        ``stable`` those that match and ``purged`` the target files absent from
        the source. ``purged`` is reported whether or not purge is enabled.
        """
        ...

    async def scaffold(self, env: TemplateEnv, properties: ScaffoldProperties) -> ScaffoldState:
        ...

    async def remove(self, properties: ScaffoldProperties, state: ScaffoldState) -> None:
        ...


class ScaffoldResource(Resource[ScaffoldProperties, ScaffoldProvider]):
    """Renders ``source`` into the target directory named by the resource.

    Status reports which target files would change, which already match and
    which are missing from the source. Those are only purged when purge is
    set. A source that renders nothing is already stable.
    """

    type_name = "scaffold"

    async def _status(self, provider: ScaffoldProvider) -> ScaffoldState:
        return await provider.status(self._manager.template_environment(), self.properties)

    def is_desired_state(self, state: ResourceState[Any], *, from_status: bool) -> bool:
        meta = state.metadata
        if self.properties.ensure == ENSURE_ABSENT:
            if not meta.target_exists:
                return True
            return not (meta.stable or meta.changed or meta.purged)

        if from_status:
            return not meta.changed and not (self.properties.purge and meta.purged)
        return bool(meta.changed or meta.purged or meta.stable)

    def _plan(
        self, provider: ScaffoldProvider, state: ResourceState[Any], *, refresh: bool
    ) -> list[PlannedChange]:
        props = self.properties
        meta = state.metadata
        if props.ensure == ENSURE_ABSENT:
            return [PlannedChange("removed the scaffold", lambda: provider.remove(props, state))]

        description = f"changed {len(meta.changed)} files"
        if props.purge and meta.purged:
            description += f" and purged {len(meta.purged)} files"
        env = self._manager.template_environment()
        return [PlannedChange(description, lambda: provider.scaffold(env, props))]
