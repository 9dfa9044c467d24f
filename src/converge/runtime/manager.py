"""Manager: the collaborator every resource converges through."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from time import perf_counter
from typing import TYPE_CHECKING, Any

from converge.config.loader import deep_merge
from converge.config.models import ConvergeSettings
from converge.errors import ProviderError, ResourceInvalidError, SessionError
from converge.health import RuleEvaluator
from converge.model.properties import parse_properties
from converge.model.transaction import SessionEvent, SessionSummary, TransactionEvent
from converge.observability.logging import bind_logger, session_scope
from converge.observability.metrics import MetricsRecorder, get_metrics_recorder
from converge.runtime.facts import gather_facts
from converge.runtime.registry import (
    ProviderRegistry,
    ensure_builtin_providers,
    get_provider_registry,
)
from converge.runtime.runner import CommandRunner, SubprocessCommandRunner
from converge.runtime.session import MemorySessionStore, SessionStore
from converge.templates import TemplateEnv, TemplateResolver, resolve_template_string

if TYPE_CHECKING:
    from converge.manifest import Manifest
    from converge.resources.base import Resource

_LOGGER = logging.getLogger("converge")


class Manager:
    """Holds facts, data, the session and the provider registry for a run.

    Resources are built with ``new_resource`` and applied one at a time by
    ``apply_manifest``. The manager never runs resources concurrently.
    """

    def __init__(
        self,
        settings: ConvergeSettings | None = None,
        *,
        facts: Mapping[str, Any] | None = None,
        data: Mapping[str, Any] | None = None,
        noop: bool | None = None,
        session: SessionStore | None = None,
        registry: ProviderRegistry | None = None,
        runner: CommandRunner | None = None,
        rule_evaluator: RuleEvaluator | None = None,
        template_resolver: TemplateResolver = resolve_template_string,
        metrics: MetricsRecorder | None = None,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self._settings = settings or ConvergeSettings()
        self._logger = logger or _LOGGER
        self._facts: dict[str, Any] | None = dict(facts) if facts is not None else None
        self._data: dict[str, Any] = deep_merge(data or {}, self._settings.data)
        self._noop = self._settings.noop if noop is None else noop
        self._session = session or MemorySessionStore(logger=self._logger)
        self._registry = registry
        self._runner = runner
        self._rule_evaluator = rule_evaluator
        self._template_resolver = template_resolver
        self._metrics = metrics
        self._environ = dict(os.environ if environ is None else environ)
        self._working_dir: Path | None = self._settings.working_dir

    @property
    def settings(self) -> ConvergeSettings:
        return self._settings

    @property
    def registry(self) -> ProviderRegistry:
        """The provider registry, with built-in providers registered on first use."""
        if self._registry is None:
            self._registry = ensure_builtin_providers(get_provider_registry())
        return self._registry

    @property
    def session(self) -> SessionStore:
        return self._session

    @property
    def metrics(self) -> MetricsRecorder:
        return self._metrics if self._metrics is not None else get_metrics_recorder()

    @property
    def rule_evaluator(self) -> RuleEvaluator | None:
        return self._rule_evaluator

    @property
    def working_dir(self) -> str:
        """Directory relative file sources resolve against, empty when unset."""
        return str(self._working_dir) if self._working_dir is not None else ""

    def facts(self) -> dict[str, Any]:
        """System facts, gathered on first use."""
        if self._facts is None:
            self._facts = gather_facts()
        return self._facts

    def set_facts(self, facts: Mapping[str, Any]) -> None:
        self._facts = dict(facts)

    def data(self) -> dict[str, Any]:
        return self._data

    def set_data(self, data: Mapping[str, Any]) -> dict[str, Any]:
        """Replace the data, keeping external data from settings on top."""
        self._data = deep_merge(data, self._settings.data)
        return self._data

    def template_environment(self) -> TemplateEnv:
        return TemplateEnv(
            facts=self.facts(),
            data=self._data,
            environ=self._environ,
            working_dir=self.working_dir,
        )

    def logger(self, **context: Any) -> logging.LoggerAdapter:
        return bind_logger(self._logger, **context)

    def new_runner(self) -> CommandRunner:
        if self._runner is not None:
            return self._runner
        return SubprocessCommandRunner(
            path=self._settings.runner.path,
            cwd=self._settings.runner.cwd,
            logger=self._logger,
        )

    def noop_mode(self) -> bool:
        return self._noop

    def should_refresh(self, resource_type: str, name: str) -> bool:
        return self._session.should_refresh(resource_type, name)

    def record_event(self, event: SessionEvent) -> None:
        try:
            self._session.record_event(event)
        except SessionError:
            raise
        except Exception as exc:
            raise SessionError(f"could not record event: {exc}") from exc

    def start_session(self) -> str:
        """Start a new session and return its id."""
        return self._session.start_session().event_id

    def stop_session(self, *, destroy: bool = False) -> SessionSummary:
        return self._session.stop_session(destroy=destroy)

    def session_summary(self) -> SessionSummary:
        return self._session.summary()

    def new_resource(self, type_name: str, properties: Any) -> Resource:
        """Parse, resolve and validate ``properties`` and bind them to a resource.

        Raises:
            UnknownResourceTypeError: When ``type_name`` is not a known type.
            ResourceInvalidError: When the properties are invalid or a template fails.
        """
        from converge.resources import RESOURCE_TYPES

        parsed = parse_properties(type_name, properties)
        resolved = parsed.resolve_templates(self.template_environment(), self._template_resolver)
        resolved.validate_properties()
        return RESOURCE_TYPES[type_name](self, resolved)

    async def apply_manifest(
        self,
        manifest: Manifest,
        *,
        health_check_only: bool = False,
        skip_invalid: bool = False,
    ) -> SessionSummary:
        """Apply every resource of ``manifest`` in declaration order.

        Invalid resources and provider selection failures stop the run unless
        ``skip_invalid`` is set, in which case they are logged and skipped.
        Convergence failures never stop the run; they are recorded as failed
        events.
        """
        if manifest.data:
            self.set_data(deep_merge(manifest.data, self._data))

        session_id = self.start_session()
        started = perf_counter()
        summary: SessionSummary | None = None
        try:
            with session_scope(session_id):
                self._logger.info(
                    "Applying manifest",
                    extra={"resources": len(manifest.resources), "noop": self._noop},
                )
                for declaration in manifest.resources:
                    event = await self._apply_declaration(
                        declaration.type_name,
                        declaration.properties,
                        health_check_only=health_check_only,
                        skip_invalid=skip_invalid,
                    )
                    if event is not None:
                        event.log_status(self._logger)

                summary = self.stop_session()
                summary.log_summary(self._logger)
        finally:
            success = summary is not None and summary.successful
            self.metrics.observe_manifest(
                duration_seconds=perf_counter() - started,
                success=success,
            )
        return summary

    async def apply_manifest_file(
        self,
        path: str | Path,
        *,
        health_check_only: bool = False,
        skip_invalid: bool = False,
    ) -> SessionSummary:
        from converge.manifest import load_manifest

        manifest = load_manifest(path)
        if self._settings.working_dir is None:
            self._working_dir = Path(path).resolve().parent
        return await self.apply_manifest(
            manifest, health_check_only=health_check_only, skip_invalid=skip_invalid
        )

    async def _apply_declaration(
        self,
        type_name: str,
        properties: Mapping[str, Any],
        *,
        health_check_only: bool,
        skip_invalid: bool,
    ) -> TransactionEvent | None:
        try:
            resource = self.new_resource(type_name, properties)
            resource.select_provider()
        except (ResourceInvalidError, ProviderError) as exc:
            self.metrics.observe_error(
                resource_type=type_name,
                operation="setup",
                error_type=type(exc).__name__,
            )
            if not skip_invalid:
                raise
            self._logger.error(
                "Skipping invalid resource",
                extra={"resource_type": type_name, "error": str(exc)},
            )
            return None

        if health_check_only:
            return await resource.health_check()
        return await resource.apply()
