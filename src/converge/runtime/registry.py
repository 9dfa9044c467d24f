"""Provider factory registry and provider selection."""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from converge.errors import (
    DuplicateProviderError,
    NoSuitableProviderError,
    ProviderNotFoundError,
    ProviderNotManageableError,
)

if TYPE_CHECKING:
    from converge.model.properties import ResourceProperties
    from converge.runtime.runner import CommandRunner

_LOGGER = logging.getLogger(__name__)


@runtime_checkable
class Provider(Protocol):
    """A platform-specific strategy for one resource type."""

    @property
    def name(self) -> str:
        ...


class ProviderFactory(Protocol):
    """Creates providers and decides whether they can manage a host."""

    type_name: str
    name: str

    def is_manageable(
        self,
        facts: Mapping[str, Any],
        properties: ResourceProperties,
    ) -> tuple[bool, int]:
        """Return whether this provider can manage the host and its priority."""
        ...

    def new(
        self,
        logger: logging.Logger | logging.LoggerAdapter,
        runner: CommandRunner,
    ) -> Provider:
        ...


class ProviderRegistry:
    """Thread-safe registry of provider factories keyed by type and provider name.

    Factories are kept in registration order, which decides ties between
    equally prioritized providers.
    """

    def __init__(self) -> None:
        self._factories: dict[str, dict[str, ProviderFactory]] = {}
        self._lock = threading.Lock()

    def register(self, factory: ProviderFactory) -> None:
        with self._lock:
            by_name = self._factories.setdefault(factory.type_name, {})
            if factory.name in by_name:
                raise DuplicateProviderError(
                    f"provider {factory.name!r} already registered for type {factory.type_name!r}"
                )
            by_name[factory.name] = factory

    def has(self, type_name: str, provider_name: str) -> bool:
        with self._lock:
            return provider_name in self._factories.get(type_name, {})

    def clear(self) -> None:
        with self._lock:
            self._factories.clear()

    def types(self) -> list[str]:
        with self._lock:
            return list(self._factories)

    def factories(self, type_name: str) -> list[ProviderFactory]:
        with self._lock:
            return list(self._factories.get(type_name, {}).values())

    def select_providers(
        self,
        type_name: str,
        facts: Mapping[str, Any],
        properties: ResourceProperties,
        *,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> list[tuple[ProviderFactory, int]]:
        """Return every manageable factory with its priority, in registration order.

        A factory whose manageability check raises is logged and left out.
        """
        log = logger or _LOGGER
        selected: list[tuple[ProviderFactory, int]] = []
        for factory in self.factories(type_name):
            try:
                manageable, priority = factory.is_manageable(facts, properties)
            except Exception as exc:
                log.warning(
                    "Provider manageability check failed",
                    extra={"provider": factory.name, "error": str(exc)},
                )
                continue
            if manageable:
                selected.append((factory, priority))
        return selected

    def select_provider(
        self,
        type_name: str,
        provider_name: str,
        facts: Mapping[str, Any],
        properties: ResourceProperties,
        *,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> ProviderFactory:
        """Pick the factory for a resource.

        Raises:
            ProviderNotFoundError: When ``provider_name`` names an unregistered provider.
            ProviderNotManageableError: When the named provider cannot manage this host.
            NoSuitableProviderError: When no provider can manage this host.
        """
        if provider_name:
            with self._lock:
                factory = self._factories.get(type_name, {}).get(provider_name)
            if factory is None:
                raise ProviderNotFoundError(
                    f"{type_name}#{properties.name}: provider {provider_name!r} not found"
                )
            try:
                manageable, _ = factory.is_manageable(facts, properties)
            except Exception as exc:
                raise ProviderNotManageableError(
                    f"{type_name}#{properties.name}: provider {provider_name!r} "
                    f"manageability check failed: {exc}"
                ) from exc
            if not manageable:
                raise ProviderNotManageableError(
                    f"{type_name}#{properties.name}: provider {provider_name!r} "
                    "cannot manage this host"
                )
            return factory

        candidates = self.select_providers(type_name, facts, properties, logger=logger)
        if not candidates:
            raise NoSuitableProviderError(
                f"{type_name}#{properties.name}: no suitable provider found"
            )

        best, best_priority = candidates[0]
        for factory, priority in candidates[1:]:
            if priority > best_priority:
                best, best_priority = factory, priority
        return best

    def find_suitable_provider(
        self,
        type_name: str,
        provider_name: str,
        facts: Mapping[str, Any],
        properties: ResourceProperties,
        *,
        logger: logging.Logger | logging.LoggerAdapter,
        runner: CommandRunner,
    ) -> Provider:
        """Select a factory and build its provider."""
        factory = self.select_provider(
            type_name, provider_name, facts, properties, logger=logger
        )
        logger.debug(
            "Selected provider",
            extra={"resource_type": type_name, "provider": factory.name},
        )
        return factory.new(logger, runner)


_DEFAULT_REGISTRY = ProviderRegistry()
_BUILTIN_PROVIDERS_REGISTERED = False


def get_provider_registry() -> ProviderRegistry:
    """Return the process-level provider registry."""
    return _DEFAULT_REGISTRY


def register_provider(factory: ProviderFactory) -> None:
    """Register a factory on the process-level registry."""
    _DEFAULT_REGISTRY.register(factory)


def reset_provider_registry() -> None:
    """Clear the process-level registry so builtins are registered again on next use."""
    global _BUILTIN_PROVIDERS_REGISTERED
    _DEFAULT_REGISTRY.clear()
    _BUILTIN_PROVIDERS_REGISTERED = False


def ensure_builtin_providers(registry: ProviderRegistry | None = None) -> ProviderRegistry:
    """Register built-in provider factories once."""
    global _BUILTIN_PROVIDERS_REGISTERED
    target = _DEFAULT_REGISTRY if registry is None else registry
    if target is _DEFAULT_REGISTRY and _BUILTIN_PROVIDERS_REGISTERED:
        return target

    from converge.providers import builtin_provider_factories

    for factory in builtin_provider_factories():
        if not target.has(factory.type_name, factory.name):
            target.register(factory)

    if target is _DEFAULT_REGISTRY:
        _BUILTIN_PROVIDERS_REGISTERED = True
    return target
