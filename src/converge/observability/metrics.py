"""Prometheus metrics primitives for convergence runs."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

from converge.errors import MissingDependencyError

if TYPE_CHECKING:
    from converge.config.models import ConvergeSettings

_LABEL_NORMALIZER = re.compile(r"[^a-zA-Z0-9_]+")

_DURATION_BUCKETS = (0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 300.0)


def _import_prometheus_client() -> Any:
    try:
        import prometheus_client
    except ImportError as exc:  # pragma: no cover - depends on optional extras
        raise MissingDependencyError(
            "Prometheus metrics require optional dependency 'prometheus-client'. "
            "Install with: pip install 'converge-engine[observability]'"
        ) from exc
    return prometheus_client


def _sanitize_label(value: str, *, default: str = "unknown") -> str:
    normalized = _LABEL_NORMALIZER.sub("_", value.strip().lower()).strip("_")
    return normalized or default


def _collector_or_create(registry: Any, name: str, factory: Any) -> Any:
    names_to_collectors = getattr(registry, "_names_to_collectors", None)
    if isinstance(names_to_collectors, dict):
        collector = names_to_collectors.get(name)
        if collector is not None:
            return collector
    return factory()


class MetricsRecorder(Protocol):
    """Observer contract for convergence metrics."""

    def observe_apply(
        self,
        *,
        resource_type: str,
        provider: str,
        outcome: str,
        duration_seconds: float,
    ) -> None:
        """Record one resource apply with its outcome category."""
        ...

    def observe_health_check(
        self,
        *,
        resource_type: str,
        status: str,
    ) -> None:
        """Record a health check result."""
        ...

    def observe_error(
        self,
        *,
        resource_type: str,
        operation: str,
        error_type: str,
    ) -> None:
        """Record error counters."""
        ...

    def observe_manifest(
        self,
        *,
        duration_seconds: float,
        success: bool,
    ) -> None:
        """Record a whole manifest run."""
        ...


class NoopMetricsRecorder:
    """No-op recorder used when metrics are not configured."""

    def observe_apply(
        self,
        *,
        resource_type: str,
        provider: str,
        outcome: str,
        duration_seconds: float,
    ) -> None:
        del resource_type, provider, outcome, duration_seconds

    def observe_health_check(
        self,
        *,
        resource_type: str,
        status: str,
    ) -> None:
        del resource_type, status

    def observe_error(
        self,
        *,
        resource_type: str,
        operation: str,
        error_type: str,
    ) -> None:
        del resource_type, operation, error_type

    def observe_manifest(
        self,
        *,
        duration_seconds: float,
        success: bool,
    ) -> None:
        del duration_seconds, success


class PrometheusMetricsRecorder:
    """Prometheus-backed recorder with standard converge_* naming."""

    def __init__(
        self,
        *,
        registry: Any | None = None,
        prefix: str = "converge",
    ) -> None:
        prometheus_client = _import_prometheus_client()
        self._registry = prometheus_client.REGISTRY if registry is None else registry
        self._prefix = _sanitize_label(prefix, default="converge")
        self._apply_duration = _collector_or_create(
            self._registry,
            f"{self._prefix}_resource_apply_duration_seconds",
            lambda: prometheus_client.Histogram(
                f"{self._prefix}_resource_apply_duration_seconds",
                "Resource apply duration in seconds.",
                labelnames=("type", "provider", "outcome"),
                registry=self._registry,
                buckets=_DURATION_BUCKETS,
            ),
        )
        self._applies = _collector_or_create(
            self._registry,
            f"{self._prefix}_resource_applies_total",
            lambda: prometheus_client.Counter(
                f"{self._prefix}_resource_applies_total",
                "Resource applies by outcome.",
                labelnames=("type", "provider", "outcome"),
                registry=self._registry,
            ),
        )
        self._health_checks = _collector_or_create(
            self._registry,
            f"{self._prefix}_health_checks_total",
            lambda: prometheus_client.Counter(
                f"{self._prefix}_health_checks_total",
                "Health check results by status.",
                labelnames=("type", "status"),
                registry=self._registry,
            ),
        )
        self._errors = _collector_or_create(
            self._registry,
            f"{self._prefix}_errors_total",
            lambda: prometheus_client.Counter(
                f"{self._prefix}_errors_total",
                "Convergence errors.",
                labelnames=("type", "operation", "error_type"),
                registry=self._registry,
            ),
        )
        self._manifest_duration = _collector_or_create(
            self._registry,
            f"{self._prefix}_manifest_apply_duration_seconds",
            lambda: prometheus_client.Histogram(
                f"{self._prefix}_manifest_apply_duration_seconds",
                "Manifest apply duration in seconds.",
                labelnames=("status",),
                registry=self._registry,
                buckets=_DURATION_BUCKETS,
            ),
        )

    def observe_apply(
        self,
        *,
        resource_type: str,
        provider: str,
        outcome: str,
        duration_seconds: float,
    ) -> None:
        labels = {
            "type": _sanitize_label(resource_type),
            "provider": _sanitize_label(provider),
            "outcome": _sanitize_label(outcome),
        }
        self._apply_duration.labels(**labels).observe(max(0.0, duration_seconds))
        self._applies.labels(**labels).inc()

    def observe_health_check(
        self,
        *,
        resource_type: str,
        status: str,
    ) -> None:
        self._health_checks.labels(
            type=_sanitize_label(resource_type),
            status=_sanitize_label(status),
        ).inc()

    def observe_error(
        self,
        *,
        resource_type: str,
        operation: str,
        error_type: str,
    ) -> None:
        self._errors.labels(
            type=_sanitize_label(resource_type),
            operation=_sanitize_label(operation),
            error_type=_sanitize_label(error_type),
        ).inc()

    def observe_manifest(
        self,
        *,
        duration_seconds: float,
        success: bool,
    ) -> None:
        status_label = "success" if success else "error"
        self._manifest_duration.labels(status=status_label).observe(max(0.0, duration_seconds))


_NOOP_RECORDER = NoopMetricsRecorder()
_DEFAULT_RECORDER: MetricsRecorder = _NOOP_RECORDER


def get_metrics_recorder() -> MetricsRecorder:
    """Return the process-level metrics recorder."""
    return _DEFAULT_RECORDER


def set_metrics_recorder(recorder: MetricsRecorder | None) -> MetricsRecorder:
    """Set process-level recorder. `None` switches back to no-op."""
    global _DEFAULT_RECORDER
    _DEFAULT_RECORDER = _NOOP_RECORDER if recorder is None else recorder
    return _DEFAULT_RECORDER


def configure_prometheus_metrics(
    *,
    registry: Any | None = None,
    prefix: str = "converge",
    set_default: bool = True,
) -> PrometheusMetricsRecorder:
    """Build a Prometheus recorder and optionally set it as default."""
    recorder = PrometheusMetricsRecorder(registry=registry, prefix=prefix)
    if set_default:
        set_metrics_recorder(recorder)
    return recorder


def render_prometheus_metrics(*, registry: Any | None = None) -> bytes:
    """Render current Prometheus metrics in exposition text format."""
    prometheus_client = _import_prometheus_client()
    resolved_registry = prometheus_client.REGISTRY if registry is None else registry
    return bytes(prometheus_client.generate_latest(resolved_registry))


@dataclass(frozen=True, slots=True)
class PrometheusHttpServer:
    """Handle for the background Prometheus HTTP exporter."""

    server: Any
    thread: Any


def start_prometheus_http_server(
    *,
    port: int = 9464,
    host: str = "127.0.0.1",
    registry: Any | None = None,
) -> PrometheusHttpServer:
    """Start Prometheus exporter in a background thread."""
    if not (1 <= port <= 65535):
        raise ValueError("port must be between 1 and 65535")

    prometheus_client = _import_prometheus_client()
    resolved_registry = prometheus_client.REGISTRY if registry is None else registry
    server, thread = prometheus_client.start_http_server(
        port=port,
        addr=host,
        registry=resolved_registry,
    )
    return PrometheusHttpServer(server=server, thread=thread)


@dataclass(frozen=True, slots=True)
class PrometheusMetricsHandle:
    """Recorder and optional exporter started from settings."""

    recorder: PrometheusMetricsRecorder
    http_server: PrometheusHttpServer | None = None


def configure_metrics_from_settings(
    settings: ConvergeSettings,
    *,
    registry: Any | None = None,
) -> PrometheusMetricsHandle | None:
    """Configure Prometheus metrics using values from typed settings.

    Returns ``None`` and leaves the current recorder alone when metrics are
    disabled. The HTTP exporter is only started when a port is configured.
    """
    metrics = settings.metrics
    if not metrics.enabled:
        return None

    recorder = configure_prometheus_metrics(registry=registry, prefix=metrics.prefix)
    http_server = None
    if metrics.port is not None:
        http_server = start_prometheus_http_server(
            port=metrics.port,
            host=metrics.host,
            registry=registry,
        )
    return PrometheusMetricsHandle(recorder=recorder, http_server=http_server)
