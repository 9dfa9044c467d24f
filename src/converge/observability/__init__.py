"""Observability helpers: structured logging and Prometheus metrics."""

from converge.observability.logging import (
    ContextLoggerAdapter,
    JsonFormatter,
    LogContext,
    SamplingFilter,
    TextFormatter,
    bind_logger,
    bootstrap_logging,
    bootstrap_logging_from_settings,
    get_log_context,
    log_context_scope,
    resource_scope,
    session_scope,
)
from converge.observability.metrics import (
    MetricsRecorder,
    NoopMetricsRecorder,
    PrometheusHttpServer,
    PrometheusMetricsHandle,
    PrometheusMetricsRecorder,
    configure_metrics_from_settings,
    configure_prometheus_metrics,
    get_metrics_recorder,
    render_prometheus_metrics,
    set_metrics_recorder,
    start_prometheus_http_server,
)

__all__ = [
    "ContextLoggerAdapter",
    "JsonFormatter",
    "LogContext",
    "MetricsRecorder",
    "NoopMetricsRecorder",
    "PrometheusHttpServer",
    "PrometheusMetricsHandle",
    "PrometheusMetricsRecorder",
    "SamplingFilter",
    "TextFormatter",
    "bind_logger",
    "bootstrap_logging",
    "bootstrap_logging_from_settings",
    "configure_metrics_from_settings",
    "configure_prometheus_metrics",
    "get_log_context",
    "get_metrics_recorder",
    "log_context_scope",
    "render_prometheus_metrics",
    "resource_scope",
    "session_scope",
    "set_metrics_recorder",
    "start_prometheus_http_server",
]
