"""Structured logging bootstrap and run context helpers."""

from __future__ import annotations

import contextvars
import json
import logging
import os
import random
from collections.abc import Iterator, MutableMapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, TextIO

if TYPE_CHECKING:
    from converge.config.models import ConvergeSettings

_UNSET = object()

_SESSION_ID_CTX: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "converge_session_id",
    default=None,
)
_RESOURCE_CTX: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "converge_resource",
    default=None,
)

_STANDARD_RECORD_KEYS = frozenset(
    {
        "args",
        "asctime",
        "created",
        "exc_info",
        "exc_text",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "message",
        "msg",
        "name",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "taskName",
        "thread",
        "threadName",
    }
)
_CONTEXT_KEYS = frozenset({"service", "env", "session_id", "resource"})


@dataclass(frozen=True, slots=True)
class LogContext:
    """Run-scoped values attached to every structured log record."""

    session_id: str | None = None
    resource: str | None = None


class SamplingFilter(logging.Filter):
    """Sampling filter for low-severity logs."""

    def __init__(self, sampling: float) -> None:
        super().__init__()
        self._sampling = sampling

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno >= logging.WARNING:
            return True
        return random.random() < self._sampling


class JsonFormatter(logging.Formatter):
    """JSON formatter with service, session and resource fields."""

    def __init__(self, *, service: str, env: str) -> None:
        super().__init__()
        self._service = service
        self._env = env

    def format(self, record: logging.LogRecord) -> str:
        context = get_log_context()
        payload: dict[str, Any] = {
            "timestamp": _format_timestamp(record.created),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self._service,
            "env": self._env,
            "session_id": context.session_id,
            "resource": context.resource,
        }

        payload.update(_extract_extra_fields(record))

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str, ensure_ascii=True)


class TextFormatter(logging.Formatter):
    """Plain text formatter that still includes the same run context."""

    def __init__(self, *, service: str, env: str) -> None:
        super().__init__("%(asctime)s %(levelname)s %(name)s %(message)s")
        self._service = service
        self._env = env

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        context = get_log_context()
        extras = " ".join(f"{key}={value}" for key, value in _extract_extra_fields(record).items())
        line = (
            f"{base} "
            f"service={self._service} env={self._env} "
            f"session_id={context.session_id or '-'} "
            f"resource={context.resource or '-'}"
        )
        return f"{line} {extras}" if extras else line


class ContextLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that merges bound context with per-call ``extra`` fields."""

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        extra = dict(self.extra or {})
        extra.update(kwargs.get("extra") or {})
        kwargs["extra"] = extra
        return msg, kwargs

    def bind(self, **context: Any) -> ContextLoggerAdapter:
        """Return a new adapter with additional bound fields."""
        merged = dict(self.extra or {})
        merged.update(context)
        return ContextLoggerAdapter(self.logger, merged)


def bind_logger(
    logger: logging.Logger | logging.LoggerAdapter, **context: Any
) -> ContextLoggerAdapter:
    """Return an adapter that adds ``context`` to every record it emits."""
    if isinstance(logger, ContextLoggerAdapter):
        return logger.bind(**context)
    if isinstance(logger, logging.LoggerAdapter):
        logger = logger.logger
    return ContextLoggerAdapter(logger, context)


def get_log_context() -> LogContext:
    """Read the session and resource bound to the current context."""
    return LogContext(session_id=_SESSION_ID_CTX.get(), resource=_RESOURCE_CTX.get())


@contextmanager
def log_context_scope(
    *,
    session_id: str | None | object = _UNSET,
    resource: str | None | object = _UNSET,
) -> Iterator[None]:
    """Temporarily bind log context values for the current context."""
    tokens: list[tuple[contextvars.ContextVar[str | None], contextvars.Token[str | None]]] = []

    _bind_if_provided(_SESSION_ID_CTX, session_id, tokens)
    _bind_if_provided(_RESOURCE_CTX, resource, tokens)

    try:
        yield
    finally:
        for context_var, token in reversed(tokens):
            context_var.reset(token)


@contextmanager
def session_scope(session_id: str | None) -> Iterator[None]:
    """Bind the active session id for the duration of a run."""
    with log_context_scope(session_id=session_id):
        yield


@contextmanager
def resource_scope(resource: str | None) -> Iterator[None]:
    """Bind the resource currently being converged."""
    with log_context_scope(resource=resource):
        yield


def bootstrap_logging(
    *,
    service: str,
    env: str | None = None,
    level: str = "INFO",
    log_format: str = "json",
    sampling: float | None = None,
    logger: logging.Logger | None = None,
    stream: TextIO | None = None,
    force: bool = True,
) -> logging.Logger:
    """Configure a logger with standard formatting and run context fields."""
    resolved_env = env if env is not None else os.getenv("CONVERGE_ENV", "development")
    target_logger = logger or logging.getLogger()

    if force:
        for handler in list(target_logger.handlers):
            target_logger.removeHandler(handler)

    handler = logging.StreamHandler(stream)
    handler.setFormatter(_build_formatter(log_format, service=service, env=resolved_env))

    if sampling is not None and sampling < 1.0:
        handler.addFilter(SamplingFilter(sampling))

    target_logger.addHandler(handler)
    target_logger.setLevel(level.upper())
    if target_logger is not logging.getLogger():
        target_logger.propagate = False
    return target_logger


def bootstrap_logging_from_settings(
    settings: ConvergeSettings,
    *,
    env: str | None = None,
    logger: logging.Logger | None = None,
    stream: TextIO | None = None,
    force: bool = True,
) -> logging.Logger:
    """Bootstrap logging using values from typed settings."""
    return bootstrap_logging(
        service=settings.name,
        env=env,
        level=settings.logging.level,
        log_format=settings.logging.format,
        sampling=settings.logging.sampling,
        logger=logger,
        stream=stream,
        force=force,
    )


def _build_formatter(log_format: str, *, service: str, env: str) -> logging.Formatter:
    if log_format == "text":
        return TextFormatter(service=service, env=env)
    return JsonFormatter(service=service, env=env)


def _bind_if_provided(
    context_var: contextvars.ContextVar[str | None],
    value: str | None | object,
    tokens: list[tuple[contextvars.ContextVar[str | None], contextvars.Token[str | None]]],
) -> None:
    if value is _UNSET:
        return
    token = context_var.set(_clean_optional_string(value))
    tokens.append((context_var, token))


def _clean_optional_string(value: object | None) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if text == "":
        return None
    return text


def _extract_extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    extras: dict[str, Any] = {}
    for key, value in record.__dict__.items():
        if key in _STANDARD_RECORD_KEYS or key.startswith("_"):
            continue
        if key in _CONTEXT_KEYS:
            continue
        extras[key] = value
    return extras


def _format_timestamp(created: float) -> str:
    timestamp = datetime.fromtimestamp(created, tz=UTC)
    return timestamp.isoformat(timespec="milliseconds").replace("+00:00", "Z")
