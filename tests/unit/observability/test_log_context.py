"""Tests for structured logging with session and resource context."""

from __future__ import annotations

import json
import logging
from io import StringIO

from converge.config import ConvergeSettings
from converge.observability.logging import (
    bind_logger,
    bootstrap_logging,
    bootstrap_logging_from_settings,
    get_log_context,
    resource_scope,
    session_scope,
)


def test_json_logs_include_session_and_resource() -> None:
    stream = StringIO()
    logger = logging.getLogger("tests.converge_logging.json")

    bootstrap_logging(
        service="converge",
        env="production",
        log_format="json",
        logger=logger,
        stream=stream,
    )

    with session_scope("sess-1"), resource_scope("package[nginx]"):
        logger.info("Applied", extra={"changed": True})

    payload = json.loads(stream.getvalue().strip())

    assert payload["message"] == "Applied"
    assert payload["service"] == "converge"
    assert payload["env"] == "production"
    assert payload["session_id"] == "sess-1"
    assert payload["resource"] == "package[nginx]"
    assert payload["changed"] is True
    assert payload["timestamp"].endswith("Z")


def test_scopes_reset_on_exit() -> None:
    with session_scope("sess-2"):
        with resource_scope("file[/etc/motd]"):
            assert get_log_context().resource == "file[/etc/motd]"
        assert get_log_context().resource is None
        assert get_log_context().session_id == "sess-2"

    assert get_log_context().session_id is None


def test_blank_scope_values_are_cleared() -> None:
    with session_scope("   "):
        assert get_log_context().session_id is None


def test_text_format_appends_context_and_extras() -> None:
    stream = StringIO()
    logger = logging.getLogger("tests.converge_logging.text")

    bootstrap_logging(
        service="edge",
        env="staging",
        log_format="text",
        logger=logger,
        stream=stream,
    )

    with session_scope("sess-3"):
        logger.warning("Health degraded", extra={"status": "warning"})

    line = stream.getvalue().strip()

    assert "WARNING" in line
    assert "Health degraded" in line
    assert "service=edge env=staging session_id=sess-3 resource=-" in line
    assert line.endswith("status=warning")


def test_bound_logger_merges_context_with_call_extra() -> None:
    stream = StringIO()
    logger = logging.getLogger("tests.converge_logging.bound")
    bootstrap_logging(service="converge", env="test", logger=logger, stream=stream)

    adapter = bind_logger(logger, resource_type="service")
    nested = bind_logger(adapter, resource_name="nginx")
    nested.info("Checking", extra={"attempt": 2})

    payload = json.loads(stream.getvalue().strip())

    assert payload["resource_type"] == "service"
    assert payload["resource_name"] == "nginx"
    assert payload["attempt"] == 2


def test_sampling_zero_keeps_warnings_only() -> None:
    stream = StringIO()
    logger = logging.getLogger("tests.converge_logging.sampling")
    bootstrap_logging(
        service="converge", env="test", sampling=0.0, logger=logger, stream=stream
    )

    logger.info("dropped")
    logger.warning("kept")

    lines = stream.getvalue().strip().splitlines()

    assert len(lines) == 1
    assert json.loads(lines[0])["message"] == "kept"


def test_bootstrap_from_settings_uses_logging_section() -> None:
    stream = StringIO()
    logger = logging.getLogger("tests.converge_logging.settings")
    settings = ConvergeSettings.model_validate(
        {"name": "edge-node", "logging": {"level": "DEBUG", "format": "json"}}
    )

    configured = bootstrap_logging_from_settings(
        settings, env="ci", logger=logger, stream=stream
    )
    configured.debug("ready")

    payload = json.loads(stream.getvalue().strip())

    assert configured.level == logging.DEBUG
    assert configured.propagate is False
    assert payload["service"] == "edge-node"
    assert payload["env"] == "ci"
