"""Tests for manifest application through the manager."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

from converge.config import ConvergeSettings
from converge.errors import ResourceNameRequiredError, SessionError, UnknownResourceTypeError
from converge.manifest import parse_manifest
from converge.model.transaction import SessionEndEvent, SessionStartEvent, TransactionEvent


def _manifest(*resources: dict, data: dict | None = None):
    return parse_manifest({"resources": list(resources), "data": data or {}})


async def test_resources_apply_in_declaration_order(make_manager, fakes) -> None:
    packages = fakes.Package()
    files = fakes.File()
    manager = make_manager(packages, files)

    summary = await manager.apply_manifest(
        _manifest(
            {"package": [{"name": "nginx", "ensure": "present"}]},
            {
                "file": {
                    "name": "/etc/nginx/nginx.conf",
                    "ensure": "present",
                    "contents": "worker_processes 2;\n",
                    "owner": "root",
                    "group": "root",
                    "mode": "0644",
                }
            },
        )
    )

    events = manager.session.all_events()
    assert isinstance(events[0], SessionStartEvent)
    assert isinstance(events[-1], SessionEndEvent)
    assert [event.resource_type for event in events[1:-1]] == ["package", "file"]
    assert summary.total_resources == 2
    assert summary.changed_resources == 2
    assert summary.successful


async def test_subscribed_service_restarts_after_package_change(make_manager, fakes) -> None:
    service = fakes.Service(running=True, enabled=True)
    manager = make_manager(fakes.Package(), service)

    summary = await manager.apply_manifest(
        _manifest(
            {"package": {"name": "nginx", "ensure": "present"}},
            {"service": {"name": "nginx", "subscribe": "package#nginx"}},
        )
    )

    assert service.mutations == [("restart", "nginx")]
    (event,) = manager.session.events_for_resource("service", "nginx")
    assert event.refreshed
    assert summary.refreshed_count == 1
    assert summary.changed_resources == 2


async def test_stable_package_does_not_restart_subscriber(make_manager, fakes) -> None:
    service = fakes.Service(running=True, enabled=True)
    manager = make_manager(fakes.Package(installed={"nginx": "1.0"}), service)

    summary = await manager.apply_manifest(
        _manifest(
            {"package": {"name": "nginx", "ensure": "present"}},
            {"service": {"name": "nginx", "subscribe": ["package#nginx"]}},
        )
    )

    assert service.mutations == []
    assert summary.stable_resources == 2


async def test_refresh_only_exec_waits_for_subscription(make_manager, fakes) -> None:
    execs = fakes.Exec()
    manager = make_manager(fakes.Package(installed={"nginx": "1.0"}), execs)

    summary = await manager.apply_manifest(
        _manifest(
            {"package": {"name": "nginx", "ensure": "present"}},
            {
                "exec": {
                    "name": "nginx -s reload",
                    "refreshonly": True,
                    "subscribe": "package#nginx",
                }
            },
        )
    )

    assert execs.mutations == []
    assert summary.skipped_resources == 1


async def test_convergence_failure_does_not_stop_the_run(make_manager, fakes, metrics) -> None:
    manager = make_manager(fakes.Package(broken=True), fakes.Service())

    summary = await manager.apply_manifest(
        _manifest(
            {"package": {"name": "nginx", "ensure": "present"}},
            {"service": {"name": "nginx"}},
        )
    )

    assert summary.failed_resources == 1
    assert summary.changed_resources == 1
    assert not summary.successful
    assert metrics.manifests[0]["success"] is False


async def test_invalid_resource_stops_the_run(make_manager, fakes, metrics) -> None:
    packages = fakes.Package()
    manager = make_manager(packages)

    with pytest.raises(ResourceNameRequiredError):
        await manager.apply_manifest(
            _manifest(
                {"package": {"ensure": "present"}},
                {"package": {"name": "nginx", "ensure": "present"}},
            )
        )

    assert packages.mutations == []
    assert metrics.errors[0]["operation"] == "setup"
    assert metrics.manifests[0]["success"] is False


async def test_skip_invalid_continues_with_valid_resources(make_manager, fakes) -> None:
    packages = fakes.Package()
    manager = make_manager(packages)

    summary = await manager.apply_manifest(
        _manifest(
            {"package": {"ensure": "present"}},
            {"cron": {"name": "backup"}},
            {"service": {"name": "nginx"}},
            {"package": {"name": "nginx", "ensure": "present"}},
        ),
        skip_invalid=True,
    )

    assert packages.mutations == [("install", "nginx", "present")]
    assert summary.total_resources == 1


def test_unknown_resource_type(make_manager) -> None:
    manager = make_manager()

    with pytest.raises(UnknownResourceTypeError):
        manager.new_resource("cron", {"name": "backup"})


async def test_health_check_only_never_mutates(make_manager, fakes, fake_runner) -> None:
    packages = fakes.Package()
    fake_runner.add("check_http", exit_code=1, stdout="slow")
    manager = make_manager(packages)

    summary = await manager.apply_manifest(
        _manifest(
            {
                "package": {
                    "name": "nginx",
                    "ensure": "present",
                    "health_checks": [{"command": "check_http", "try_sleep": 0}],
                }
            }
        ),
        health_check_only=True,
    )

    assert packages.mutations == []
    assert summary.changed_resources == 0
    assert summary.health_check_warning_count == 1


async def test_noop_manifest_reports_changes_without_applying(make_manager, fakes) -> None:
    packages = fakes.Package()
    manager = make_manager(packages, noop=True)

    summary = await manager.apply_manifest(
        _manifest({"package": {"name": "nginx", "ensure": "present"}})
    )

    (event,) = manager.session.events_for_resource("package", "nginx")
    assert packages.mutations == []
    assert event.noop
    assert event.noop_message
    assert summary.changed_resources == 1


async def test_manifest_data_feeds_templates(make_manager, fakes) -> None:
    packages = fakes.Package()
    manager = make_manager(packages)

    await manager.apply_manifest(
        _manifest(
            {"package": {"name": "{{ data.web.package }}", "ensure": "present"}},
            data={"web": {"package": "nginx"}},
        )
    )

    assert packages.installed == {"nginx": "2.0.0"}


async def test_settings_data_overrides_manifest_data(make_manager, fakes) -> None:
    packages = fakes.Package()
    settings = ConvergeSettings(data={"web": {"package": "apache2"}})
    manager = make_manager(packages, settings=settings)

    await manager.apply_manifest(
        _manifest(
            {"package": {"name": "{{ data.web.package }}", "ensure": "present"}},
            data={"web": {"package": "nginx", "port": 80}},
        )
    )

    assert packages.installed == {"apache2": "2.0.0"}
    assert manager.data() == {"web": {"package": "apache2", "port": 80}}


async def test_apply_manifest_file_resolves_sources_next_to_manifest(
    make_manager, fakes, tmp_path: Path
) -> None:
    (tmp_path / "motd.txt").write_text("welcome\n", encoding="utf-8")
    manifest_path = tmp_path / "site.yaml"
    manifest_path.write_text(
        "resources:\n"
        "  - file:\n"
        "      name: /etc/motd\n"
        "      ensure: present\n"
        "      source: motd.txt\n"
        "      owner: root\n"
        "      group: root\n"
        "      mode: '0644'\n",
        encoding="utf-8",
    )
    files = fakes.File()
    manager = make_manager(files)

    summary = await manager.apply_manifest_file(manifest_path)

    assert manager.working_dir == str(tmp_path.resolve())
    assert files.mutations == [("store", "/etc/motd", str(tmp_path.resolve() / "motd.txt"))]
    assert summary.changed_resources == 1


async def test_manifest_run_feeds_metrics(make_manager, fakes, metrics) -> None:
    manager = make_manager(fakes.Package())

    await manager.apply_manifest(_manifest({"package": {"name": "nginx", "ensure": "present"}}))

    assert len(metrics.manifests) == 1
    assert metrics.manifests[0]["success"] is True
    assert metrics.applies[0]["outcome"] == "changed"


def test_record_event_wraps_store_failures(make_manager) -> None:
    manager = make_manager()

    with patch.object(manager.session, "record_event", side_effect=RuntimeError("disk full")):
        with pytest.raises(SessionError, match="disk full"):
            manager.record_event(TransactionEvent(resource_type="package", name="nginx"))


def test_stop_without_session_is_a_session_error(make_manager) -> None:
    manager = make_manager()
    manager.stop_session()

    with pytest.raises(SessionError):
        manager.stop_session()
