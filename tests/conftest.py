"""Shared fakes and fixtures for the test suite."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any

import pytest

from converge._utils import sha256_bytes
from converge.config.models import ConvergeSettings
from converge.health import RuleEvaluation
from converge.model.properties import ENSURE_ABSENT, ENSURE_PRESENT, parse_file_mode
from converge.model.state import (
    ArchiveMetadata,
    ExecMetadata,
    FileMetadata,
    PackageMetadata,
    ResourceState,
    ScaffoldMetadata,
    ServiceMetadata,
)
from converge.observability.metrics import NoopMetricsRecorder
from converge.runtime.manager import Manager
from converge.runtime.registry import ProviderRegistry
from converge.runtime.runner import CommandResult, ExecOptions

FACTS = {
    "hostname": "web1",
    "fqdn": "web1.example.net",
    "os": {"system": "Linux", "family": "debian", "distro": {"id": "debian"}},
}


class FakeRunner:
    """Command runner returning canned results matched on argv prefixes."""

    def __init__(self) -> None:
        self.calls: list[ExecOptions] = []
        self._responses: list[tuple[tuple[str, ...], list[Any]]] = []
        self.default = CommandResult(stdout=b"", stderr=b"", exit_code=0)

    def add(
        self,
        *argv: str,
        stdout: bytes | str = b"",
        stderr: bytes | str = b"",
        exit_code: int = 0,
        error: BaseException | None = None,
    ) -> None:
        """Queue a response for commands starting with ``argv``.

        Responses for the same prefix are returned in order, the last one repeats.
        """
        if error is not None:
            result: Any = error
        else:
            result = CommandResult(
                stdout=stdout.encode() if isinstance(stdout, str) else stdout,
                stderr=stderr.encode() if isinstance(stderr, str) else stderr,
                exit_code=exit_code,
            )
        for prefix, queue in self._responses:
            if prefix == argv:
                queue.append(result)
                return
        self._responses.append((argv, [result]))

    @property
    def argvs(self) -> list[tuple[str, ...]]:
        return [(call.command, *call.args) for call in self.calls]

    async def execute(self, command: str, *args: str) -> CommandResult:
        return await self.execute_with_options(ExecOptions(command=command, args=tuple(args)))

    async def execute_with_options(self, options: ExecOptions) -> CommandResult:
        self.calls.append(options)
        argv = (options.command, *options.args)
        for prefix, queue in self._responses:
            if argv[: len(prefix)] == prefix:
                result = queue.pop(0) if len(queue) > 1 else queue[0]
                if isinstance(result, BaseException):
                    raise result
                return result
        return self.default


class FakeRuleEvaluator:
    def __init__(self, *results: RuleEvaluation) -> None:
        self._results = list(results)
        self.rules: list[str] = []

    async def evaluate(self, rules: str) -> RuleEvaluation:
        self.rules.append(rules)
        return self._results.pop(0) if len(self._results) > 1 else self._results[0]


class FakeFactory:
    """Provider factory handing out a prepared provider instance."""

    def __init__(
        self,
        provider: Any,
        *,
        name: str | None = None,
        type_name: str | None = None,
        manageable: bool = True,
        priority: int = 1,
        error: Exception | None = None,
    ) -> None:
        self.provider = provider
        self.name = name or provider.name
        self.type_name = type_name or provider.type_name
        self.manageable = manageable
        self.priority = priority
        self.error = error
        self.created = 0

    def is_manageable(self, facts: Mapping[str, Any], properties: Any) -> tuple[bool, int]:
        if self.error is not None:
            raise self.error
        return self.manageable, self.priority

    def new(self, logger: Any, runner: Any) -> Any:
        self.created += 1
        return self.provider


class _FakeProvider:
    type_name = ""

    def __init__(self, name: str = "fake") -> None:
        self._name = name
        self.calls: list[tuple[Any, ...]] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def mutations(self) -> list[tuple[Any, ...]]:
        return [call for call in self.calls if call[0] != "status"]


class FakePackageProvider(_FakeProvider):
    type_name = "package"

    def __init__(
        self,
        name: str = "fake",
        *,
        installed: Mapping[str, str] | None = None,
        latest: str = "2.0.0",
        broken: bool = False,
    ) -> None:
        super().__init__(name)
        self.installed = dict(installed or {})
        self.latest = latest
        self.broken = broken

    async def status(self, name: str) -> ResourceState[PackageMetadata]:
        self.calls.append(("status", name))
        version = self.installed.get(name, ENSURE_ABSENT)
        return ResourceState(
            resource_type="package",
            name=name,
            ensure=version,
            metadata=PackageMetadata(name=name, version=version, provider=self.name),
        )

    async def _set(self, operation: str, name: str, version: str) -> None:
        self.calls.append((operation, name, version))
        if self.broken:
            return
        self.installed[name] = self.latest if version in ("latest", ENSURE_PRESENT) else version

    async def install(self, name: str, version: str) -> None:
        await self._set("install", name, version)

    async def upgrade(self, name: str, version: str) -> None:
        await self._set("upgrade", name, version)

    async def downgrade(self, name: str, version: str) -> None:
        await self._set("downgrade", name, version)

    async def uninstall(self, name: str) -> None:
        self.calls.append(("uninstall", name))
        if not self.broken:
            self.installed.pop(name, None)


class FakeServiceProvider(_FakeProvider):
    type_name = "service"

    def __init__(
        self,
        name: str = "fake",
        *,
        running: bool = False,
        enabled: bool = False,
        broken: bool = False,
    ) -> None:
        super().__init__(name)
        self.running = running
        self.enabled = enabled
        self.broken = broken

    async def status(self, name: str) -> ResourceState[ServiceMetadata]:
        self.calls.append(("status", name))
        return ResourceState(
            resource_type="service",
            name=name,
            ensure="running" if self.running else "stopped",
            metadata=ServiceMetadata(
                name=name, provider=self.name, enabled=self.enabled, running=self.running
            ),
        )

    async def start(self, name: str) -> None:
        self.calls.append(("start", name))
        self.running = not self.broken

    async def stop(self, name: str) -> None:
        self.calls.append(("stop", name))
        self.running = self.broken

    async def restart(self, name: str) -> None:
        self.calls.append(("restart", name))
        self.running = True

    async def enable(self, name: str) -> None:
        self.calls.append(("enable", name))
        self.enabled = True

    async def disable(self, name: str) -> None:
        self.calls.append(("disable", name))
        self.enabled = False


class FakeFileProvider(_FakeProvider):
    type_name = "file"

    def __init__(self, name: str = "fake") -> None:
        super().__init__(name)
        self.files: dict[str, dict[str, Any]] = {}

    def put(
        self,
        path: str,
        contents: bytes = b"",
        *,
        owner: str = "root",
        group: str = "root",
        mode: str = "0644",
        directory: bool = False,
    ) -> None:
        self.files[path] = {
            "checksum": "" if directory else sha256_bytes(contents),
            "owner": owner,
            "group": group,
            "mode": "%04o" % parse_file_mode(mode),
            "directory": directory,
        }

    async def status(self, path: str) -> ResourceState[FileMetadata]:
        self.calls.append(("status", path))
        entry = self.files.get(path)
        if entry is None:
            return ResourceState(
                resource_type="file",
                name=path,
                ensure=ENSURE_ABSENT,
                metadata=FileMetadata(name=path, provider=self.name),
            )
        return ResourceState(
            resource_type="file",
            name=path,
            ensure="directory" if entry["directory"] else ENSURE_PRESENT,
            metadata=FileMetadata(
                name=path,
                provider=self.name,
                checksum=entry["checksum"],
                owner=entry["owner"],
                group=entry["group"],
                mode=entry["mode"],
            ),
        )

    async def create_directory(self, path: str, owner: str, group: str, mode: str) -> None:
        self.calls.append(("create_directory", path))
        self.put(path, owner=owner, group=group, mode=mode, directory=True)

    async def store(
        self,
        path: str,
        contents: bytes,
        source: str,
        owner: str,
        group: str,
        mode: str,
    ) -> None:
        self.calls.append(("store", path, source))
        if source:
            with open(source, "rb") as handle:
                contents = handle.read()
        self.put(path, contents, owner=owner, group=group, mode=mode)

    async def remove(self, path: str) -> None:
        self.calls.append(("remove", path))
        self.files.pop(path, None)


class FakeExecProvider(_FakeProvider):
    type_name = "exec"

    def __init__(
        self,
        name: str = "fake",
        *,
        exit_code: int = 0,
        existing: set[str] | None = None,
        creates_on_run: bool = True,
    ) -> None:
        super().__init__(name)
        self.exit_code = exit_code
        self.existing = set(existing or ())
        self.creates_on_run = creates_on_run

    async def status(self, properties: Any) -> ResourceState[ExecMetadata]:
        self.calls.append(("status", properties.name))
        return ResourceState(
            resource_type="exec",
            name=properties.name,
            ensure=ENSURE_PRESENT,
            metadata=ExecMetadata(
                name=properties.name,
                provider=self.name,
                creates_satisfied=bool(properties.creates)
                and properties.creates in self.existing,
            ),
        )

    async def execute(self, properties: Any) -> int:
        self.calls.append(("execute", properties.name))
        if properties.creates and self.creates_on_run and self.exit_code == 0:
            self.existing.add(properties.creates)
        return self.exit_code


class FakeArchiveProvider(_FakeProvider):
    type_name = "archive"

    def __init__(
        self,
        name: str = "fake",
        *,
        remote_checksum: str = "abc123",
        archive_exists: bool = False,
        creates_exists: bool = False,
        checksum: str = "",
        owner: str = "",
        group: str = "",
    ) -> None:
        super().__init__(name)
        self.remote_checksum = remote_checksum
        self.archive_exists = archive_exists
        self.creates_exists = creates_exists
        self.checksum = checksum
        self.owner = owner
        self.group = group

    async def status(self, properties: Any) -> ResourceState[ArchiveMetadata]:
        self.calls.append(("status", properties.name))
        return ResourceState(
            resource_type="archive",
            name=properties.name,
            ensure=ENSURE_PRESENT if self.archive_exists else ENSURE_ABSENT,
            metadata=ArchiveMetadata(
                name=properties.name,
                provider=self.name,
                checksum=self.checksum if self.archive_exists else "",
                archive_exists=self.archive_exists,
                creates_exists=self.creates_exists,
                owner=self.owner if self.archive_exists else "",
                group=self.group if self.archive_exists else "",
            ),
        )

    async def download(self, properties: Any) -> None:
        self.calls.append(("download", properties.url))
        self.archive_exists = True
        self.checksum = self.remote_checksum
        self.owner = properties.owner
        self.group = properties.group

    async def extract(self, properties: Any) -> None:
        self.calls.append(("extract", properties.extract_parent))
        self.creates_exists = True

    async def remove(self, path: str) -> None:
        self.calls.append(("remove", path))
        self.archive_exists = False


class FakeScaffoldProvider(_FakeProvider):
    """Renders ``templates`` into ``target``, both mapping relative paths to contents."""

    type_name = "scaffold"

    def __init__(
        self,
        name: str = "fake",
        *,
        templates: Mapping[str, str] | None = None,
        target: Mapping[str, str] | None = None,
        target_exists: bool = True,
    ) -> None:
        super().__init__(name)
        self.templates = dict(templates or {})
        self.target = dict(target or {})
        self.target_exists = target_exists

    def _metadata(self, properties: Any) -> ScaffoldMetadata:
        changed = tuple(
            sorted(path for path, body in self.templates.items() if self.target.get(path) != body)
        )
        stable = tuple(
            sorted(path for path, body in self.templates.items() if self.target.get(path) == body)
        )
        purged = tuple(sorted(path for path in self.target if path not in self.templates))
        return ScaffoldMetadata(
            name=properties.name,
            provider=self.name,
            target_exists=self.target_exists,
            changed=changed,
            purged=purged,
            stable=stable,
        )

    def _state(self, properties: Any) -> ResourceState[ScaffoldMetadata]:
        return ResourceState(
            resource_type="scaffold",
            name=properties.name,
            ensure=ENSURE_PRESENT if self.target_exists else ENSURE_ABSENT,
            metadata=self._metadata(properties),
        )

    async def status(self, env: Any, properties: Any) -> ResourceState[ScaffoldMetadata]:
        self.calls.append(("status", properties.name))
        return self._state(properties)

    async def scaffold(self, env: Any, properties: Any) -> ResourceState[ScaffoldMetadata]:
        self.calls.append(("scaffold", properties.name))
        self.target_exists = True
        if properties.purge:
            self.target = {}
        self.target.update(self.templates)
        return self._state(properties)

    async def remove(self, properties: Any, state: Any) -> None:
        self.calls.append(("remove", properties.name))
        self.target = {}
        self.target_exists = False


class RecordingMetrics(NoopMetricsRecorder):
    def __init__(self) -> None:
        self.applies: list[dict[str, Any]] = []
        self.health_checks: list[dict[str, Any]] = []
        self.errors: list[dict[str, Any]] = []
        self.manifests: list[dict[str, Any]] = []

    def observe_apply(self, **kwargs: Any) -> None:
        self.applies.append(kwargs)

    def observe_health_check(self, **kwargs: Any) -> None:
        self.health_checks.append(kwargs)

    def observe_error(self, **kwargs: Any) -> None:
        self.errors.append(kwargs)

    def observe_manifest(self, **kwargs: Any) -> None:
        self.manifests.append(kwargs)


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def provider_registry() -> ProviderRegistry:
    return ProviderRegistry()


@pytest.fixture
def metrics() -> RecordingMetrics:
    return RecordingMetrics()


@pytest.fixture
def make_manager(
    provider_registry: ProviderRegistry,
    fake_runner: FakeRunner,
    metrics: RecordingMetrics,
) -> Callable[..., Manager]:
    """Build a manager whose registry holds factories for the given fake providers."""

    def factory(
        *providers: Any,
        noop: bool = False,
        data: Mapping[str, Any] | None = None,
        settings: ConvergeSettings | None = None,
        rule_evaluator: Any = None,
        environ: Mapping[str, str] | None = None,
    ) -> Manager:
        for provider in providers:
            provider_registry.register(FakeFactory(provider))
        manager = Manager(
            settings,
            facts=FACTS,
            data=data,
            noop=noop,
            registry=provider_registry,
            runner=fake_runner,
            rule_evaluator=rule_evaluator,
            metrics=metrics,
            logger=logging.getLogger("tests.converge"),
            environ=environ if environ is not None else {"HOME": "/root"},
        )
        manager.start_session()
        return manager

    return factory


@pytest.fixture
def fakes() -> Any:
    """Namespace exposing the fake classes to test modules."""

    class Fakes:
        Runner = FakeRunner
        RuleEvaluator = FakeRuleEvaluator
        Factory = FakeFactory
        Package = FakePackageProvider
        Service = FakeServiceProvider
        File = FakeFileProvider
        Exec = FakeExecProvider
        Archive = FakeArchiveProvider
        Scaffold = FakeScaffoldProvider
        Metrics = RecordingMetrics

    return Fakes
