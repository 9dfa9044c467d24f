"""Typed resource properties with structural and semantic validation."""

from __future__ import annotations

import os
import re
import shlex
from collections.abc import Mapping
from enum import StrEnum
from typing import Annotated, Any, ClassVar, Self
from urllib.parse import urlparse

from pydantic import (
    AliasChoices,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from converge._utils import parse_duration
from converge.errors import (
    ResourceEnsureRequiredError,
    ResourceInvalidError,
    ResourceNameRequiredError,
    UnknownResourceTypeError,
)
from converge.templates import TemplateEnv, TemplateResolver, resolve_template_string

Duration = Annotated[float, BeforeValidator(parse_duration)]

ENSURE_PRESENT = "present"
ENSURE_ABSENT = "absent"

_COMMON_NAME = re.compile(r"^[a-zA-Z0-9._+:~-]+$")
_ARCHIVE_SUFFIXES = (".tar.gz", ".tgz", ".tar", ".zip")
_MAX_FILE_MODE = 0o777


class HealthCheckFormat(StrEnum):
    NAGIOS = "nagios"
    GOSS = "goss"


class HealthCheckSpec(BaseModel):
    """Declaration of a post-apply health check."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(default="", description="Display name for reports")
    format: HealthCheckFormat = Field(default=HealthCheckFormat.NAGIOS)
    command: str = Field(default="", description="Nagios plugin command line")
    goss_rules: str = Field(default="", description="Goss rules document")
    tries: int = Field(default=1, description="Maximum attempts")
    try_sleep: Duration = Field(default=1.0, ge=0.0, description="Seconds between attempts")
    timeout: Duration | None = Field(default=None, gt=0.0, description="Per-attempt timeout")

    @field_validator("tries", mode="before")
    @classmethod
    def _at_least_one_try(cls, value: Any) -> Any:
        if value is None:
            return 1
        if isinstance(value, int) and not isinstance(value, bool) and value < 1:
            return 1
        return value

    @property
    def display_name(self) -> str:
        if self.name:
            return self.name
        if self.format is HealthCheckFormat.NAGIOS and self.command:
            return self.command
        return str(self.format)

    def validate_check(self) -> None:
        """Raise ResourceInvalidError when the check cannot be executed."""
        if self.format is HealthCheckFormat.NAGIOS:
            if not self.command.strip():
                raise ResourceInvalidError("nagios health check requires a command")
            try:
                words = shlex.split(self.command)
            except ValueError as exc:
                raise ResourceInvalidError(f"invalid health check command: {exc}") from exc
            if not words:
                raise ResourceInvalidError("invalid health check command")
        elif not self.goss_rules.strip():
            raise ResourceInvalidError("goss health check requires goss_rules")

    def resolve_templates(self, env: TemplateEnv, resolver: TemplateResolver) -> HealthCheckSpec:
        return self.model_copy(
            update={
                "command": resolver(self.command, env),
                "goss_rules": resolver(self.goss_rules, env),
            }
        )


def parse_subscription(value: str) -> tuple[str, str]:
    """Split a ``type#name`` subscription into its parts."""
    resource_type, sep, name = value.partition("#")
    if not sep or not resource_type or not name:
        raise ResourceInvalidError(f"invalid subscribe format {value!r}, expected type#name")
    return resource_type, name


class ResourceProperties(BaseModel):
    """Properties shared by every resource type."""

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    type_name: ClassVar[str] = ""
    default_ensure: ClassVar[str] = ""
    ensure_values: ClassVar[tuple[str, ...]] = ()
    template_fields: ClassVar[tuple[str, ...]] = ()
    secret_fields: ClassVar[frozenset[str]] = frozenset()

    name: str = ""
    ensure: str = ""
    alias: str = ""
    provider: str = ""
    health_checks: tuple[HealthCheckSpec, ...] = ()
    subscribe: tuple[str, ...] = ()
    refresh_only: bool = Field(
        default=False,
        validation_alias=AliasChoices("refresh_only", "refreshonly"),
    )
    skip_validate: bool = False

    @model_validator(mode="before")
    @classmethod
    def _apply_default_ensure(cls, data: Any) -> Any:
        if isinstance(data, Mapping) and not data.get("ensure") and cls.default_ensure:
            return {**data, "ensure": cls.default_ensure}
        return data

    @field_validator("subscribe", mode="before")
    @classmethod
    def _single_subscription(cls, value: Any) -> Any:
        if isinstance(value, str):
            return (value,) if value else ()
        return value

    def __str__(self) -> str:
        return f"{self.type_name}#{self.name}"

    def subscriptions(self) -> list[tuple[str, str]]:
        return [parse_subscription(item) for item in self.subscribe]

    def validate_properties(self) -> None:
        """Semantic validation, skipped entirely when ``skip_validate`` is set.

        Raises:
            ResourceNameRequiredError: When name is empty.
            ResourceEnsureRequiredError: When ensure is empty.
            ResourceInvalidError: For every other violation.
        """
        if self.skip_validate:
            return
        if not self.name:
            raise ResourceNameRequiredError(f"{self.type_name}: name is required")
        if not self.ensure:
            raise ResourceEnsureRequiredError(f"{self}: ensure is required")
        if self.ensure_values and self.ensure not in self.ensure_values:
            allowed = ", ".join(repr(value) for value in self.ensure_values)
            raise ResourceInvalidError(f"{self}: ensure must be one of {allowed}")
        for subscription in self.subscribe:
            parse_subscription(subscription)
        for check in self.health_checks:
            check.validate_check()
        self._validate_type()

    def _validate_type(self) -> None:
        return None

    def resolve_templates(
        self,
        env: TemplateEnv,
        resolver: TemplateResolver = resolve_template_string,
    ) -> Self:
        """Return a copy with every templated string field resolved."""
        update: dict[str, Any] = {}
        for field_name in ("name", "ensure", "alias", "provider", *self.template_fields):
            value = getattr(self, field_name)
            if isinstance(value, str):
                update[field_name] = resolver(value, env)
            elif isinstance(value, tuple) and all(isinstance(item, str) for item in value):
                update[field_name] = tuple(resolver(item, env) for item in value)
        update["subscribe"] = tuple(resolver(item, env) for item in self.subscribe)
        update["health_checks"] = tuple(
            check.resolve_templates(env, resolver) for check in self.health_checks
        )
        return self.model_copy(update=update)

    def to_manifest(self) -> dict[str, Any]:
        """JSON-safe snapshot with secrets masked."""
        payload = self.model_dump(mode="json", exclude_defaults=True)
        for key in self.secret_fields & payload.keys():
            payload[key] = "*****"
        return payload


class PackageProperties(ResourceProperties):
    type_name: ClassVar[str] = "package"

    def _validate_type(self) -> None:
        _validate_common_name(self.type_name, self.name)
        if self.ensure not in (ENSURE_PRESENT, ENSURE_ABSENT, "latest"):
            if not _COMMON_NAME.match(self.ensure):
                raise ResourceInvalidError(
                    f"{self}: package version contains invalid characters: {self.ensure!r}"
                )


class ServiceProperties(ResourceProperties):
    type_name: ClassVar[str] = "service"
    default_ensure: ClassVar[str] = "running"
    ensure_values: ClassVar[tuple[str, ...]] = ("running", "stopped")

    enable: bool | None = None

    def _validate_type(self) -> None:
        _validate_common_name(self.type_name, self.name)


class FileProperties(ResourceProperties):
    type_name: ClassVar[str] = "file"
    ensure_values: ClassVar[tuple[str, ...]] = (ENSURE_PRESENT, ENSURE_ABSENT, "directory")
    template_fields: ClassVar[tuple[str, ...]] = ("contents", "source", "owner", "group", "mode")

    contents: str = Field(default="", validation_alias=AliasChoices("contents", "content"))
    source: str = ""
    owner: str = ""
    group: str = ""
    mode: str = ""

    @field_validator("mode", mode="before")
    @classmethod
    def _mode_as_string(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return format(value, "o")
        return value

    def parsed_mode(self) -> int:
        return parse_file_mode(self.mode)

    def _validate_type(self) -> None:
        _validate_absolute_path(self, self.name, "file path")
        if not self.owner:
            raise ResourceInvalidError(f"{self}: owner cannot be empty")
        if not self.group:
            raise ResourceInvalidError(f"{self}: group cannot be empty")
        if not self.mode:
            raise ResourceInvalidError(f"{self}: mode cannot be empty")
        parse_file_mode(self.mode)
        if self.contents and self.source:
            raise ResourceInvalidError(f"{self}: contents and source are mutually exclusive")


class ExecProperties(ResourceProperties):
    type_name: ClassVar[str] = "exec"
    default_ensure: ClassVar[str] = ENSURE_PRESENT
    template_fields: ClassVar[tuple[str, ...]] = ("cwd", "creates", "path", "environment")

    cwd: str = ""
    environment: tuple[str, ...] = ()
    path: str = ""
    returns: tuple[int, ...] = ()
    timeout: Duration | None = Field(default=None, gt=0.0)
    creates: str = ""
    logoutput: bool = Field(default=False, validation_alias=AliasChoices("logoutput", "log_output"))

    @field_validator("path", mode="before")
    @classmethod
    def _path_list(cls, value: Any) -> Any:
        if isinstance(value, list | tuple):
            return ":".join(str(item) for item in value)
        return value

    @property
    def expected_returns(self) -> tuple[int, ...]:
        return self.returns or (0,)

    def command_words(self) -> list[str]:
        try:
            return shlex.split(self.name)
        except ValueError as exc:
            raise ResourceInvalidError(f"{self}: invalid command: {exc}") from exc

    def environment_pairs(self) -> dict[str, str]:
        pairs: dict[str, str] = {}
        for entry in self.environment:
            key, sep, value = entry.partition("=")
            if not sep:
                raise ResourceInvalidError(f"invalid environment variable {entry!r}: missing '='")
            if not key:
                raise ResourceInvalidError(f"invalid environment variable {entry!r}: empty key")
            if not value:
                raise ResourceInvalidError(f"invalid environment variable {entry!r}: empty value")
            pairs[key] = value
        return pairs

    def _validate_type(self) -> None:
        if not self.command_words():
            raise ResourceInvalidError(f"{self}: invalid command")
        if self.path:
            for directory in self.path.split(":"):
                if not directory:
                    raise ResourceInvalidError("invalid path: empty directory in path")
                if not directory.startswith("/"):
                    raise ResourceInvalidError(f"invalid path: {directory!r} is not absolute")
        self.environment_pairs()
        if self.cwd and not os.path.isabs(self.cwd):
            raise ResourceInvalidError(f"{self}: cwd must be an absolute path")


class ArchiveProperties(ResourceProperties):
    type_name: ClassVar[str] = "archive"
    ensure_values: ClassVar[tuple[str, ...]] = (ENSURE_PRESENT, ENSURE_ABSENT)
    template_fields: ClassVar[tuple[str, ...]] = (
        "url",
        "username",
        "password",
        "checksum",
        "extract_parent",
        "creates",
        "owner",
        "group",
    )
    secret_fields: ClassVar[frozenset[str]] = frozenset({"password"})

    url: str = ""
    headers: dict[str, str] = Field(default_factory=dict)
    username: str = ""
    password: str = Field(default="", repr=False)
    checksum: str = ""
    extract_parent: str = ""
    cleanup: bool = False
    creates: str = ""
    owner: str = ""
    group: str = ""

    def _validate_type(self) -> None:
        if not self.url:
            raise ResourceInvalidError(f"{self}: url cannot be empty")
        parsed = urlparse(self.url)
        if not parsed.scheme or not parsed.netloc:
            raise ResourceInvalidError(f"{self}: url must be absolute")
        filename = os.path.basename(parsed.path)
        url_type = archive_type(filename)
        if url_type is None:
            raise ResourceInvalidError(
                f"{self}: url filename must end in .zip, .tar.gz, .tgz, or .tar"
            )
        name_type = archive_type(self.name)
        if name_type is None:
            raise ResourceInvalidError(f"{self}: name must end in .zip, .tar.gz, .tgz, or .tar")
        if url_type != name_type:
            raise ResourceInvalidError(
                f"{self}: url and name must have the same archive type: "
                f"url is {url_type}, name is {name_type}"
            )
        if self.cleanup and not self.extract_parent:
            raise ResourceInvalidError(f"{self}: cleanup requires extract_parent to be set")
        if self.cleanup and not self.creates:
            raise ResourceInvalidError(f"{self}: cleanup requires creates to be set")
        _validate_absolute_path(self, self.name, "file path")
        if self.creates:
            _validate_absolute_path(self, self.creates, "creates path")
        if self.extract_parent:
            _validate_absolute_path(self, self.extract_parent, "extract_parent path")
        if not self.owner:
            raise ResourceInvalidError(f"{self}: owner cannot be empty")
        if not self.group:
            raise ResourceInvalidError(f"{self}: group cannot be empty")


class ScaffoldProperties(ResourceProperties):
    type_name: ClassVar[str] = "scaffold"
    ensure_values: ClassVar[tuple[str, ...]] = (ENSURE_PRESENT, ENSURE_ABSENT)
    template_fields: ClassVar[tuple[str, ...]] = ("source",)

    source: str = ""
    skip_empty: bool = False
    purge: bool = False
    post: tuple[dict[str, str], ...] = ()

    def _validate_type(self) -> None:
        _validate_absolute_path(self, self.name, "name")
        if not self.source:
            raise ResourceInvalidError(f"{self}: source cannot be empty")
        for entry in self.post:
            for key, value in entry.items():
                if not key:
                    raise ResourceInvalidError(f"{self}: post keys cannot be empty")
                if not value:
                    raise ResourceInvalidError(
                        f"{self}: post value for key {key!r} cannot be empty"
                    )


PROPERTY_TYPES: dict[str, type[ResourceProperties]] = {
    cls.type_name: cls
    for cls in (
        PackageProperties,
        ServiceProperties,
        FileProperties,
        ExecProperties,
        ArchiveProperties,
        ScaffoldProperties,
    )
}


def parse_properties(type_name: str, raw: Any) -> ResourceProperties:
    """Structurally parse raw properties for ``type_name``.

    Templates are not resolved and semantic validation is not run.

    Raises:
        UnknownResourceTypeError: When ``type_name`` is not a known type.
        ResourceInvalidError: When the raw document does not fit the type's schema.
    """
    properties_cls = PROPERTY_TYPES.get(type_name)
    if properties_cls is None:
        raise UnknownResourceTypeError(f"unknown resource type {type_name!r}")
    if not isinstance(raw, Mapping):
        raise ResourceInvalidError(f"{type_name}: properties must be a mapping")

    try:
        return properties_cls.model_validate(dict(raw))
    except ValidationError as exc:
        details = "; ".join(
            f"{'.'.join(str(loc) for loc in err['loc']) or 'properties'}: {err['msg']}"
            for err in exc.errors()
        )
        raise ResourceInvalidError(f"{type_name}: invalid properties: {details}") from exc


def parse_file_mode(mode: str) -> int:
    """Parse an octal mode string such as ``0644``."""
    try:
        value = int(mode, 8)
    except (TypeError, ValueError) as exc:
        raise ResourceInvalidError(f"invalid file mode {mode!r}: must be octal") from exc
    if value < 0 or value > _MAX_FILE_MODE:
        raise ResourceInvalidError(f"invalid file mode {mode!r}: must not exceed 0777")
    return value


def archive_type(filename: str) -> str | None:
    for suffix in _ARCHIVE_SUFFIXES:
        if filename.endswith(suffix) and len(filename) > len(suffix):
            return "tar.gz" if suffix == ".tgz" else suffix.lstrip(".")
    return None


def _validate_common_name(type_name: str, name: str) -> None:
    if not _COMMON_NAME.match(name):
        raise ResourceInvalidError(
            f"{type_name} name contains invalid characters: {name!r} "
            "(allowed: alphanumeric, ._+:~-)"
        )


def _validate_absolute_path(properties: ResourceProperties, path: str, label: str) -> None:
    if not os.path.isabs(path):
        raise ResourceInvalidError(f"{properties}: {label} must be absolute")
    if os.path.normpath(path) != path:
        raise ResourceInvalidError(f"{properties}: {label} must be canonical")
