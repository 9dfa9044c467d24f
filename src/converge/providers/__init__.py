"""Built-in providers."""

from converge.providers.apt import AptFactory, AptProvider
from converge.providers.posix_exec import PosixExecFactory, PosixExecProvider
from converge.providers.posix_file import PosixFileFactory, PosixFileProvider
from converge.providers.shell_exec import ShellExecFactory, ShellExecProvider
from converge.providers.systemd import SystemdFactory, SystemdProvider
from converge.runtime.registry import ProviderFactory


def builtin_provider_factories() -> list[ProviderFactory]:
    """Factories registered on a registry by ``ensure_builtin_providers``."""
    return [
        AptFactory(),
        SystemdFactory(),
        PosixFileFactory(),
        PosixExecFactory(),
        ShellExecFactory(),
    ]


__all__ = [
    "AptFactory",
    "AptProvider",
    "PosixExecFactory",
    "PosixExecProvider",
    "PosixFileFactory",
    "PosixFileProvider",
    "ShellExecFactory",
    "ShellExecProvider",
    "SystemdFactory",
    "SystemdProvider",
    "builtin_provider_factories",
]
