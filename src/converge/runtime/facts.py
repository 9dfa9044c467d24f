"""Host fact gathering."""

from __future__ import annotations

import os
import platform
import socket
from pathlib import Path
from typing import Any

OS_RELEASE_PATHS = (Path("/etc/os-release"), Path("/usr/lib/os-release"))


def parse_os_release(text: str) -> dict[str, str]:
    """Parse the KEY=value lines of an os-release file."""
    values: dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        values[key.strip().lower()] = value.strip().strip("\"'")
    return values


def read_os_release(paths: tuple[Path, ...] = OS_RELEASE_PATHS) -> dict[str, str]:
    for path in paths:
        try:
            return parse_os_release(path.read_text(encoding="utf-8"))
        except OSError:
            continue
    return {}


def gather_facts() -> dict[str, Any]:
    """Collect the host facts exposed to templates and provider selection."""
    release = read_os_release()
    family = release.get("id_like", release.get("id", "")).split()
    uname = platform.uname()
    return {
        "hostname": socket.gethostname(),
        "fqdn": socket.getfqdn(),
        "os": {
            "system": uname.system.lower(),
            "kernel": uname.release,
            "architecture": uname.machine,
            "family": family[0] if family else "",
            "distro": {
                "id": release.get("id", ""),
                "version_id": release.get("version_id", ""),
                "codename": release.get("version_codename", ""),
                "name": release.get("pretty_name", ""),
            },
        },
        "process": {
            "uid": os.getuid() if hasattr(os, "getuid") else None,
            "cwd": os.getcwd(),
        },
        "python": {"version": platform.python_version()},
    }
