"""Small helpers shared by resource types and providers."""

from __future__ import annotations

import hashlib
import os
import re
import shutil
from datetime import timedelta
from pathlib import Path

_VERSION_TOKENS = re.compile(r"[-.]|\d+|[^-.\d]+")
_TRAILING_ZEROES = re.compile(r"([.0]+)$")
_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")

_DURATION_UNITS = {"h": 3600.0, "m": 60.0, "s": 1.0, "ms": 0.001}


def version_cmp(version_a: str, version_b: str, *, ignore_trailing_zeroes: bool = False) -> int:
    """Compare two version strings the way Puppet does.

    Returns -1 when ``version_a`` sorts before ``version_b``, 0 when they are
    equal and 1 otherwise.
    """
    if ignore_trailing_zeroes:
        version_a = _strip_trailing_zeroes(version_a)
        version_b = _strip_trailing_zeroes(version_b)

    a_tokens = _VERSION_TOKENS.findall(version_a)
    b_tokens = _VERSION_TOKENS.findall(version_b)

    for a, b in zip(a_tokens, b_tokens):
        if a == b:
            continue
        if a == "-":
            return -1
        if b == "-":
            return 1
        if a == ".":
            return -1
        if b == ".":
            return 1
        if a.isdigit() and b.isdigit():
            # leading zeroes compare lexically
            if a.startswith("0") or b.startswith("0"):
                return _cmp(a.upper(), b.upper())
            return _cmp(int(a), int(b))
        return _cmp(a.upper(), b.upper())

    return _cmp(version_a, version_b)


def parse_duration(value: object) -> float:
    """Parse ``10s``, ``1m30s``, ``250ms`` or a bare number of seconds into seconds."""
    if isinstance(value, timedelta):
        return value.total_seconds()
    if isinstance(value, bool):
        raise ValueError(f"invalid duration: {value!r}")
    if isinstance(value, int | float):
        if value < 0:
            raise ValueError(f"duration must not be negative: {value!r}")
        return float(value)
    if not isinstance(value, str):
        raise ValueError(f"invalid duration: {value!r}")

    text = value.strip()
    if text == "":
        raise ValueError("duration must not be empty")
    try:
        return parse_duration(float(text))
    except ValueError:
        pass

    position = 0
    total = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != position:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()
    if position != len(text):
        raise ValueError(f"invalid duration: {value!r}")
    return total


def sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def sha256_file(path: str | Path) -> str:
    """Return the hex sha256 digest of a file's contents."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            digest.update(chunk)
    return digest.hexdigest()


def executable_in_path(name: str, path: str | None = None) -> str | None:
    """Return the full path of ``name`` when it is an executable on PATH."""
    return shutil.which(name, path=path)


def file_exists(path: str | Path) -> bool:
    return os.path.exists(path)


def _strip_trailing_zeroes(version: str) -> str:
    parts = version.split("-")
    parts[0] = _TRAILING_ZEROES.sub("", parts[0])
    return "-".join(parts)


def _cmp(a: object, b: object) -> int:
    if a < b:  # type: ignore[operator]
        return -1
    if a > b:  # type: ignore[operator]
        return 1
    return 0
