"""Tests for the archive resource."""

from __future__ import annotations

import pytest

from converge.errors import ResourceInvalidError

ARCHIVE = {
    "name": "/opt/app.tar.gz",
    "url": "https://downloads.example.net/app-1.0.tgz",
    "checksum": "abc123",
    "owner": "root",
    "group": "root",
    "ensure": "present",
}

EXTRACTED = {
    **ARCHIVE,
    "extract_parent": "/opt/app",
    "creates": "/opt/app/bin/app",
    "cleanup": True,
}


async def test_downloads_missing_archive(make_manager, fakes) -> None:
    provider = fakes.Archive()
    manager = make_manager(provider)

    event = await manager.new_resource("archive", ARCHIVE).apply()

    assert event.changed
    assert provider.mutations == [("download", ARCHIVE["url"])]


async def test_matching_archive_is_stable(make_manager, fakes) -> None:
    provider = fakes.Archive(archive_exists=True, checksum="abc123", owner="root", group="root")
    manager = make_manager(provider)

    event = await manager.new_resource("archive", ARCHIVE).apply()

    assert event.stable
    assert provider.mutations == []


async def test_downloads_extracts_and_cleans_up(make_manager, fakes) -> None:
    provider = fakes.Archive()
    manager = make_manager(provider)
    resource = manager.new_resource("archive", EXTRACTED)

    first = await resource.apply()
    second = await resource.apply()

    assert first.changed
    assert provider.mutations == [
        ("download", EXTRACTED["url"]),
        ("extract", "/opt/app"),
        ("remove", "/opt/app.tar.gz"),
    ]
    assert second.stable


async def test_noop_lists_every_step(make_manager, fakes) -> None:
    provider = fakes.Archive()
    manager = make_manager(provider, noop=True)

    event = await manager.new_resource("archive", EXTRACTED).apply()

    assert event.noop_message == "Would have downloaded, extracted, cleaned up"
    assert provider.mutations == []


async def test_checksum_mismatch_after_download_fails(make_manager, fakes) -> None:
    provider = fakes.Archive(remote_checksum="tampered")
    manager = make_manager(provider)

    event = await manager.new_resource("archive", ARCHIVE).apply()

    assert event.failed


async def test_absent_removes_archive(make_manager, fakes) -> None:
    provider = fakes.Archive(archive_exists=True, checksum="abc123", owner="root", group="root")
    manager = make_manager(provider)

    event = await manager.new_resource("archive", {**ARCHIVE, "ensure": "absent"}).apply()

    assert event.changed
    assert provider.mutations == [("remove", "/opt/app.tar.gz")]


@pytest.mark.parametrize(
    ("override", "message"),
    [
        ({"url": "https://downloads.example.net/app.zip"}, "same archive type"),
        ({"cleanup": True}, "cleanup requires extract_parent"),
        ({"cleanup": True, "extract_parent": "/opt/app"}, "cleanup requires creates"),
        ({"owner": ""}, "owner cannot be empty"),
        ({"url": "/tmp/app.tar.gz"}, "url must be absolute"),
    ],
)
def test_rejects_invalid_properties(make_manager, fakes, override, message) -> None:
    manager = make_manager(fakes.Archive())

    with pytest.raises(ResourceInvalidError, match=message):
        manager.new_resource("archive", {**ARCHIVE, **override})


def test_password_is_masked_in_manifest_snapshot(make_manager, fakes) -> None:
    manager = make_manager(fakes.Archive())

    resource = manager.new_resource("archive", {**ARCHIVE, "username": "bob", "password": "s3cret"})

    assert resource.properties.to_manifest()["password"] == "*****"
