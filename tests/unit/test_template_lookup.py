"""Tests for the lookup-only template resolver."""

from __future__ import annotations

import pytest

from converge.errors import TemplateResolutionError
from converge.templates import TemplateEnv, lookup, resolve_template_string


@pytest.fixture
def env() -> TemplateEnv:
    return TemplateEnv(
        facts={"os": {"family": "debian"}, "virtual": False},
        data={"ports": [80, 443], "owner": "www-data", "empty": None},
        environ={"HOME": "/root"},
        working_dir="/srv/manifests",
    )


def test_plain_string_is_returned_unchanged(env: TemplateEnv) -> None:
    assert resolve_template_string("nginx", env) == "nginx"


def test_resolves_nested_fact(env: TemplateEnv) -> None:
    assert resolve_template_string("{{ facts.os.family }}-repo", env) == "debian-repo"


def test_resolves_every_root(env: TemplateEnv) -> None:
    value = resolve_template_string(
        "{{data.owner}} {{ environ.HOME }} {{ working_dir }}", env
    )

    assert value == "www-data /root /srv/manifests"


def test_list_index_and_scalar_rendering(env: TemplateEnv) -> None:
    assert resolve_template_string("{{ data.ports.1 }}", env) == "443"
    assert resolve_template_string("{{ facts.virtual }}", env) == "false"
    assert resolve_template_string("x{{ data.empty }}x", env) == "xx"


def test_lookup_returns_raw_value(env: TemplateEnv) -> None:
    assert lookup("data.ports", env) == [80, 443]


@pytest.mark.parametrize(
    "template",
    [
        "{{ facts.os.release }}",
        "{{ secrets.token }}",
        "{{ data.ports.7 }}",
        "{{ 1 + 2 }}",
        "{{ data.owner | upper }}",
    ],
)
def test_unresolvable_templates_raise(env: TemplateEnv, template: str) -> None:
    with pytest.raises(TemplateResolutionError):
        resolve_template_string(template, env)
