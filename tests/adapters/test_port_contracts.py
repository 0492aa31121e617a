"""Adapter contract tests for the default ports implementation.

Purpose
-------
Verify the default adapters continue to satisfy the application-layer ports
defined in ``src/app_scoped_config/application/ports.py`` so dependency
inversion remains enforceable through automated tests.
"""

from __future__ import annotations

import asyncio

import pytest

from app_scoped_config.adapters.remote.default import EnvRemoteEndpointLookup, HttpRemoteConfigClient
from app_scoped_config.application import ports
from app_scoped_config.application.merge import merge_sources
from app_scoped_config.core import default_readers
from app_scoped_config.domain.sources import ResolutionContext, SourceKind
from tests.support import create_monorepo_sandbox


@pytest.fixture()
def sandbox(tmp_path):
    """Provide a monorepo with both dotenv files so every local reader applies."""

    sandbox = create_monorepo_sandbox(tmp_path, apps=("admin",))
    sandbox.write_root_env("SERVICE__TIMEOUT=15\n")
    sandbox.write_app_env("admin", "SERVICE__RETRIES=3\n")
    return sandbox


def test_default_readers_cover_every_source_kind() -> None:
    readers = default_readers()
    assert {reader.kind for reader in readers} == set(SourceKind)
    assert [reader.kind.priority for reader in readers] == [5, 4, 3, 2, 1, 0]


def test_default_readers_satisfy_source_reader(sandbox) -> None:
    """Every default reader must fulfil the SourceReader protocol and return mappings."""

    context = ResolutionContext(
        "admin",
        {"APP_ADMIN_SERVICE__ENABLED": "true", "APP_SERVICE__NAME": "demo", "HOME": "/root"},
        sandbox.root,
        "APP",
        frozenset({"admin"}),
    )
    for reader in default_readers():
        assert isinstance(reader, ports.SourceReader)
        if reader.kind is SourceKind.REMOTE_SERVICE:
            assert not reader.is_available(context)
            continue
        assert reader.is_available(context), reader.kind
        payload = asyncio.run(reader.read(context))
        assert isinstance(payload, dict)


def test_remote_adapters_satisfy_ports() -> None:
    assert isinstance(EnvRemoteEndpointLookup(), ports.RemoteEndpointLookup)
    assert isinstance(HttpRemoteConfigClient(), ports.RemoteConfigClient)


def test_merge_sources_satisfies_merger() -> None:
    merger: ports.Merger = merge_sources
    merged, meta = merger([(0, "process-env", {"a": 1}, None)])
    assert merged == {"a": 1}
    assert meta["a"]["source"] == "process-env"
