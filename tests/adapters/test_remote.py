"""Remote service adapter tests backed by ``httpx.MockTransport``."""

from __future__ import annotations

import asyncio
import base64
from pathlib import Path

import httpx
import pytest

from app_scoped_config.adapters.remote.default import (
    EnvRemoteEndpointLookup,
    HttpRemoteConfigClient,
    RemoteServiceReader,
    is_transient,
    parse_remote_payload,
)
from app_scoped_config.application.ports import RemoteEndpoint
from app_scoped_config.domain.errors import InvalidFormat, SourceReadFailure
from app_scoped_config.domain.sources import ResolutionContext
from tests.support import REMOTE_ENV, StaticRemoteClient


def _context(environ: dict[str, str], app_id: str = "admin") -> ResolutionContext:
    return ResolutionContext(app_id, environ, Path("."), "APP")


ENDPOINT = RemoteEndpoint(
    endpoint="https://config.example",
    client_id="client-id",
    client_secret="client-secret",
    tenant_id="tenant",
    label="prod",
)


def test_lookup_prefers_app_specific_names() -> None:
    environ = dict(REMOTE_ENV)
    environ["CONFIG_SERVICE_CLIENT_ID"] = "generic-id"
    found = EnvRemoteEndpointLookup().lookup(_context(environ))
    assert found is not None
    assert found.client_id == "client-id"
    assert found.app_specific is True


def test_lookup_accepts_prefixed_names() -> None:
    environ = {
        "APP_ADMIN_CONFIG_SERVICE_ENDPOINT": "https://config.example",
        "APP_ADMIN_CONFIG_SERVICE_CLIENT_ID": "id",
        "APP_ADMIN_CONFIG_SERVICE_CLIENT_SECRET": "secret",
        "APP_ADMIN_CONFIG_SERVICE_TENANT_ID": "tenant",
        "APP_ADMIN_CONFIG_SERVICE_LABEL": "staging",
    }
    found = EnvRemoteEndpointLookup().lookup(_context(environ))
    assert found is not None
    assert (found.endpoint, found.label) == ("https://config.example", "staging")


def test_lookup_falls_back_to_generic_credentials() -> None:
    environ = {
        "CONFIG_SERVICE_ENDPOINT_ADMIN": "https://config.example",
        "CONFIG_SERVICE_CLIENT_ID": "id",
        "CONFIG_SERVICE_CLIENT_SECRET": "secret",
        "CONFIG_SERVICE_TENANT_ID": "tenant",
    }
    found = EnvRemoteEndpointLookup().lookup(_context(environ))
    assert found is not None
    assert found.app_specific is False


def test_lookup_requires_app_endpoint() -> None:
    environ = {
        "CONFIG_SERVICE_ENDPOINT": "https://config.example",
        "CONFIG_SERVICE_CLIENT_ID": "id",
        "CONFIG_SERVICE_CLIENT_SECRET": "secret",
        "CONFIG_SERVICE_TENANT_ID": "tenant",
    }
    assert EnvRemoteEndpointLookup().lookup(_context(environ)) is None


def test_lookup_requires_full_credentials() -> None:
    environ = dict(REMOTE_ENV)
    del environ["CONFIG_SERVICE_TENANT_ID_ADMIN"]
    assert EnvRemoteEndpointLookup().lookup(_context(environ)) is None


def test_endpoint_repr_hides_secrets() -> None:
    text = repr(ENDPOINT)
    assert "client-secret" not in text
    assert "client-id" not in text
    assert "https://config.example" in text


def test_parse_remote_payload_accepts_items_and_objects() -> None:
    items = {"items": [{"key": "admin:api.url", "value": "x"}, {"key": "admin:gone", "value": None}]}
    assert parse_remote_payload(items, "admin") == {"api.url": "x"}
    assert parse_remote_payload({"admin:api.url": "y", "plain": 1}, "admin") == {"api.url": "y", "plain": 1}


@pytest.mark.parametrize("payload", [[1, 2], "text", {"items": [{"value": 1}]}])
def test_parse_remote_payload_rejects_malformed(payload: object) -> None:
    with pytest.raises(InvalidFormat):
        parse_remote_payload(payload, "admin")


def test_http_client_sends_credentials_and_query() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"items": [{"key": "admin:api.url", "value": "https://remote"}]})

    client = HttpRemoteConfigClient(transport=httpx.MockTransport(handler))
    payload = asyncio.run(client.fetch(ENDPOINT, "admin", timeout=5))

    assert payload == {"api.url": "https://remote"}
    request = seen[0]
    assert request.url.path == "/kv"
    assert request.url.params["key"] == "admin:*"
    assert request.url.params["label"] == "prod"
    assert request.headers["X-Tenant-Id"] == "tenant"
    expected = base64.b64encode(b"client-id:client-secret").decode()
    assert request.headers["Authorization"] == f"Basic {expected}"


def test_http_client_rejects_non_json() -> None:
    client = HttpRemoteConfigClient(transport=httpx.MockTransport(lambda request: httpx.Response(200, text="<html>")))
    with pytest.raises(InvalidFormat):
        asyncio.run(client.fetch(ENDPOINT, "admin", timeout=5))


def test_reader_flattens_remote_keys() -> None:
    reader = RemoteServiceReader(client=StaticRemoteClient({"api.url": "https://remote", "feature.dark_mode": True}))
    context = _context(dict(REMOTE_ENV))
    assert reader.is_available(context)
    assert reader.location(context) == "https://config.example"
    assert asyncio.run(reader.read(context)) == {"apiurl": "https://remote", "featuredarkmode": True}


def test_reader_unavailable_without_configuration() -> None:
    reader = RemoteServiceReader(client=StaticRemoteClient())
    context = _context({})
    assert not reader.is_available(context)
    assert reader.describe(context) == {"app_id": "admin", "configured": False, "endpoint": None}


def test_reader_describe_masks_client_id() -> None:
    info = RemoteServiceReader(client=StaticRemoteClient()).describe(_context(dict(REMOTE_ENV)))
    assert info["configured"] is True
    assert info["client_id"] == "***"
    assert "client-secret" not in str(info)


@pytest.mark.parametrize(
    "error",
    [
        httpx.ConnectError("connection refused"),
        InvalidFormat("not json"),
    ],
)
def test_reader_wraps_client_errors(error: Exception) -> None:
    reader = RemoteServiceReader(client=StaticRemoteClient(error=error), retry_delay=0.0)
    with pytest.raises(SourceReadFailure) as excinfo:
        asyncio.run(reader.read(_context(dict(REMOTE_ENV))))
    assert excinfo.value.source == "remote-service"


def test_reader_wraps_http_status_errors() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(503, json={"error": "down"}))
    reader = RemoteServiceReader(client=HttpRemoteConfigClient(transport=transport), retry_delay=0.0)
    with pytest.raises(SourceReadFailure, match="HTTP 503"):
        asyncio.run(reader.read(_context(dict(REMOTE_ENV))))


class FlakyRemoteClient:
    """Remote client failing with queued errors before answering."""

    def __init__(self, errors: list[Exception], payload: dict[str, object]) -> None:
        self.errors = list(errors)
        self.payload = payload
        self.calls = 0

    async def fetch(self, endpoint, app_id, *, timeout):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return dict(self.payload)


def test_reader_retries_transient_connect_error() -> None:
    client = FlakyRemoteClient([httpx.ConnectError("connection reset")], {"api.url": "remote-value"})
    reader = RemoteServiceReader(client=client, retry_delay=0.01)
    data = asyncio.run(reader.read(_context(dict(REMOTE_ENV))))
    assert data == {"apiurl": "remote-value"}
    assert client.calls == 2


def test_reader_gives_up_after_max_retries() -> None:
    errors = [httpx.ConnectError(f"attempt {n}") for n in range(5)]
    client = FlakyRemoteClient(errors, {"api.url": "never"})
    reader = RemoteServiceReader(client=client, max_retries=2, retry_delay=0.0)
    with pytest.raises(SourceReadFailure, match="attempt 2"):
        asyncio.run(reader.read(_context(dict(REMOTE_ENV))))
    assert client.calls == 3


def test_reader_does_not_retry_malformed_payloads() -> None:
    client = FlakyRemoteClient([InvalidFormat("not json")], {"api.url": "later"})
    reader = RemoteServiceReader(client=client, retry_delay=0.0)
    with pytest.raises(SourceReadFailure, match="not json"):
        asyncio.run(reader.read(_context(dict(REMOTE_ENV))))
    assert client.calls == 1


def test_reader_retries_server_errors_over_http() -> None:
    statuses = [503, 200]

    def handler(request: httpx.Request) -> httpx.Response:
        status = statuses.pop(0)
        if status != 200:
            return httpx.Response(status, json={"error": "busy"})
        return httpx.Response(200, json={"items": [{"key": "admin:api.url", "value": "remote-value"}]})

    reader = RemoteServiceReader(client=HttpRemoteConfigClient(transport=httpx.MockTransport(handler)), retry_delay=0.0)
    assert asyncio.run(reader.read(_context(dict(REMOTE_ENV)))) == {"apiurl": "remote-value"}
    assert statuses == []


def _status_error(status: int) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "https://config.example/kv")
    return httpx.HTTPStatusError("status", request=request, response=httpx.Response(status, request=request))


@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (httpx.ConnectError("refused"), True),
        (httpx.ReadTimeout("slow"), True),
        (_status_error(503), True),
        (_status_error(429), True),
        (_status_error(404), False),
        (InvalidFormat("bad"), False),
    ],
)
def test_is_transient(error: Exception, expected: bool) -> None:
    assert is_transient(error) is expected
