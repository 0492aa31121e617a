"""Remote configuration service adapter.

Purpose
-------
Fetch an app's settings from a remote key-value configuration service. The
source ranks above every local one whenever it answers.

Contents
--------
* :class:`EnvRemoteEndpointLookup` – endpoint and credential discovery from
  the environment snapshot, app-specific names first.
* :class:`HttpRemoteConfigClient` – ``httpx`` transport for ``GET <endpoint>/kv``.
* :class:`RemoteServiceReader` – the :class:`SourceReader` that ties both
  together and turns every failure into :class:`SourceReadFailure`.
* :func:`parse_remote_payload` – accepts an ``{"items": [...]}`` listing or a
  plain JSON object.
* :func:`is_transient` – which failures the reader retries.

System Role
-----------
Authentication is delegated: credentials travel as HTTP basic auth plus a
tenant header, and hosts needing anything else inject their own
:class:`app_scoped_config.application.ports.RemoteConfigClient`.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Final

import httpx
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt, wait_exponential

from ...application.ports import RemoteConfigClient, RemoteEndpoint, RemoteEndpointLookup
from ...domain.errors import InvalidFormat, SourceReadFailure
from ...domain.keys import canonical_tree
from ...domain.settings import DEFAULT_MAX_RETRIES, DEFAULT_RETRY_DELAY
from ...domain.sources import ResolutionContext, SourceKind
from ...observability import log_debug, log_warning

SERVICE_VAR: Final[str] = "CONFIG_SERVICE"
_CREDENTIAL_FIELDS: Final[tuple[str, ...]] = ("CLIENT_ID", "CLIENT_SECRET", "TENANT_ID")


class EnvRemoteEndpointLookup:
    """Discover the remote endpoint of an app from environment variables.

    Each field is looked up as ``CONFIG_SERVICE_<FIELD>_<APP>``, then
    ``<PREFIX>_<APP>_CONFIG_SERVICE_<FIELD>``, then the generic
    ``CONFIG_SERVICE_<FIELD>``. The endpoint has no generic fallback: an app
    talks to the remote service only when it is configured for it.

    Examples
    --------
    >>> from pathlib import Path
    >>> env = {
    ...     "CONFIG_SERVICE_ENDPOINT_ADMIN": "https://config.example",
    ...     "CONFIG_SERVICE_CLIENT_ID": "id",
    ...     "CONFIG_SERVICE_CLIENT_SECRET": "secret",
    ...     "CONFIG_SERVICE_TENANT_ID_ADMIN": "tenant",
    ... }
    >>> found = EnvRemoteEndpointLookup().lookup(ResolutionContext("admin", env, Path("."), "APP"))
    >>> found.endpoint, found.app_specific
    ('https://config.example', False)
    """

    def lookup(self, context: ResolutionContext) -> RemoteEndpoint | None:
        endpoint, _ = self._field(context, "ENDPOINT", generic=False)
        if not endpoint:
            return None
        credentials: dict[str, str] = {}
        app_specific = True
        for name in _CREDENTIAL_FIELDS:
            value, specific = self._field(context, name, generic=True)
            if not value:
                log_debug("remote_credentials_incomplete", source=SourceKind.REMOTE_SERVICE.value, path=endpoint, missing=name)
                return None
            credentials[name] = value
            app_specific = app_specific and specific
        label, _ = self._field(context, "LABEL", generic=True)
        return RemoteEndpoint(
            endpoint=endpoint,
            client_id=credentials["CLIENT_ID"],
            client_secret=credentials["CLIENT_SECRET"],
            tenant_id=credentials["TENANT_ID"],
            label=label,
            app_specific=app_specific,
        )

    @staticmethod
    def _field(context: ResolutionContext, name: str, *, generic: bool) -> tuple[str | None, bool]:
        """Return ``(value, is_app_specific)`` for one field."""

        environ = context.environ
        token = context.app_token
        for candidate in (
            f"{SERVICE_VAR}_{name}_{token}",
            f"{context.env_prefix}_{token}_{SERVICE_VAR}_{name}",
        ):
            value = environ.get(candidate)
            if value:
                return value, True
        if generic:
            value = environ.get(f"{SERVICE_VAR}_{name}")
            if value:
                return value, False
        return None, False


class HttpRemoteConfigClient:
    """Fetch ``<app>:*`` settings over HTTP with ``httpx``.

    Parameters
    ----------
    transport:
        Optional ``httpx`` transport, e.g. ``httpx.MockTransport`` in tests.
    """

    def __init__(self, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._transport = transport

    async def fetch(self, endpoint: RemoteEndpoint, app_id: str, *, timeout: float) -> Mapping[str, object]:
        params = {"key": f"{app_id}:*"}
        if endpoint.label:
            params["label"] = endpoint.label
        async with httpx.AsyncClient(
            base_url=endpoint.endpoint,
            timeout=timeout,
            transport=self._transport,
            auth=httpx.BasicAuth(endpoint.client_id, endpoint.client_secret),
            headers={"X-Tenant-Id": endpoint.tenant_id, "Accept": "application/json"},
        ) as client:
            response = await client.get("/kv", params=params)
            response.raise_for_status()
            try:
                payload = response.json()
            except ValueError as exc:
                raise InvalidFormat(f"remote response is not JSON: {exc}") from exc
        return parse_remote_payload(payload, app_id)


class RemoteServiceReader:
    """Read the remote configuration service for an app.

    Available only when the endpoint lookup yields an endpoint with a full
    credential triple. The provider applies the caller's timeout around
    :meth:`read`; ``httpx`` gets the same bound for its own socket timeouts.
    Transient failures are retried up to ``max_retries`` times with
    exponential backoff, all within that outer timeout.
    """

    kind = SourceKind.REMOTE_SERVICE

    def __init__(
        self,
        *,
        lookup: RemoteEndpointLookup | None = None,
        client: RemoteConfigClient | None = None,
        timeout: float = 30.0,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
    ) -> None:
        self._lookup = lookup or EnvRemoteEndpointLookup()
        self._client = client or HttpRemoteConfigClient()
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay

    def is_available(self, context: ResolutionContext) -> bool:
        return self._lookup.lookup(context) is not None

    def location(self, context: ResolutionContext) -> str | None:
        endpoint = self._lookup.lookup(context)
        return endpoint.endpoint if endpoint else None

    def describe(self, context: ResolutionContext) -> dict[str, Any]:
        """Summarise the remote setup for *context* without exposing secrets."""

        endpoint = self._lookup.lookup(context)
        if endpoint is None:
            return {"app_id": context.app_id, "configured": False, "endpoint": None}
        return {
            "app_id": context.app_id,
            "configured": True,
            "endpoint": endpoint.endpoint,
            "client_id": "***",
            "tenant_id": endpoint.tenant_id,
            "label": endpoint.label,
            "app_specific_credentials": endpoint.app_specific,
        }

    async def read(self, context: ResolutionContext) -> dict[str, object]:
        endpoint = self._lookup.lookup(context)
        if endpoint is None:
            raise SourceReadFailure(self.kind.value, "no endpoint configured")
        try:
            raw = await self._retrying(endpoint)(self._client.fetch, endpoint, context.app_id, timeout=self.timeout)
        except httpx.HTTPStatusError as exc:
            raise SourceReadFailure(self.kind.value, f"HTTP {exc.response.status_code} from {endpoint.endpoint}") from exc
        except httpx.HTTPError as exc:
            raise SourceReadFailure(self.kind.value, f"request to {endpoint.endpoint} failed: {exc!r}") from exc
        except InvalidFormat as exc:
            raise SourceReadFailure(self.kind.value, str(exc)) from exc
        if not isinstance(raw, Mapping):
            raise SourceReadFailure(self.kind.value, f"client returned {type(raw).__name__}, expected a mapping")
        data = canonical_tree(raw)
        log_debug("remote_configuration_loaded", source=self.kind.value, path=endpoint.endpoint, keys=len(data))
        return data

    def _retrying(self, endpoint: RemoteEndpoint) -> AsyncRetrying:
        """Retry transient failures with exponential backoff, re-raising the last one."""

        def log_retry(state: RetryCallState) -> None:
            error = state.outcome.exception() if state.outcome is not None else None
            log_warning(
                "remote_fetch_retry",
                source=self.kind.value,
                path=endpoint.endpoint,
                attempt=state.attempt_number,
                error=repr(error),
            )

        return AsyncRetrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=self.retry_delay),
            retry=retry_if_exception(is_transient),
            before_sleep=log_retry,
            reraise=True,
        )


def is_transient(exc: BaseException) -> bool:
    """Return ``True`` for failures worth retrying: transport errors, 5xx and 429."""

    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status >= 500 or status == 429
    return isinstance(exc, httpx.TransportError)


def parse_remote_payload(payload: Any, app_id: str) -> dict[str, object]:
    """Turn a remote response body into ``{key: value}`` with the app prefix removed.

    Examples
    --------
    >>> parse_remote_payload({"items": [{"key": "admin:api.url", "value": "x"}]}, "admin")
    {'api.url': 'x'}
    >>> parse_remote_payload({"api.url": "y"}, "admin")
    {'api.url': 'y'}
    """

    if isinstance(payload, Mapping) and isinstance(payload.get("items"), list):
        settings: dict[str, object] = {}
        for item in payload["items"]:
            if not isinstance(item, Mapping) or not isinstance(item.get("key"), str):
                raise InvalidFormat(f"malformed remote item: {item!r}")
            if item.get("value") is None:
                continue
            settings[_strip_app(item["key"], app_id)] = item["value"]
        return settings
    if isinstance(payload, Mapping):
        return {_strip_app(str(key), app_id): value for key, value in payload.items() if value is not None}
    raise InvalidFormat(f"remote payload must be an object, got {type(payload).__name__}")


def _strip_app(key: str, app_id: str) -> str:
    prefix = f"{app_id}:"
    return key[len(prefix) :] if key.startswith(prefix) else key
