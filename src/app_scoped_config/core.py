"""Composition root for ``app_scoped_config``.

Purpose
-------
Provide the single entry point that gathers every configuration source for an
app id, merges them by priority, and caches the result. The module wires the
default readers together and exports only stable, consumer-ready APIs.

Contents
--------
* :func:`default_readers` – the six readers in their canonical setup.
* :func:`discover_apps` – app ids found under ``<base>/apps``.
* :class:`AppScopedConfigurationProvider` – the orchestrator.
* :func:`read_app_config` / :func:`read_app_config_value` – synchronous
  one-shot helpers.
* :func:`configuration_response` – the ``{success, data, error, timestamp}``
  shape HTTP collaborators serialise.

System Role
-----------
Readers run concurrently and a failure in any of them is recorded and then
ignored, except for the process environment, which is the floor every
resolution stands on. A resolution either completes and replaces the cache
entry in one assignment, or leaves the cache untouched.
"""

from __future__ import annotations

import asyncio
import os
import time
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Iterable, Mapping

from .adapters.dotenv.default import AppDotEnvReader, RootDotEnvReader
from .adapters.env.default import AppEnvVarsReader, GenericEnvVarsReader, ProcessEnvReader, environ_snapshot
from .adapters.remote.default import RemoteServiceReader
from .application.cache import ResolutionCache
from .application.merge import SourceLayer, merge_sources, reconcile_spellings
from .application.ports import Merger, RemoteConfigClient, RemoteEndpointLookup, SourceReader
from .domain.config import ResolvedConfiguration, SourceInfo, SourceReport
from .domain.errors import (
    ConfigError,
    FatalEnvironmentFailure,
    InvalidAppId,
    InvalidFormat,
    RefreshFailure,
    SourceReadFailure,
    ValidationError,
)
from .domain.keys import ConfigValue, KeyNormalizer
from .domain.settings import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_REMOTE_TIMEOUT,
    DEFAULT_RETRY_DELAY,
    ProviderSettings,
    default_env_prefix,
)
from .domain.sources import (
    SOURCE_PRIORITIES,
    ResolutionContext,
    SourceDescriptor,
    SourceKind,
    is_valid_app_id,
    validate_app_id,
)
from .observability import log_debug, log_error, log_info, log_warning, make_event, new_trace_id


def default_readers(
    *,
    remote_lookup: RemoteEndpointLookup | None = None,
    remote_client: RemoteConfigClient | None = None,
    remote_timeout: float = DEFAULT_REMOTE_TIMEOUT,
    max_retries: int = DEFAULT_MAX_RETRIES,
    retry_delay: float = DEFAULT_RETRY_DELAY,
) -> tuple[SourceReader, ...]:
    """Return one reader per :class:`SourceKind`, highest priority first."""

    return (
        RemoteServiceReader(
            lookup=remote_lookup,
            client=remote_client,
            timeout=remote_timeout,
            max_retries=max_retries,
            retry_delay=retry_delay,
        ),
        AppEnvVarsReader(),
        GenericEnvVarsReader(),
        AppDotEnvReader(),
        RootDotEnvReader(),
        ProcessEnvReader(),
    )


def discover_apps(base_path: Path) -> frozenset[str]:
    """Return the valid app ids that have a directory under ``<base_path>/apps``.

    Examples
    --------
    >>> from tempfile import TemporaryDirectory
    >>> tmp = TemporaryDirectory()
    >>> (Path(tmp.name) / "apps" / "admin").mkdir(parents=True)
    >>> sorted(discover_apps(Path(tmp.name)))
    ['admin']
    >>> tmp.cleanup()
    """

    apps_dir = base_path / "apps"
    try:
        entries = list(apps_dir.iterdir())
    except OSError:
        return frozenset()
    return frozenset(entry.name for entry in entries if entry.is_dir() and is_valid_app_id(entry.name))


@dataclass
class _SourceOutcome:
    report: SourceReport
    data: Mapping[str, object]
    error: BaseException | None = None


@dataclass
class _InFlight:
    task: asyncio.Task[ResolvedConfiguration]
    waiters: int = 0


class AppScopedConfigurationProvider:
    """Resolve, cache and refresh configuration per app id.

    Why
    ----
    Callers want one merged, consistent view of an app's configuration that
    prefers the remote service and degrades to local sources without ever
    handing back a half-merged result.

    Parameters
    ----------
    settings:
        Engine settings; defaults to :meth:`ProviderSettings.from_environ`.
    readers:
        Source readers to consult. Defaults to :func:`default_readers`.
    environ_factory:
        Callable returning the process environment. It is called once for the
        first resolution and again only on :meth:`refresh_configuration`.
    remote_lookup / remote_client:
        Replace the remote endpoint discovery or HTTP transport of the default
        readers.
    cache:
        Resolution cache; defaults to one honouring ``settings.cache_ttl``.
    merger:
        Merge policy, :func:`merge_sources` unless replaced.
    clock:
        Wall clock used for ``resolved_at`` timestamps.

    Examples
    --------
    >>> import asyncio
    >>> from tempfile import TemporaryDirectory
    >>> tmp = TemporaryDirectory()
    >>> provider = AppScopedConfigurationProvider(
    ...     ProviderSettings(base_path=Path(tmp.name)),
    ...     environ_factory=lambda: {"API_URL": "https://env.example"},
    ... )
    >>> asyncio.run(provider.get_configuration_value("admin", "api.url"))
    'https://env.example'
    >>> tmp.cleanup()
    """

    def __init__(
        self,
        settings: ProviderSettings | None = None,
        *,
        readers: Iterable[SourceReader] | None = None,
        environ_factory: Callable[[], Mapping[str, str]] | None = None,
        remote_lookup: RemoteEndpointLookup | None = None,
        remote_client: RemoteConfigClient | None = None,
        cache: ResolutionCache | None = None,
        merger: Merger = merge_sources,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._environ_factory = environ_factory or (lambda: os.environ)
        self.settings = settings or ProviderSettings.from_environ(os.environ)
        if readers is None:
            readers = default_readers(
                remote_lookup=remote_lookup,
                remote_client=remote_client,
                remote_timeout=self.settings.remote_timeout,
                max_retries=self.settings.max_retries,
                retry_delay=self.settings.retry_delay,
            )
        self._readers: tuple[SourceReader, ...] = tuple(readers)
        self._cache = cache or ResolutionCache(ttl=self.settings.cache_ttl)
        self._merger = merger
        self._clock = clock
        self._snapshot: Mapping[str, str] | None = None
        self._inflight: dict[str, _InFlight] = {}

    @property
    def readers(self) -> tuple[SourceReader, ...]:
        return self._readers

    async def get_app_configuration(self, app_id: str) -> ResolvedConfiguration:
        """Return the merged configuration for *app_id*.

        Served from the cache when present; otherwise resolved once, with
        concurrent callers for the same app id sharing that one resolution.

        Raises
        ------
        InvalidAppId
            Before any source is consulted, when *app_id* is not a safe id.
        FatalEnvironmentFailure
            When the process environment itself cannot be read.
        """

        validate_app_id(app_id)
        cached = self._cache.get(app_id)
        if cached is not None:
            log_debug("configuration_cache_hit", app_id=app_id, resolved_at=cached.resolved_at)
            return cached
        environ = self._environment()
        return await self._join(app_id, lambda: self._resolve_and_store(app_id, environ))

    async def get_configuration_value(self, app_id: str, key: str, default: Any = None) -> ConfigValue | Any:
        """Return the value of *key* under any spelling, or *default* on a miss."""

        configuration = await self.get_app_configuration(app_id)
        return configuration.lookup(key, default)

    async def refresh_configuration(self, app_id: str) -> ResolvedConfiguration:
        """Re-snapshot the environment and resolve *app_id* regardless of the cache.

        The cache entry is replaced only once the new resolution completes.
        Any failure leaves the previous entry in place and is reported as
        :class:`RefreshFailure`.
        """

        validate_app_id(app_id)
        while (pending := self._inflight.get(app_id)) is not None:
            await asyncio.wait([pending.task])
        try:
            environ = self._take_snapshot()
            resolved = await self._join(app_id, lambda: self._resolve_and_store(app_id, environ))
        except ConfigError as exc:
            log_warning("refresh_failed", app_id=app_id, error=str(exc))
            raise RefreshFailure(app_id, str(exc)) from exc
        self._snapshot = environ
        log_info("configuration_refreshed", app_id=app_id, keys=len(resolved))
        return resolved

    def invalidate(self, app_id: str) -> bool:
        """Drop the cached configuration of *app_id* so the next read resolves again."""

        validate_app_id(app_id)
        return self._cache.invalidate(app_id)

    def clear(self) -> None:
        self._cache.clear()

    def available_apps(self) -> list[str]:
        """Return app ids with a directory under ``<base>/apps`` or a cached resolution."""

        return sorted(discover_apps(self.settings.base_path) | set(self._cache.app_ids()))

    def cache_stats(self) -> dict[str, int]:
        return self._cache.stats().as_dict()

    def describe_sources(self, app_id: str) -> list[SourceDescriptor]:
        """Return every reader's availability for *app_id*, highest priority first."""

        context = self._context(validate_app_id(app_id), self._environment())
        descriptors = [SourceDescriptor(reader.kind, app_id, _safe_available(reader, context)) for reader in self._readers]
        return sorted(descriptors, key=lambda descriptor: descriptor.priority, reverse=True)

    def remote_info(self, app_id: str) -> dict[str, Any]:
        """Describe the remote service setup for *app_id* with secrets masked."""

        context = self._context(validate_app_id(app_id), self._environment())
        for reader in self._readers:
            if isinstance(reader, RemoteServiceReader):
                return reader.describe(context)
        return {"app_id": app_id, "configured": False, "endpoint": None}

    def _environment(self) -> Mapping[str, str]:
        if self._snapshot is None:
            self._snapshot = self._take_snapshot()
        return self._snapshot

    def _take_snapshot(self) -> Mapping[str, str]:
        try:
            return MappingProxyType(environ_snapshot(self._environ_factory()))
        except Exception as exc:
            log_error("environment_snapshot_failed", error=repr(exc))
            raise FatalEnvironmentFailure(f"cannot snapshot the process environment: {exc}") from exc

    def _context(self, app_id: str, environ: Mapping[str, str]) -> ResolutionContext:
        return ResolutionContext(
            app_id=app_id,
            environ=environ,
            base_path=self.settings.base_path,
            env_prefix=self.settings.env_prefix,
            known_apps=discover_apps(self.settings.base_path),
        )

    async def _join(
        self, app_id: str, start: Callable[[], Awaitable[ResolvedConfiguration]]
    ) -> ResolvedConfiguration:
        """Await the in-flight resolution of *app_id*, starting one if none runs.

        The task is shielded from any single caller's cancellation and is
        cancelled only when its last waiter goes away.
        """

        flight = self._inflight.get(app_id)
        if flight is None:
            task = asyncio.ensure_future(start())
            flight = _InFlight(task)
            self._inflight[app_id] = flight
            task.add_done_callback(lambda done, flight=flight: self._settle(app_id, flight))
        else:
            log_debug("resolution_joined", app_id=app_id, waiters=flight.waiters)
        flight.waiters += 1
        try:
            return await asyncio.shield(flight.task)
        finally:
            flight.waiters -= 1
            if flight.waiters == 0 and not flight.task.done():
                log_debug("resolution_abandoned", app_id=app_id)
                flight.task.cancel()

    def _settle(self, app_id: str, flight: _InFlight) -> None:
        if self._inflight.get(app_id) is flight:
            del self._inflight[app_id]
        if not flight.task.cancelled():
            flight.task.exception()

    async def _resolve_and_store(self, app_id: str, environ: Mapping[str, str]) -> ResolvedConfiguration:
        resolved = await self._resolve(app_id, environ)
        self._cache.put(app_id, resolved)
        return resolved

    async def _resolve(self, app_id: str, environ: Mapping[str, str]) -> ResolvedConfiguration:
        new_trace_id()
        context = self._context(app_id, environ)
        outcomes = await asyncio.gather(*(self._read_source(reader, context) for reader in self._readers))
        for outcome in outcomes:
            if outcome.report.source == SourceKind.PROCESS_ENV.value and outcome.error is not None:
                log_error("process_environment_failed", app_id=app_id, error=outcome.report.error)
                raise FatalEnvironmentFailure(
                    f"process environment could not be read for app {app_id!r}: {outcome.report.error}"
                ) from outcome.error
        layers = [
            SourceLayer(outcome.report.priority, outcome.report.source, outcome.data, outcome.report.path)
            for outcome in outcomes
            if outcome.data
        ]
        merged, meta = self._merger(layers)
        merged, meta, dropped = reconcile_spellings(merged, meta)
        if dropped:
            log_debug("key_spelling_collision", app_id=app_id, dropped=dropped)
        resolved = ResolvedConfiguration(
            app_id,
            merged,
            meta,
            resolved_at=self._clock(),
            reports=tuple(sorted((outcome.report for outcome in outcomes), key=lambda r: r.priority, reverse=True)),
        )
        log_info(
            "configuration_merged",
            app_id=app_id,
            keys=len(resolved),
            sources=list(resolved.contributing_sources()),
            failed=[report.source for report in resolved.failed_sources()],
        )
        return resolved

    async def _read_source(self, reader: SourceReader, context: ResolutionContext) -> _SourceOutcome:
        """Read one source, turning every failure into a recorded, isolated outcome."""

        kind = reader.kind
        started = time.perf_counter()
        try:
            available = reader.is_available(context)
            location = reader.location(context) if available else None
        except Exception as exc:
            return self._failed(kind, None, started, exc)
        if not available:
            log_debug("source_skipped", **make_event(kind.value, None, {"app_id": context.app_id}))
            return _SourceOutcome(SourceReport(kind.value, kind.priority, available=False), {})
        try:
            pending = reader.read(context)
            if kind is SourceKind.REMOTE_SERVICE:
                data = await asyncio.wait_for(pending, timeout=self.settings.remote_timeout)
            else:
                data = await pending
            if not isinstance(data, Mapping):
                raise InvalidFormat(f"{kind.value} returned {type(data).__name__}, expected a mapping")
        except asyncio.TimeoutError as exc:
            failure = SourceReadFailure(kind.value, f"timed out after {self.settings.remote_timeout}s")
            failure.__cause__ = exc
            return self._failed(kind, location, started, failure)
        except Exception as exc:
            return self._failed(kind, location, started, exc)
        elapsed = (time.perf_counter() - started) * 1000
        log_debug("source_read", **make_event(kind.value, location, {"app_id": context.app_id, "keys": len(data)}))
        report = SourceReport(kind.value, kind.priority, available=True, keys=len(data), path=location, elapsed_ms=elapsed)
        return _SourceOutcome(report, data)

    @staticmethod
    def _failed(kind: SourceKind, location: str | None, started: float, exc: BaseException) -> _SourceOutcome:
        message = str(exc) if isinstance(exc, SourceReadFailure) else f"{kind.value}: {type(exc).__name__}: {exc}"
        log_warning("source_read_failed", **make_event(kind.value, location, {"error": message}))
        report = SourceReport(
            kind.value,
            kind.priority,
            available=True,
            error=message,
            path=location,
            elapsed_ms=(time.perf_counter() - started) * 1000,
        )
        return _SourceOutcome(report, {}, exc)


def _safe_available(reader: SourceReader, context: ResolutionContext) -> bool:
    try:
        return reader.is_available(context)
    except Exception as exc:
        log_debug("source_availability_failed", **make_event(reader.kind.value, None, {"error": repr(exc)}))
        return False


def read_app_config(
    app_id: str,
    *,
    base_path: str | Path | None = None,
    env_prefix: str | None = None,
    remote_timeout: float | None = None,
    environ: Mapping[str, str] | None = None,
) -> ResolvedConfiguration:
    """Resolve *app_id* once, synchronously, and return the configuration.

    Convenience for scripts and CLIs without an event loop; long-lived hosts
    keep an :class:`AppScopedConfigurationProvider` to benefit from caching.
    """

    provider = _one_shot_provider(base_path, env_prefix, remote_timeout, environ)
    return asyncio.run(provider.get_app_configuration(app_id))


def read_app_config_value(
    app_id: str,
    key: str,
    default: Any = None,
    *,
    base_path: str | Path | None = None,
    env_prefix: str | None = None,
    remote_timeout: float | None = None,
    environ: Mapping[str, str] | None = None,
) -> Any:
    """Synchronous form of :meth:`AppScopedConfigurationProvider.get_configuration_value`."""

    return read_app_config(
        app_id, base_path=base_path, env_prefix=env_prefix, remote_timeout=remote_timeout, environ=environ
    ).lookup(key, default)


def _one_shot_provider(
    base_path: str | Path | None,
    env_prefix: str | None,
    remote_timeout: float | None,
    environ: Mapping[str, str] | None,
) -> AppScopedConfigurationProvider:
    source = os.environ if environ is None else environ
    settings = ProviderSettings.from_environ(
        source,
        base_path=Path(base_path) if base_path is not None else None,
        env_prefix=env_prefix,
        remote_timeout=remote_timeout,
    )
    return AppScopedConfigurationProvider(settings, environ_factory=lambda: source)


def configuration_response(
    configuration: ResolvedConfiguration | None = None,
    error: BaseException | str | None = None,
    *,
    clock: Callable[[], float] = time.time,
) -> dict[str, Any]:
    """Shape a resolution outcome as ``{success, data?, error?, timestamp}``.

    ``timestamp`` is in epoch milliseconds.

    Examples
    --------
    >>> configuration_response(error="boom", clock=lambda: 1.5)
    {'success': False, 'error': 'boom', 'timestamp': 1500}
    """

    response: dict[str, Any] = {"success": error is None and configuration is not None}
    if configuration is not None and error is None:
        response["data"] = configuration.as_dict()
    if error is not None:
        response["error"] = str(error)
    response["timestamp"] = int(clock() * 1000)
    return response


__all__ = [
    "AppScopedConfigurationProvider",
    "ConfigError",
    "ConfigValue",
    "FatalEnvironmentFailure",
    "InvalidAppId",
    "InvalidFormat",
    "KeyNormalizer",
    "ProviderSettings",
    "RefreshFailure",
    "ResolvedConfiguration",
    "SOURCE_PRIORITIES",
    "SourceDescriptor",
    "SourceInfo",
    "SourceKind",
    "SourceReadFailure",
    "SourceReport",
    "ValidationError",
    "configuration_response",
    "default_env_prefix",
    "default_readers",
    "discover_apps",
    "merge_sources",
    "read_app_config",
    "read_app_config_value",
]
