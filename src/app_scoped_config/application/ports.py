"""Application-layer ports describing adapter responsibilities.

Purpose
-------
Define the structural contracts that adapters must satisfy so the provider
can orchestrate resolution without depending on concrete implementations.

Contents
--------
* :class:`SourceReader` – one configuration origin for an app id.
* :class:`RemoteEndpoint` – endpoint plus credential triple for one app.
* :class:`RemoteEndpointLookup` – discovers a :class:`RemoteEndpoint`.
* :class:`RemoteConfigClient` – fetches raw settings from the remote service.
* :class:`Merger` – combines source layers and produces provenance metadata.

System Role
-----------
These protocols enforce Dependency Inversion. Each adapter implements one
protocol so tests can swap in fakes and hosts can swap in their own transport.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Mapping, Protocol, Tuple, runtime_checkable

from ..domain.sources import ResolutionContext, SourceKind


@runtime_checkable
class SourceReader(Protocol):
    """Read one configuration source for the app id in a resolution context.

    Why
    ----
    The provider treats all six origins uniformly: ask whether the source
    applies, then read it, isolating any failure to that source.

    Methods
    -------
    :meth:`is_available`
        Cheap predicate without I/O failure modes (env lookups, ``is_file``).
    :meth:`read`
        Return a configuration tree or raise
        :class:`app_scoped_config.domain.errors.SourceReadFailure`.
    """

    kind: SourceKind

    def is_available(self, context: ResolutionContext) -> bool:
        """Return ``True`` when the source applies to ``context.app_id``."""

    async def read(self, context: ResolutionContext) -> Mapping[str, object]:
        """Return the source's configuration tree for ``context.app_id``."""

    def location(self, context: ResolutionContext) -> str | None:
        """Return the file path or endpoint backing the source, if any."""


@dataclass(frozen=True)
class RemoteEndpoint:
    """Where and as whom to fetch remote configuration for one app.

    ``client_secret`` is excluded from ``repr`` so endpoints can be logged.
    """

    endpoint: str
    client_id: str
    client_secret: str
    tenant_id: str
    label: str | None = None
    app_specific: bool = True

    def __repr__(self) -> str:
        return (
            f"RemoteEndpoint(endpoint={self.endpoint!r}, client_id={_mask(self.client_id)!r}, "
            f"tenant_id={self.tenant_id!r}, label={self.label!r}, app_specific={self.app_specific!r})"
        )


@runtime_checkable
class RemoteEndpointLookup(Protocol):
    """Decide whether an app has a configured endpoint and credential triple."""

    def lookup(self, context: ResolutionContext) -> RemoteEndpoint | None:
        """Return the endpoint for ``context.app_id`` or ``None`` when unconfigured."""


@runtime_checkable
class RemoteConfigClient(Protocol):
    """Fetch the raw key/value settings stored remotely for one app."""

    async def fetch(self, endpoint: RemoteEndpoint, app_id: str, *, timeout: float) -> Mapping[str, object]:
        """Return settings keyed as stored remotely (``api.url`` style)."""


class Merger(Protocol):
    """Combine source layers and produce both merged data and provenance metadata."""

    def __call__(
        self, layers: Iterable[tuple[int, str, Mapping[str, object], str | None]]
    ) -> Tuple[dict[str, object], dict[str, dict[str, object]]]:
        """Deterministically merge *layers* honouring priority."""


def _mask(secret: str) -> str:
    return "***" if secret else ""
