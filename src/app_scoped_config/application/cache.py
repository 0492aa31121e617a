"""Per-app cache of resolved configurations.

Purpose
-------
Hold the last successful resolution for each app id and answer reads without
touching any source. Entries are replaced wholesale; nothing ever edits an
entry in place, so a reader sees either the previous configuration or the new
one.

Contents
--------
* :class:`CacheEntry` – one resolution plus the time it was stored.
* :class:`CacheStats` – hit/miss bookkeeping for diagnostics.
* :class:`ResolutionCache` – ``get`` / ``put`` / ``invalidate`` / ``clear``.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable

from ..domain.config import ResolvedConfiguration
from ..observability import log_debug


@dataclass(frozen=True)
class CacheEntry:
    configuration: ResolvedConfiguration
    stored_at: float

    def expired(self, now: float, ttl: float | None) -> bool:
        return ttl is not None and now - self.stored_at >= ttl


@dataclass(frozen=True)
class CacheStats:
    hits: int
    misses: int
    writes: int
    invalidations: int
    entries: int

    def as_dict(self) -> dict[str, int]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "writes": self.writes,
            "invalidations": self.invalidations,
            "entries": self.entries,
        }


class ResolutionCache:
    """Cache one :class:`ResolvedConfiguration` per app id.

    Why
    ----
    Resolution may hit the network; repeated lookups for the same app should
    be served from memory until a caller invalidates or refreshes.

    Parameters
    ----------
    ttl:
        Optional lifetime in seconds. Expired entries read as misses and are
        dropped. ``None`` keeps entries until invalidated.
    clock:
        Monotonic time source, injectable for tests.

    Examples
    --------
    >>> from app_scoped_config.domain.config import empty_configuration
    >>> cache = ResolutionCache()
    >>> cache.get("admin") is None
    True
    >>> cache.put("admin", empty_configuration("admin"))
    >>> cache.get("admin").app_id
    'admin'
    >>> cache.invalidate("admin")
    True
    """

    def __init__(self, *, ttl: float | None = None, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl = ttl
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._writes = 0
        self._invalidations = 0

    @property
    def ttl(self) -> float | None:
        return self._ttl

    def get(self, app_id: str) -> ResolvedConfiguration | None:
        """Return the cached configuration for *app_id*, or ``None`` on a miss."""

        with self._lock:
            entry = self._entries.get(app_id)
            if entry is not None and entry.expired(self._clock(), self._ttl):
                del self._entries[app_id]
                log_debug("cache_entry_expired", app_id=app_id)
                entry = None
            if entry is None:
                self._misses += 1
                return None
            self._hits += 1
            return entry.configuration

    def put(self, app_id: str, configuration: ResolvedConfiguration) -> None:
        """Store *configuration*, replacing any previous entry in one step."""

        entry = CacheEntry(configuration, self._clock())
        with self._lock:
            self._entries[app_id] = entry
            self._writes += 1

    def invalidate(self, app_id: str) -> bool:
        """Drop the entry for *app_id*; return whether one existed."""

        with self._lock:
            removed = self._entries.pop(app_id, None) is not None
            if removed:
                self._invalidations += 1
            return removed

    def clear(self) -> None:
        with self._lock:
            self._invalidations += len(self._entries)
            self._entries.clear()

    def app_ids(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    def __contains__(self, app_id: object) -> bool:
        with self._lock:
            return app_id in self._entries

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                writes=self._writes,
                invalidations=self._invalidations,
                entries=len(self._entries),
            )
