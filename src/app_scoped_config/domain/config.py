"""Domain-level resolved configuration value object.

Purpose
-------
Anchor the immutable :class:`ResolvedConfiguration` that carries one app's
merged configuration, per-key provenance and per-source diagnostics through
the system. The module contains no I/O.

Contents
--------
* :class:`SourceInfo` – typed metadata describing which source won a key.
* :class:`SourceReport` – outcome of one source during a resolution.
* :class:`ResolvedConfiguration` – ``Mapping`` implementation with spelling
  tolerant lookups, provenance queries and JSON export.
* :func:`_deepcopy_mapping` / :func:`_deepcopy_value` – clone helpers that
  understand ``mappingproxy``.

System Role
-----------
:class:`app_scoped_config.core.AppScopedConfigurationProvider` produces one
instance per resolution and the cache swaps whole instances, so readers never
observe a configuration under construction.
"""

from __future__ import annotations

import json
from collections.abc import Mapping as MappingABC
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Iterator, TypedDict

from .keys import KeyNormalizer


class SourceInfo(TypedDict):
    """Describe the origin of a resolved configuration key.

    Attributes
    ----------
    source:
        Source kind name (``"remote-service"``, ``"app-env-vars"``, ...).
    priority:
        Priority of that source in the canonical table.
    path:
        Filesystem path or endpoint that produced the key, ``None`` for the
        environment.
    key:
        Fully qualified dotted key, e.g. ``"database.url"``.
    """

    source: str
    priority: int
    path: str | None
    key: str


@dataclass(frozen=True)
class SourceReport:
    """What happened to one source during a resolution attempt.

    ``available`` is ``False`` when the source was skipped; ``error`` holds the
    failure text when an available source failed and contributed nothing.
    """

    source: str
    priority: int
    available: bool
    keys: int = 0
    error: str | None = None
    path: str | None = None
    elapsed_ms: float = 0.0

    @property
    def contributed(self) -> bool:
        return self.available and self.error is None and self.keys > 0

    def as_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "priority": self.priority,
            "available": self.available,
            "keys": self.keys,
            "error": self.error,
            "path": self.path,
            "elapsed_ms": round(self.elapsed_ms, 3),
        }


@dataclass(frozen=True)
class ResolvedConfiguration(MappingABC[str, Any]):
    """Immutable merged configuration for a single app id.

    Why
    ----
    Callers need a read-only structure that behaves like a dictionary, answers
    lookups under any key spelling, and explains which source won each value.

    Parameters
    ----------
    app_id:
        App scope this configuration was resolved for.
    _data:
        Merged tree produced by :func:`app_scoped_config.application.merge.merge_sources`.
    _meta:
        Mapping from dotted leaf keys to :class:`SourceInfo`.
    resolved_at:
        Epoch seconds at which the resolution completed.
    reports:
        One :class:`SourceReport` per source considered.

    Examples
    --------
    >>> cfg = ResolvedConfiguration(
    ...     "admin",
    ...     {"apiurl": "https://remote", "db": {"host": "localhost"}},
    ...     {
    ...         "apiurl": {"source": "remote-service", "priority": 5, "path": None, "key": "apiurl"},
    ...         "db.host": {"source": "root-dotenv-file", "priority": 1, "path": "/srv/.env", "key": "db.host"},
    ...     },
    ... )
    >>> cfg.lookup("api.url")
    'https://remote'
    >>> cfg.get("db.host")
    'localhost'
    >>> cfg.origin("db")["source"]
    'root-dotenv-file'
    """

    app_id: str
    _data: Mapping[str, Any]
    _meta: Mapping[str, SourceInfo]
    resolved_at: float = 0.0
    reports: tuple[SourceReport, ...] = ()
    _normalizer: KeyNormalizer = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        """Freeze the incoming mappings and build the lookup index once."""

        frozen = _freeze_tree(self._data)
        object.__setattr__(self, "_data", frozen)
        object.__setattr__(self, "_meta", MappingProxyType(dict(self._meta)))
        object.__setattr__(self, "reports", tuple(self.reports))
        object.__setattr__(self, "_normalizer", KeyNormalizer(frozen))

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def get(self, key: str, default: Any = None) -> Any:  # type: ignore[override]
        """Resolve *key* as a dotted path (subtrees included), else *default*."""

        current: Any = self._data
        for part in key.split("."):
            if not isinstance(current, MappingABC) or part not in current:
                return default
            current = current[part]
        return current

    def lookup(self, key: str, default: Any = None) -> Any:
        """Return the scalar stored under any spelling of *key*, else *default*."""

        return self._normalizer.resolve(key, default)

    def origin(self, key: str) -> SourceInfo | None:
        """Return provenance for *key*.

        Leaf keys return their own entry. For a branch the entry of the
        highest-priority leaf beneath it is returned, naming the source that
        won at least part of that subtree.
        """

        if key in self._meta:
            return self._meta[key]
        prefix = key + "."
        beneath = [info for dotted, info in self._meta.items() if dotted.startswith(prefix)]
        if not beneath:
            return None
        return max(beneath, key=lambda info: info["priority"])

    @property
    def provenance(self) -> Mapping[str, SourceInfo]:
        return self._meta

    def contributing_sources(self) -> tuple[str, ...]:
        return tuple(report.source for report in self.reports if report.contributed)

    def failed_sources(self) -> tuple[SourceReport, ...]:
        return tuple(report for report in self.reports if report.error is not None)

    def as_dict(self) -> dict[str, Any]:
        """Return a deep, mutable ``dict`` copy of the configuration tree.

        Examples
        --------
        >>> cfg = ResolvedConfiguration("admin", {"db": {"port": 5432}}, {})
        >>> clone = cfg.as_dict()
        >>> clone["db"]["port"] = 1
        >>> cfg.get("db.port")
        5432
        """

        return _deepcopy_mapping(self._data)

    def to_json(self, *, indent: int | None = None) -> str:
        """Serialise the configuration tree to JSON.

        Examples
        --------
        >>> ResolvedConfiguration("admin", {"feature": True}, {}).to_json()
        '{"feature":true}'
        """

        return json.dumps(self.as_dict(), indent=indent, separators=(",", ":"), ensure_ascii=False)


def empty_configuration(app_id: str, resolved_at: float = 0.0) -> ResolvedConfiguration:
    return ResolvedConfiguration(app_id, {}, {}, resolved_at)


def _freeze_tree(mapping: Mapping[str, Any]) -> Mapping[str, Any]:
    """Return a read-only proxy over a deep copy of *mapping*."""

    frozen: dict[str, Any] = {}
    for key, value in mapping.items():
        frozen[key] = _freeze_tree(value) if isinstance(value, MappingABC) else _deepcopy_value(value)
    return MappingProxyType(frozen)


def _deepcopy_mapping(mapping: Mapping[str, Any]) -> dict[str, Any]:
    """Recursively clone a mapping so callers receive a mutable copy.

    ``copy.deepcopy`` cannot handle the ``mappingproxy`` objects used by
    :class:`ResolvedConfiguration`.

    Examples
    --------
    >>> _deepcopy_mapping({"a": {"b": 1}})["a"]["b"]
    1
    """

    result: dict[str, Any] = {}
    for key, value in mapping.items():
        if isinstance(value, MappingABC):
            result[key] = _deepcopy_mapping(value)
        else:
            result[key] = _deepcopy_value(value)
    return result


def _deepcopy_value(value: Any) -> Any:
    if isinstance(value, MappingABC):
        return _deepcopy_mapping(value)
    if isinstance(value, list):
        return [_deepcopy_value(item) for item in value]
    if isinstance(value, (set, tuple)):
        return type(value)(_deepcopy_value(item) for item in value)
    return value
