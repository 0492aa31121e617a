"""Key spelling reconciliation.

Purpose
-------
One logical setting reaches the engine under several spellings: ``api.url``
from the remote service, ``API_URL`` from the environment, ``apiurl`` once
flattened, or ``{"api": {"url": ...}}`` when nested. This module owns the
rules that turn those spellings into each other so call sites never chain
ad-hoc fallbacks.

Contents
--------
* :func:`flatten_key` – lower-case and drop ``.``/``_`` separators.
* :func:`env_name_to_path` – env-var name to nesting segments.
* :func:`canonical_tree` – rewrite remote payload keys into the env spelling.
* :class:`KeyNormalizer` – ordered lookup strategies over a merged tree.

System Role
-----------
Readers use the transforms before merging so precedence applies across
spellings; :class:`app_scoped_config.domain.config.ResolvedConfiguration`
uses :class:`KeyNormalizer` to answer lookups after merging.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any, Callable, Iterator, Union

ConfigValue = Union[str, bool, int, float]
"""Leaf value of a resolved configuration."""

ConfigTree = Mapping[str, Any]
"""Recursive mapping of ``str`` to ``ConfigValue`` or another ``ConfigTree``."""

_MISSING = object()
_TRIPLE_UNDERSCORE = re.compile(r"_{3,}")
_LEADING_SEPARATOR = re.compile(r"^_*__+")
_TRAILING_SEPARATOR = re.compile(r"__+_*$")


def flatten_key(key: str) -> str:
    """Return *key* lower-cased with dots and underscores removed.

    Examples
    --------
    >>> flatten_key("API_URL"), flatten_key("api.url"), flatten_key("apiUrl")
    ('apiurl', 'apiurl', 'apiurl')
    """

    return key.replace(".", "").replace("_", "").lower()


def env_name_to_path(name: str, prefix: str = "") -> list[str]:
    """Translate an environment variable name into nesting segments.

    ``__`` separates nesting levels; single underscores inside a level are
    dropped so ``API_URL`` and a remote ``api.url`` land on the same key.

    Examples
    --------
    >>> env_name_to_path("APP_ADMIN_API_URL", "APP_ADMIN_")
    ['apiurl']
    >>> env_name_to_path("DB__HOST_NAME")
    ['db', 'hostname']
    >>> env_name_to_path("__LEADING___TRIPLE__")
    ['leading', 'triple']
    """

    remainder = name[len(prefix) :].lower()
    remainder = _TRIPLE_UNDERSCORE.sub("__", remainder)
    remainder = _LEADING_SEPARATOR.sub("", remainder)
    remainder = _TRAILING_SEPARATOR.sub("", remainder)
    segments = [part.replace("_", "") for part in remainder.split("__")]
    return [segment for segment in segments if segment]


def canonical_tree(mapping: ConfigTree) -> dict[str, Any]:
    """Return a copy of *mapping* with every key flattened, recursively.

    Remote services hand out dotted keys; environment readers produce the
    flattened spelling. Rewriting remote keys keeps one merge key per setting.

    Examples
    --------
    >>> canonical_tree({"api.url": "x", "Feature": {"dark_mode": True}})
    {'apiurl': 'x', 'feature': {'darkmode': True}}
    """

    result: dict[str, Any] = {}
    for key, value in mapping.items():
        flattened = flatten_key(str(key))
        if not flattened:
            continue
        if isinstance(value, Mapping):
            existing = result.get(flattened)
            child = canonical_tree(value)
            if isinstance(existing, dict):
                existing.update(child)
                continue
            result[flattened] = child
        else:
            result[flattened] = value
    return result


def iter_leaves(mapping: ConfigTree, prefix: tuple[str, ...] = ()) -> Iterator[tuple[tuple[str, ...], Any]]:
    """Yield ``(path, value)`` for every non-mapping leaf of *mapping*."""

    for key, value in mapping.items():
        path = (*prefix, key)
        if isinstance(value, Mapping):
            yield from iter_leaves(value, path)
        else:
            yield path, value


class KeyNormalizer:
    """Resolve a key against a merged tree regardless of its spelling.

    Strategies run in a fixed order and the first scalar hit wins:

    1. ``exact`` – the key is a top-level entry.
    2. ``flattened`` – :func:`flatten_key` matches the flattened leaf path.
    3. ``dotted`` – ``API_URL`` is retried as ``api.url`` at the top level.
    4. ``nested`` – split on ``.`` and descend, each segment matched exactly
       first and then by its flattened spelling.

    The source mapping is never mutated; the flattened index is built once.

    Examples
    --------
    >>> normalizer = KeyNormalizer({"apiurl": "x", "db": {"host": "h"}})
    >>> normalizer.resolve("api.url"), normalizer.resolve("DB_HOST"), normalizer.resolve("db.host")
    ('x', 'h', 'h')
    >>> normalizer.resolve("missing", default="fallback")
    'fallback'
    """

    def __init__(self, mapping: ConfigTree) -> None:
        self._mapping = mapping
        self._flat_index = _build_flat_index(mapping)
        self._strategies: tuple[tuple[str, Callable[[str], Any]], ...] = (
            ("exact", self._exact),
            ("flattened", self._flattened),
            ("dotted", self._dotted),
            ("nested", self._nested),
        )

    def strategies(self) -> tuple[str, ...]:
        return tuple(name for name, _ in self._strategies)

    def resolve(self, key: str, default: Any = None) -> Any:
        """Return the value stored under any spelling of *key*, else *default*."""

        hit = self.match(key)
        return default if hit is None else hit[1]

    def match(self, key: str) -> tuple[str, Any] | None:
        """Return ``(strategy_name, value)`` for the first hit, or ``None``."""

        if not key:
            return None
        for name, strategy in self._strategies:
            value = strategy(key)
            if value is not _MISSING and not isinstance(value, Mapping):
                return name, value
        return None

    def _exact(self, key: str) -> Any:
        return self._mapping.get(key, _MISSING)

    def _flattened(self, key: str) -> Any:
        return self._flat_index.get(flatten_key(key), _MISSING)

    def _dotted(self, key: str) -> Any:
        dotted = key.lower().replace("_", ".")
        if dotted == key:
            return _MISSING
        return self._mapping.get(dotted, _MISSING)

    def _nested(self, key: str) -> Any:
        current: Any = self._mapping
        for segment in key.split("."):
            if not isinstance(current, Mapping):
                return _MISSING
            if segment in current:
                current = current[segment]
                continue
            wanted = flatten_key(segment)
            candidates = [name for name in current if flatten_key(str(name)) == wanted]
            if not candidates:
                return _MISSING
            current = current[candidates[0]]
        return current


def _build_flat_index(mapping: ConfigTree) -> dict[str, Any]:
    """Index leaves by flattened path, shallower paths taking precedence."""

    index: dict[str, Any] = {}
    leaves = sorted(iter_leaves(mapping), key=lambda item: len(item[0]))
    for path, value in leaves:
        index.setdefault(flatten_key("".join(str(part) for part in path)), value)
    return index
