"""Application-layer precedence merge policy.

Purpose
-------
Convert the payloads of several ranked sources into a single configuration
tree while tracking which source won each leaf. The module is free of I/O so
it can be exercised directly by property tests.

Contents
    - ``SourceLayer``: ``(priority, source, data, path)`` tuple.
    - ``merge_sources``: public entry point; stable-sorts by priority and folds.
    - ``deep_merge``: two-argument pure form used by callers without provenance.
    - ``_merge_mapping`` / ``_merge_branch`` / ``_set_scalar``: recursive
      stanzas that keep precedence logic readable.
    - ``_clear_branch``: drops provenance of a subtree that was replaced.
    - ``reconcile_spellings``: keeps one leaf per flattened key, by priority.

System Role
-----------
Receives layers from :class:`app_scoped_config.core.AppScopedConfigurationProvider`
and returns the data consumed by
:class:`app_scoped_config.domain.config.ResolvedConfiguration`.
"""

from __future__ import annotations

from collections.abc import Mapping
from copy import deepcopy
from typing import Iterable, NamedTuple

from ..domain.config import SourceInfo
from ..domain.keys import flatten_key, iter_leaves


class SourceLayer(NamedTuple):
    """One source's contribution to a merge."""

    priority: int
    source: str
    data: Mapping[str, object]
    path: str | None = None


def merge_sources(
    layers: Iterable[tuple[int, str, Mapping[str, object], str | None]],
) -> tuple[dict[str, object], dict[str, SourceInfo]]:
    """Merge *layers* so higher priorities win, per leaf, recursively.

    Why
    ----
    Centralising merge semantics guarantees deterministic precedence however
    the readers happened to settle.

    What
    ----
    Stable-sorts layers ascending by priority (on a tie the later-listed layer
    wins), then folds them left to right. Where both sides hold a mapping the
    merge recurses; any other pairing is replaced outright by the later value.

    Parameters
    ----------
    layers:
        Iterable of ``(priority, source_name, mapping, path)`` tuples in any
        order.

    Returns
    -------
    tuple[dict[str, object], dict[str, SourceInfo]]
        ``(merged_data, provenance)`` where provenance maps dotted leaf keys
        to :class:`SourceInfo`.

    Side Effects
    ------------
    None; operates on copies of provided mappings.

    Examples
    --------
    >>> merged, meta = merge_sources([
    ...     (5, "remote-service", {"service": {"timeout": 10}}, None),
    ...     (1, "root-dotenv-file", {"service": {"timeout": 5, "retries": 2}}, ".env"),
    ... ])
    >>> merged["service"], meta["service.timeout"]["source"]
    ({'timeout': 10, 'retries': 2}, 'remote-service')
    """

    ordered = sorted((SourceLayer(*layer) for layer in layers), key=lambda layer: layer.priority)
    merged: dict[str, object] = {}
    meta: dict[str, SourceInfo] = {}
    for layer in ordered:
        _merge_mapping(merged, meta, deepcopy(dict(layer.data)), layer, [])
    return merged, meta


def deep_merge(lower: Mapping[str, object], higher: Mapping[str, object]) -> dict[str, object]:
    """Return *lower* deep-merged with *higher*, *higher* winning conflicts.

    Examples
    --------
    >>> deep_merge({"a": {"x": 1, "y": 2}}, {"a": {"y": 9}})
    {'a': {'x': 1, 'y': 9}}
    >>> deep_merge({"a": {"x": 1}}, {"a": "scalar"})
    {'a': 'scalar'}
    """

    merged, _ = merge_sources([(0, "lower", lower, None), (1, "higher", higher, None)])
    return merged


def _merge_mapping(
    target: dict[str, object],
    meta: dict[str, SourceInfo],
    incoming: Mapping[str, object],
    layer: SourceLayer,
    segments: list[str],
) -> None:
    """Recursively merge ``incoming`` into ``target`` while recording provenance."""

    for key, value in incoming.items():
        dotted = ".".join([*segments, key])
        if isinstance(value, Mapping):
            _merge_branch(target, meta, key, value, dotted, layer, segments)
        else:
            _set_scalar(target, meta, key, value, dotted, layer)


def _merge_branch(
    target: dict[str, object],
    meta: dict[str, SourceInfo],
    key: str,
    value: Mapping[str, object],
    dotted: str,
    layer: SourceLayer,
    segments: list[str],
) -> None:
    """Merge mapping ``value`` into ``target[key]`` and recurse."""

    existing = target.get(key)
    if isinstance(existing, Mapping):
        container: dict[str, object] = dict(existing)
    else:
        _clear_branch(meta, dotted)
        container = {}
    target[key] = container
    _merge_mapping(container, meta, value, layer, segments + [key])


def _set_scalar(
    target: dict[str, object],
    meta: dict[str, SourceInfo],
    key: str,
    value: object,
    dotted: str,
    layer: SourceLayer,
) -> None:
    """Assign a scalar value and update provenance for ``dotted``."""

    _clear_branch(meta, dotted)
    target[key] = value
    meta[dotted] = SourceInfo(source=layer.source, priority=layer.priority, path=layer.path, key=dotted)


def _clear_branch(meta: dict[str, SourceInfo], prefix: str) -> None:
    """Remove provenance entries that belong to *prefix* or its descendants."""

    for meta_key in list(meta.keys()):
        if meta_key == prefix or meta_key.startswith(prefix + "."):
            meta.pop(meta_key, None)


def reconcile_spellings(
    merged: Mapping[str, object],
    meta: Mapping[str, SourceInfo],
) -> tuple[dict[str, object], dict[str, SourceInfo], list[str]]:
    """Keep a single leaf for every flattened key, preferring the higher priority.

    Why
    ----
    ``{"api": {"url": ...}}`` from the remote service and ``API_URL`` from
    the environment land on different paths (``api.url`` and ``apiurl``) but
    name the same setting. The recursive merge cannot see that, so both
    survive it and a spelling-agnostic lookup would pick one arbitrarily.

    What
    ----
    Groups leaves by :func:`flatten_key` of their joined path. Within a group
    the leaf whose provenance carries the highest priority wins; on a tie the
    shallower path wins. Losing leaves are removed from the tree and from the
    provenance, and parents left empty are pruned.

    Returns
    -------
    tuple[dict[str, object], dict[str, SourceInfo], list[str]]
        ``(data, provenance, dropped)`` where ``dropped`` lists the dotted
        paths that were removed.

    Examples
    --------
    >>> data, info, dropped = reconcile_spellings(
    ...     {"api": {"url": "remote"}, "apiurl": "env"},
    ...     {
    ...         "api.url": {"source": "remote-service", "priority": 5, "path": None, "key": "api.url"},
    ...         "apiurl": {"source": "generic-env-vars", "priority": 3, "path": None, "key": "apiurl"},
    ...     },
    ... )
    >>> data, dropped
    ({'api': {'url': 'remote'}}, ['apiurl'])
    """

    groups: dict[str, list[tuple[str, ...]]] = {}
    for path, _value in iter_leaves(merged):
        groups.setdefault(flatten_key("".join(path)), []).append(path)

    def rank(path: tuple[str, ...]) -> tuple[int, int]:
        info = meta.get(".".join(path))
        return (info["priority"] if info is not None else -1, -len(path))

    losers: list[tuple[str, ...]] = []
    for paths in groups.values():
        if len(paths) > 1:
            winner = max(paths, key=rank)
            losers.extend(path for path in paths if path != winner)

    data: dict[str, object] = deepcopy(dict(merged))
    provenance: dict[str, SourceInfo] = dict(meta)
    dropped: list[str] = []
    for path in losers:
        _remove_leaf(data, path)
        dotted = ".".join(path)
        provenance.pop(dotted, None)
        dropped.append(dotted)
    return data, provenance, dropped


def _remove_leaf(tree: dict[str, object], path: tuple[str, ...]) -> None:
    """Delete the leaf at *path* and prune parents that become empty."""

    head, *rest = path
    if not rest:
        tree.pop(head, None)
        return
    child = tree.get(head)
    if isinstance(child, dict):
        _remove_leaf(child, tuple(rest))
        if not child:
            tree.pop(head, None)
