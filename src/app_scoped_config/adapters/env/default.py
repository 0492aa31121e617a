"""Environment variable readers.

Purpose
-------
Translate the environment snapshot of a resolution into configuration trees
for three sources that share parsing rules but differ in which variables they
claim:

* :class:`AppEnvVarsReader` – ``<PREFIX>_<APP>_<KEY>`` (priority 4).
* :class:`GenericEnvVarsReader` – ``<PREFIX>_<KEY>``, minus app-specific
  variables of any known app (priority 3).
* :class:`ProcessEnvReader` – every variable, bare ``<KEY>`` (priority 0);
  the always-available floor.

Key behaviours
--------------
* Names become paths through :func:`app_scoped_config.domain.keys.env_name_to_path`
  (``__`` nests, single ``_`` is dropped: ``API_URL`` → ``apiurl``).
* Light scalar coercion (bools, ints, floats). ``null``/``none`` values and
  names that would nest under an existing scalar are dropped as absent keys,
  never raised.
"""

from __future__ import annotations

import re
from typing import Iterable, Mapping

from ...domain.keys import env_name_to_path
from ...domain.sources import ResolutionContext, SourceKind, app_env_token
from ...observability import log_debug

_ABSENT = object()
_INTEGER = re.compile(r"^[+-]?\d+$", re.ASCII)
_FLOAT = re.compile(r"^[+-]?(\d+\.\d*|\.\d+|\d+)([eE][+-]?\d+)?$", re.ASCII)


class _EnvReader:
    """Shared behaviour of the environment-backed readers."""

    kind: SourceKind

    def is_available(self, context: ResolutionContext) -> bool:
        return any(True for _ in self._matching(context))

    async def read(self, context: ResolutionContext) -> dict[str, object]:
        return self.parse(context)

    def location(self, context: ResolutionContext) -> str | None:
        return None

    def parse(self, context: ResolutionContext) -> dict[str, object]:
        """Return the nested mapping built from the variables this reader claims."""

        collected: dict[str, object] = {}
        for name, prefix in self._matching(context):
            path = env_name_to_path(name, prefix)
            value = coerce_value(context.environ[name])
            if not path or value is _ABSENT:
                continue
            try:
                assign_nested(collected, path, value)
            except ValueError:
                log_debug("env_key_conflict", source=self.kind.value, path=None, variable=name)
        log_debug("env_variables_loaded", source=self.kind.value, path=None, keys=sorted(collected.keys()))
        return collected

    def _matching(self, context: ResolutionContext) -> Iterable[tuple[str, str]]:
        """Yield ``(variable_name, prefix_to_strip)`` pairs claimed by this reader."""

        raise NotImplementedError


class AppEnvVarsReader(_EnvReader):
    """Read ``<PREFIX>_<APP>_<KEY>`` variables for the app being resolved.

    Examples
    --------
    >>> from pathlib import Path
    >>> ctx = ResolutionContext("admin", {"APP_ADMIN_API_URL": "x", "APP_API_URL": "y"}, Path("."), "APP")
    >>> AppEnvVarsReader().parse(ctx)
    {'apiurl': 'x'}
    """

    kind = SourceKind.APP_ENV_VARS

    def _matching(self, context: ResolutionContext) -> Iterable[tuple[str, str]]:
        prefix = app_prefix(context.env_prefix, context.app_id)
        for name in context.environ:
            if name.startswith(prefix) and len(name) > len(prefix):
                yield name, prefix


class GenericEnvVarsReader(_EnvReader):
    """Read ``<PREFIX>_<KEY>`` variables that do not belong to a specific app.

    A variable is app-specific, and skipped here, when the text after the
    prefix starts with the env spelling of the requested app or of any other
    known app.

    Examples
    --------
    >>> from pathlib import Path
    >>> env = {"APP_API_URL": "generic", "APP_CLIENT_API_URL": "client", "APP_ADMIN_API_URL": "admin"}
    >>> ctx = ResolutionContext("admin", env, Path("."), "APP", frozenset({"client"}))
    >>> GenericEnvVarsReader().parse(ctx)
    {'apiurl': 'generic'}
    """

    kind = SourceKind.GENERIC_ENV_VARS

    def _matching(self, context: ResolutionContext) -> Iterable[tuple[str, str]]:
        prefix = f"{context.env_prefix}_"
        app_prefixes = tuple(app_prefix(context.env_prefix, app) for app in {context.app_id, *context.known_apps})
        for name in context.environ:
            if not name.startswith(prefix) or len(name) == len(prefix):
                continue
            if name.startswith(app_prefixes):
                continue
            yield name, prefix


class ProcessEnvReader(_EnvReader):
    """Expose the whole environment snapshot under bare ``<KEY>`` names.

    Always available. It is the lowest-priority catch-all, so a plain
    ``API_URL`` still answers ``api.url`` when nothing else defines it.
    """

    kind = SourceKind.PROCESS_ENV

    def is_available(self, context: ResolutionContext) -> bool:
        return True

    def _matching(self, context: ResolutionContext) -> Iterable[tuple[str, str]]:
        for name in context.environ:
            yield name, ""


def app_prefix(env_prefix: str, app_id: str) -> str:
    """Return the variable prefix claimed by *app_id*.

    Examples
    --------
    >>> app_prefix("APP", "user-portal")
    'APP_USER_PORTAL_'
    """

    return f"{env_prefix}_{app_env_token(app_id)}_"


def assign_nested(target: dict[str, object], path: list[str], value: object) -> None:
    """Assign ``value`` inside ``target`` following ``path`` segments.

    Examples
    --------
    >>> data: dict[str, object] = {}
    >>> assign_nested(data, ['service', 'timeout'], 5)
    >>> data
    {'service': {'timeout': 5}}
    """

    cursor = target
    for part in path[:-1]:
        cursor = _ensure_child_mapping(cursor, part)
    final = path[-1]
    if isinstance(cursor.get(final), dict):
        raise ValueError(f"Cannot override mapping with scalar for key {'.'.join(path)}")
    cursor[final] = value


def _ensure_child_mapping(mapping: dict[str, object], key: str) -> dict[str, object]:
    """Ensure ``mapping[key]`` is a ``dict`` (creating or validating as necessary)."""

    if key not in mapping:
        mapping[key] = {}
    child = mapping[key]
    if not isinstance(child, dict):
        raise ValueError(f"Cannot override scalar with mapping for key {key}")
    return child


def coerce_value(value: str) -> object:
    """Coerce textual values to Python primitives where possible.

    ``null``/``none`` carry no configuration value and come back as the
    module's absent marker so callers skip the key.

    Examples
    --------
    >>> coerce_value('true'), coerce_value('10'), coerce_value('3.5'), coerce_value('hello')
    (True, 10, 3.5, 'hello')
    >>> coerce_value(" 10"), coerce_value(" 3.5 ")
    (10, 3.5)
    >>> coerce_value("none") is _ABSENT
    True
    """

    stripped = value.strip()
    lowered = stripped.lower()
    if lowered in {"true", "false"}:
        return lowered == "true"
    if lowered in {"null", "none"}:
        return _ABSENT
    if _INTEGER.match(stripped):
        return int(stripped)
    if _FLOAT.match(stripped):
        return float(stripped)
    return value


def is_absent(value: object) -> bool:
    return value is _ABSENT


def environ_snapshot(environ: Mapping[str, str]) -> dict[str, str]:
    """Copy *environ* keeping only ``str`` names and values."""

    return {str(key): str(value) for key, value in environ.items()}
