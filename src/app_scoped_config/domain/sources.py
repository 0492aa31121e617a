"""Source kinds, the canonical priority table, and resolution inputs.

Purpose
-------
Keep every precedence decision in one place. Readers, the merger, provenance
metadata and the CLI all look priorities up here instead of restating them.

Contents
--------
* :class:`SourceKind` – the six configuration origins.
* :data:`SOURCE_PRIORITIES` – the only mapping from kind to priority.
* :class:`ResolutionContext` – immutable inputs shared by one resolution.
* :class:`SourceDescriptor` – a reader paired with its availability verdict.
* :func:`validate_app_id` / :func:`app_env_token` – app id helpers.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Final, Mapping

from .errors import InvalidAppId


class SourceKind(str, Enum):
    """Configuration origins, listed from lowest to highest priority."""

    PROCESS_ENV = "process-env"
    ROOT_DOTENV_FILE = "root-dotenv-file"
    APP_DOTENV_FILE = "app-dotenv-file"
    GENERIC_ENV_VARS = "generic-env-vars"
    APP_ENV_VARS = "app-env-vars"
    REMOTE_SERVICE = "remote-service"

    @property
    def priority(self) -> int:
        return SOURCE_PRIORITIES[self]


#: Higher wins. The remote service, when reachable, overrides every local source.
SOURCE_PRIORITIES: Final[Mapping[SourceKind, int]] = MappingProxyType(
    {
        SourceKind.PROCESS_ENV: 0,
        SourceKind.ROOT_DOTENV_FILE: 1,
        SourceKind.APP_DOTENV_FILE: 2,
        SourceKind.GENERIC_ENV_VARS: 3,
        SourceKind.APP_ENV_VARS: 4,
        SourceKind.REMOTE_SERVICE: 5,
    }
)

_APP_ID_PATTERN: Final = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]*$")


def is_valid_app_id(app_id: object) -> bool:
    """Return ``True`` when *app_id* is a safe, non-empty identifier.

    Examples
    --------
    >>> is_valid_app_id("user-portal"), is_valid_app_id("../etc"), is_valid_app_id("")
    (True, False, False)
    """

    return isinstance(app_id, str) and bool(_APP_ID_PATTERN.match(app_id)) and ".." not in app_id


def validate_app_id(app_id: object) -> str:
    """Return *app_id* unchanged or raise :class:`InvalidAppId`."""

    if not is_valid_app_id(app_id):
        raise InvalidAppId(app_id)
    return app_id  # type: ignore[return-value]


def app_env_token(app_id: str) -> str:
    """Return the env-var spelling of *app_id*.

    Examples
    --------
    >>> app_env_token("user-portal")
    'USER_PORTAL'
    """

    return app_id.upper().replace("-", "_")


@dataclass(frozen=True)
class ResolutionContext:
    """Immutable inputs of a single resolution attempt.

    Every reader in one attempt sees the same environment snapshot, which keeps
    the merged result internally consistent even if ``os.environ`` changes
    mid-flight.
    """

    app_id: str
    environ: Mapping[str, str]
    base_path: Path
    env_prefix: str
    known_apps: frozenset[str] = field(default_factory=frozenset)

    @property
    def app_token(self) -> str:
        return app_env_token(self.app_id)


@dataclass(frozen=True)
class SourceDescriptor:
    """A source kind together with its availability for one app id."""

    kind: SourceKind
    app_id: str
    available: bool

    @property
    def priority(self) -> int:
        return self.kind.priority
