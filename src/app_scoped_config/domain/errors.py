"""Domain-level exception hierarchy.

Purpose
-------
Expose the stable error taxonomy shared by source readers, the resolution
engine, and consuming applications. The hierarchy lives in the domain layer so
adapters and the orchestrator depend on it, never the other way round.

Contents
--------
* :class:`ConfigError` – umbrella base class for all configuration failures.
* :class:`InvalidAppId` – caller error, rejected before any source is touched.
* :class:`InvalidFormat` – a source payload could not be parsed.
* :class:`ValidationError` – semantically invalid settings (e.g. bad timeout).
* :class:`SourceReadFailure` – an available source failed to read; isolated.
* :class:`FatalEnvironmentFailure` – the process environment floor failed.
* :class:`RefreshFailure` – a forced refresh failed; previous entry retained.

System Role
-----------
Only :class:`InvalidAppId`, :class:`FatalEnvironmentFailure` and
:class:`RefreshFailure` ever reach callers of the provider. Every other error
is recorded against the failing source and the resolution carries on.
"""

from __future__ import annotations


class ConfigError(Exception):
    """Base type for all exceptions emitted by ``app_scoped_config``.

    Why
    ----
    Provide a single catch-all type for consumers that do not need fine-grained
    handling.
    """


class InvalidAppId(ConfigError, ValueError):
    """Raised when an app id is empty or not a safe identifier.

    Why
    ----
    App ids become directory names (``apps/<id>/.env``) and env-var fragments,
    so anything outside ``[A-Za-z0-9_-]`` is refused up front.
    """

    def __init__(self, app_id: object) -> None:
        super().__init__(f"Invalid app id: {app_id!r}")
        self.app_id = app_id


class InvalidFormat(ConfigError):
    """Raised when a source payload cannot be parsed into a configuration tree.

    Typical Sources
    ---------------
    Remote service responses that are not JSON objects or item lists.
    """


class ValidationError(ConfigError):
    """Signifies that provider settings failed semantic checks."""


class SourceReadFailure(ConfigError):
    """An available source failed to produce its mapping.

    Why
    ----
    Failures stay attached to the source that produced them so the
    orchestrator can record them for diagnostics and let lower-priority
    sources fill the gap.

    Attributes
    ----------
    source:
        Name of the failing source kind (e.g. ``"remote-service"``).
    """

    def __init__(self, source: str, message: str) -> None:
        super().__init__(f"{source}: {message}")
        self.source = source


class FatalEnvironmentFailure(ConfigError):
    """The process environment, the guaranteed floor source, could not be read."""


class RefreshFailure(ConfigError):
    """A forced refresh did not complete; the previously cached value stays valid."""

    def __init__(self, app_id: str, message: str) -> None:
        super().__init__(f"Refresh failed for app {app_id!r}: {message}")
        self.app_id = app_id
