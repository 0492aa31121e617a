"""Engine settings with environment overrides.

Purpose
-------
Collect the knobs of the resolution engine (monorepo root, env-var prefix,
remote timeout and retries, cache lifetime) in one frozen value so the provider, the CLI
and tests agree on defaults.

Contents
--------
* :func:`default_env_prefix` – slug to upper snake-case prefix.
* :data:`SETTINGS_ENV_PREFIX` – namespace of the override variables.
* :class:`ProviderSettings` – the settings value object.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Final, Mapping

from .errors import ValidationError

DEFAULT_ENV_PREFIX: Final[str] = "APP"
DEFAULT_REMOTE_TIMEOUT: Final[float] = 30.0
DEFAULT_MAX_RETRIES: Final[int] = 3
DEFAULT_RETRY_DELAY: Final[float] = 1.0


def default_env_prefix(slug: str) -> str:
    """Return the canonical environment prefix for *slug*.

    Examples
    --------
    >>> default_env_prefix('app-scoped-config')
    'APP_SCOPED_CONFIG'
    """

    return slug.replace("-", "_").upper()


SETTINGS_ENV_PREFIX: Final[str] = default_env_prefix("app-scoped-config")


@dataclass(frozen=True)
class ProviderSettings:
    """Settings consumed by :class:`app_scoped_config.core.AppScopedConfigurationProvider`.

    Attributes
    ----------
    base_path:
        Monorepo root containing ``.env`` and ``apps/<app>/.env``.
    env_prefix:
        Prefix of app-specific and generic variables (``<PREFIX>_<APP>_<KEY>``).
    remote_timeout:
        Seconds the remote service read may take before it counts as failed.
        Retries run inside this budget.
    max_retries:
        Extra attempts after a transient remote failure (connection errors,
        timeouts, 5xx and 429 responses).
    retry_delay:
        Base backoff in seconds; attempt ``n`` waits ``retry_delay * 2**(n-1)``.
    cache_ttl:
        Seconds a cached resolution stays fresh; ``None`` keeps it until it is
        invalidated or refreshed.
    """

    base_path: Path = field(default_factory=Path.cwd)
    env_prefix: str = DEFAULT_ENV_PREFIX
    remote_timeout: float = DEFAULT_REMOTE_TIMEOUT
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_delay: float = DEFAULT_RETRY_DELAY
    cache_ttl: float | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "base_path", Path(self.base_path))
        object.__setattr__(self, "env_prefix", self.env_prefix.rstrip("_"))
        if not self.env_prefix:
            raise ValidationError("env_prefix must not be empty")
        if self.remote_timeout <= 0:
            raise ValidationError(f"remote_timeout must be positive, got {self.remote_timeout}")
        if self.max_retries < 0:
            raise ValidationError(f"max_retries must not be negative, got {self.max_retries}")
        if self.retry_delay < 0:
            raise ValidationError(f"retry_delay must not be negative, got {self.retry_delay}")
        if self.cache_ttl is not None and self.cache_ttl <= 0:
            raise ValidationError(f"cache_ttl must be positive, got {self.cache_ttl}")

    @classmethod
    def from_environ(cls, environ: Mapping[str, str], **overrides: object) -> ProviderSettings:
        """Build settings from ``APP_SCOPED_CONFIG_*`` variables, then apply *overrides*.

        Examples
        --------
        >>> settings = ProviderSettings.from_environ({"APP_SCOPED_CONFIG_TIMEOUT": "2.5"})
        >>> settings.remote_timeout
        2.5
        """

        values: dict[str, object] = {}
        base_path = environ.get(f"{SETTINGS_ENV_PREFIX}_BASE_PATH")
        if base_path:
            values["base_path"] = Path(base_path)
        env_prefix = environ.get(f"{SETTINGS_ENV_PREFIX}_ENV_PREFIX")
        if env_prefix:
            values["env_prefix"] = env_prefix
        timeout = environ.get(f"{SETTINGS_ENV_PREFIX}_TIMEOUT")
        if timeout:
            values["remote_timeout"] = _parse_seconds("TIMEOUT", timeout)
        max_retries = environ.get(f"{SETTINGS_ENV_PREFIX}_MAX_RETRIES")
        if max_retries:
            values["max_retries"] = _parse_count("MAX_RETRIES", max_retries)
        retry_delay = environ.get(f"{SETTINGS_ENV_PREFIX}_RETRY_DELAY")
        if retry_delay:
            values["retry_delay"] = _parse_seconds("RETRY_DELAY", retry_delay)
        cache_ttl = environ.get(f"{SETTINGS_ENV_PREFIX}_CACHE_TTL")
        if cache_ttl:
            values["cache_ttl"] = _parse_seconds("CACHE_TTL", cache_ttl)
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)  # type: ignore[arg-type]

    def with_overrides(self, **overrides: object) -> ProviderSettings:
        return replace(self, **{key: value for key, value in overrides.items() if value is not None})


def _parse_seconds(name: str, raw: str) -> float:
    try:
        return float(raw)
    except ValueError as exc:
        raise ValidationError(f"{SETTINGS_ENV_PREFIX}_{name} must be a number, got {raw!r}") from exc


def _parse_count(name: str, raw: str) -> int:
    try:
        return int(raw)
    except ValueError as exc:
        raise ValidationError(f"{SETTINGS_ENV_PREFIX}_{name} must be an integer, got {raw!r}") from exc
