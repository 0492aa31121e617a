"""Public package surface of ``app_scoped_config``.

The resolution engine lives in :mod:`app_scoped_config.core`; this module
re-exports the names consumers import directly so both
``import app_scoped_config`` and ``python -m app_scoped_config`` reach the same
objects.
"""

from __future__ import annotations

from .core import (
    AppScopedConfigurationProvider,
    configuration_response,
    default_readers,
    discover_apps,
    read_app_config,
    read_app_config_value,
)
from .application.cache import ResolutionCache
from .application.merge import deep_merge, merge_sources
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
from .domain.keys import KeyNormalizer, flatten_key
from .domain.settings import ProviderSettings, default_env_prefix
from .domain.sources import SOURCE_PRIORITIES, SourceKind
from .observability import bind_trace_id, get_logger

__all__ = [
    "AppScopedConfigurationProvider",
    "ConfigError",
    "FatalEnvironmentFailure",
    "InvalidAppId",
    "InvalidFormat",
    "KeyNormalizer",
    "ProviderSettings",
    "RefreshFailure",
    "ResolutionCache",
    "ResolvedConfiguration",
    "SOURCE_PRIORITIES",
    "SourceInfo",
    "SourceKind",
    "SourceReadFailure",
    "SourceReport",
    "ValidationError",
    "bind_trace_id",
    "configuration_response",
    "deep_merge",
    "default_env_prefix",
    "default_readers",
    "discover_apps",
    "flatten_key",
    "get_logger",
    "merge_sources",
    "read_app_config",
    "read_app_config_value",
]
