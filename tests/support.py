"""Shared fixtures for building throwaway monorepos in tests.

A sandbox is a temporary directory laid out like a real monorepo: a root
``.env`` plus ``apps/<app>/.env`` files, and an in-memory environment mapping
that stands in for ``os.environ``.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from app_scoped_config import AppScopedConfigurationProvider, ProviderSettings


@dataclass
class MonorepoSandbox:
    root: Path
    env: dict[str, str] = field(default_factory=dict)

    def write_root_env(self, content: str) -> Path:
        path = self.root / ".env"
        path.write_text(content, encoding="utf-8")
        return path

    def make_app(self, app_id: str) -> Path:
        directory = self.root / "apps" / app_id
        directory.mkdir(parents=True, exist_ok=True)
        return directory

    def write_app_env(self, app_id: str, content: str) -> Path:
        path = self.make_app(app_id) / ".env"
        path.write_text(content, encoding="utf-8")
        return path

    def settings(self, **overrides: Any) -> ProviderSettings:
        """Return settings rooted at the sandbox; remote retries back off instantly."""

        overrides.setdefault("retry_delay", 0.0)
        return ProviderSettings(base_path=self.root, **overrides)

    def provider(self, *, settings: ProviderSettings | None = None, **kwargs: Any) -> AppScopedConfigurationProvider:
        """Return a provider reading this sandbox; ``env`` is read at snapshot time."""

        return AppScopedConfigurationProvider(
            settings or self.settings(),
            environ_factory=lambda: dict(self.env),
            **kwargs,
        )


def create_monorepo_sandbox(tmp_path: Path, *, apps: tuple[str, ...] = (), env: Mapping[str, str] | None = None) -> MonorepoSandbox:
    root = tmp_path / "repo"
    root.mkdir()
    sandbox = MonorepoSandbox(root, dict(env or {}))
    for app_id in apps:
        sandbox.make_app(app_id)
    return sandbox


REMOTE_ENV = {
    "CONFIG_SERVICE_ENDPOINT_ADMIN": "https://config.example",
    "CONFIG_SERVICE_CLIENT_ID_ADMIN": "client-id",
    "CONFIG_SERVICE_CLIENT_SECRET_ADMIN": "client-secret",
    "CONFIG_SERVICE_TENANT_ID_ADMIN": "tenant",
}
"""Complete remote-service configuration for the ``admin`` app."""


class StaticRemoteClient:
    """Remote client returning a fixed payload, counting calls."""

    def __init__(self, payload: Mapping[str, object] | None = None, *, error: BaseException | None = None) -> None:
        self.payload = dict(payload or {})
        self.error = error
        self.calls = 0

    async def fetch(self, endpoint: Any, app_id: str, *, timeout: float) -> Mapping[str, object]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return dict(self.payload)
