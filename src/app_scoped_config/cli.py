"""CLI adapter for ``app_scoped_config`` built on ``lib_cli_exit_tools``.

Purpose
-------
Expose the resolution engine on the command line so operators can inspect
which source wins each key for an app without writing Python code.

Contents
--------
* :data:`CLICK_CONTEXT_SETTINGS` – shared Click settings ensuring ``-h`` works.
* :func:`cli` – root command that wires global traceback handling into
  ``lib_cli_exit_tools``.
* :func:`cli_info` – prints distribution metadata for quick diagnostics.
* :func:`cli_env_prefix` – helper exposing :func:`default_env_prefix`.
* :func:`cli_resolve` – resolves an app and prints the response envelope.
* :func:`cli_get` – prints a single value looked up under any spelling.
* :func:`cli_sources` – shows availability and priority of every source.
* :func:`cli_apps` – lists app ids found under ``<base>/apps``.
* :func:`main` – entry point used by ``console_scripts`` registration.

System Role
-----------
The CLI lives in the outermost layer. It builds an
:class:`AppScopedConfigurationProvider` from the current environment and never
reaches into reader internals. ``lib_cli_exit_tools`` centralises the exit code
strategy so all commands behave consistently across shells and CI.
"""

from __future__ import annotations

import asyncio
import json
import os
import sys
from importlib import metadata
from pathlib import Path
from typing import Any, Final, Optional, Sequence

import lib_cli_exit_tools
import rich_click as click

from .core import AppScopedConfigurationProvider, configuration_response
from .domain.errors import ConfigError
from .domain.settings import ProviderSettings, default_env_prefix

CLICK_CONTEXT_SETTINGS = {"help_option_names": ["-h", "--help"]}
_TRACEBACK_SUMMARY_LIMIT: Final[int] = 500
_TRACEBACK_VERBOSE_LIMIT: Final[int] = 10_000
_DIST_NAME: Final[str] = "app-scoped-config"


def _resolve_version() -> str:
    """Return the installed package version, ``"0.0.0"`` when metadata is missing."""

    try:
        return metadata.version(_DIST_NAME)
    except metadata.PackageNotFoundError:
        return "0.0.0"


def _provider_options(func: Any) -> Any:
    """Attach the options shared by every command that builds a provider."""

    func = click.option(
        "--timeout",
        type=float,
        default=None,
        help="Seconds before the remote service read counts as failed",
    )(func)
    func = click.option(
        "--prefix",
        default=None,
        help="Env-var prefix for app-specific and generic variables (default APP)",
    )(func)
    func = click.option(
        "--base-path",
        type=click.Path(path_type=Path, exists=True, file_okay=False, dir_okay=True, readable=True),
        default=None,
        help="Monorepo root holding .env and apps/<app>/.env (defaults to CWD)",
    )(func)
    return func


@click.group(
    help="App-scoped configuration resolver",
    context_settings=CLICK_CONTEXT_SETTINGS,
    invoke_without_command=False,
)
@click.version_option(
    version=_resolve_version(),
    prog_name="app_scoped_config",
    message="app_scoped_config version %(version)s",
)
@click.option(
    "--traceback/--no-traceback",
    is_flag=True,
    default=False,
    help="Show full Python traceback on errors",
)
@click.pass_context
def cli(ctx: click.Context, traceback: bool) -> None:
    """Root command configuring traceback handling for all subcommands.

    Side Effects
        Mutates ``lib_cli_exit_tools.config.traceback`` and
        ``lib_cli_exit_tools.config.traceback_force_color``.
    """

    ctx.ensure_object(dict)
    ctx.obj["traceback"] = traceback
    lib_cli_exit_tools.config.traceback = traceback
    lib_cli_exit_tools.config.traceback_force_color = traceback


@cli.command("info", context_settings=CLICK_CONTEXT_SETTINGS)
def cli_info() -> None:
    """Print basic distribution metadata so users can confirm installation."""

    try:
        meta = metadata.metadata(_DIST_NAME)
    except metadata.PackageNotFoundError:
        click.echo("app_scoped_config (metadata unavailable)")
        return
    click.echo(f"Info for {meta.get('Name', _DIST_NAME)}:")
    click.echo(f"  Version         : {meta.get('Version', _resolve_version())}")
    click.echo(f"  Requires-Python : {meta.get('Requires-Python', '>=3.10')}")
    summary = meta.get("Summary")
    if summary:
        click.echo(f"  Summary         : {summary}")


@cli.command("env-prefix", context_settings=CLICK_CONTEXT_SETTINGS)
@click.argument("slug")
def cli_env_prefix(slug: str) -> None:
    """Compute the canonical environment prefix for *slug*.

    Examples
    --------
    >>> from click.testing import CliRunner
    >>> result = CliRunner().invoke(cli, ["env-prefix", "user-portal"])
    >>> result.output.strip()
    'USER_PORTAL'
    """

    click.echo(default_env_prefix(slug))


@cli.command("resolve", context_settings=CLICK_CONTEXT_SETTINGS)
@click.option("--app", "app_id", required=True, help="App id whose configuration is resolved")
@_provider_options
@click.option(
    "--indent",
    type=int,
    default=None,
    help="Pretty-print JSON output with the provided indent size",
)
@click.option(
    "--provenance/--no-provenance",
    default=False,
    help="Include the winning source of every key and per-source reports",
)
def cli_resolve(
    app_id: str,
    base_path: Optional[Path],
    prefix: Optional[str],
    timeout: Optional[float],
    indent: Optional[int],
    provenance: bool,
) -> None:
    """Resolve *app_id* and print ``{success, data, error, timestamp}`` as JSON.

    Exits with status 1 when resolution fails; the envelope then carries the
    error text instead of data.
    """

    provider = _build_provider(base_path, prefix, timeout)
    try:
        configuration = asyncio.run(provider.get_app_configuration(app_id))
    except ConfigError as exc:
        click.echo(json.dumps(configuration_response(error=exc), indent=indent, separators=(",", ":")))
        raise SystemExit(1) from exc
    payload = configuration_response(configuration)
    if provenance:
        payload["provenance"] = dict(configuration.provenance)
        payload["sources"] = [report.as_dict() for report in configuration.reports]
    click.echo(json.dumps(payload, indent=indent, separators=(",", ":"), ensure_ascii=False))


@cli.command("get", context_settings=CLICK_CONTEXT_SETTINGS)
@click.option("--app", "app_id", required=True, help="App id whose configuration is resolved")
@_provider_options
@click.option("--default", "default", default=None, help="Value printed when the key is missing")
@click.argument("key")
def cli_get(
    app_id: str,
    base_path: Optional[Path],
    prefix: Optional[str],
    timeout: Optional[float],
    default: Optional[str],
    key: str,
) -> None:
    """Print the value of KEY for the app, accepting any spelling (``api.url``, ``API_URL``, ``apiurl``)."""

    provider = _build_provider(base_path, prefix, timeout)
    value = asyncio.run(provider.get_configuration_value(app_id, key))
    if value is None:
        if default is None:
            raise click.ClickException(f"Key {key!r} is not set for app {app_id!r}")
        value = default
    click.echo(value if isinstance(value, str) else json.dumps(value))


@cli.command("sources", context_settings=CLICK_CONTEXT_SETTINGS)
@click.option("--app", "app_id", required=True, help="App id whose sources are listed")
@_provider_options
def cli_sources(app_id: str, base_path: Optional[Path], prefix: Optional[str], timeout: Optional[float]) -> None:
    """List every source with its priority and availability, highest priority first."""

    provider = _build_provider(base_path, prefix, timeout)
    rows = [
        {"source": descriptor.kind.value, "priority": descriptor.priority, "available": descriptor.available}
        for descriptor in provider.describe_sources(app_id)
    ]
    click.echo(json.dumps({"app_id": app_id, "sources": rows, "remote": provider.remote_info(app_id)}, indent=2))


@cli.command("apps", context_settings=CLICK_CONTEXT_SETTINGS)
@_provider_options
def cli_apps(base_path: Optional[Path], prefix: Optional[str], timeout: Optional[float]) -> None:
    """List app ids discovered under ``<base>/apps``."""

    provider = _build_provider(base_path, prefix, timeout)
    click.echo(json.dumps(provider.available_apps()))


def _build_provider(
    base_path: Optional[Path], prefix: Optional[str], timeout: Optional[float]
) -> AppScopedConfigurationProvider:
    """Create a provider from the process environment plus CLI overrides."""

    environ = dict(os.environ)
    settings = ProviderSettings.from_environ(
        environ,
        base_path=base_path,
        env_prefix=prefix,
        remote_timeout=timeout,
    )
    return AppScopedConfigurationProvider(settings, environ_factory=lambda: environ)


def main(argv: Optional[Sequence[str]] = None, *, restore_traceback: bool = True) -> int:
    """Execute the CLI with shared exit handling and return the exit code."""

    previous_traceback = getattr(lib_cli_exit_tools.config, "traceback", False)
    previous_force_color = getattr(lib_cli_exit_tools.config, "traceback_force_color", False)
    try:
        try:
            return lib_cli_exit_tools.run_cli(
                cli,
                argv=list(argv) if argv is not None else None,
                prog_name="app_scoped_config",
            )
        except BaseException as exc:  # noqa: BLE001 - funnel through shared printers
            lib_cli_exit_tools.print_exception_message(
                trace_back=lib_cli_exit_tools.config.traceback,
                length_limit=(
                    _TRACEBACK_VERBOSE_LIMIT if lib_cli_exit_tools.config.traceback else _TRACEBACK_SUMMARY_LIMIT
                ),
            )
            return lib_cli_exit_tools.get_system_exit_code(exc)
    finally:
        if restore_traceback:
            lib_cli_exit_tools.config.traceback = previous_traceback
            lib_cli_exit_tools.config.traceback_force_color = previous_force_color


if __name__ == "__main__":  # pragma: no cover - exercised via console entry point
    raise SystemExit(main(sys.argv[1:]))
