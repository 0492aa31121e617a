"""`.env` file readers.

Purpose
-------
Implement the :class:`app_scoped_config.application.ports.SourceReader`
protocol for the two dotenv files of a monorepo:

* :class:`RootDotEnvReader` – ``<base>/.env`` (priority 1).
* :class:`AppDotEnvReader` – ``<base>/apps/<app>/.env`` (priority 2).

Contents
--------
* Reader classes sharing :class:`_DotEnvReader`.
* :func:`parse_dotenv` – tolerant ``KEY=VALUE`` parser.
* :func:`_strip_quotes` – quote and inline-comment handling.

System Role
-----------
Feeds dotenv pairs into the merge with the same key spelling and value
coercion as the environment readers, so a ``.env`` entry and an exported
variable for the same setting collide on one key and precedence decides.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

from ...domain.errors import SourceReadFailure
from ...domain.keys import env_name_to_path
from ...domain.sources import ResolutionContext, SourceKind
from ...observability import log_debug
from ..env.default import assign_nested, coerce_value, is_absent


class _DotEnvReader:
    """Read one dotenv file whose location depends on the resolution context."""

    kind: SourceKind

    def path_for(self, context: ResolutionContext) -> Path:
        raise NotImplementedError

    def location(self, context: ResolutionContext) -> str | None:
        return str(self.path_for(context))

    def is_available(self, context: ResolutionContext) -> bool:
        path = self.path_for(context)
        try:
            return path.is_file()
        except OSError:
            return False

    async def read(self, context: ResolutionContext) -> dict[str, object]:
        """Parse the file off the event loop; only I/O errors fail the read."""

        path = self.path_for(context)
        try:
            data = await asyncio.to_thread(parse_dotenv, path)
        except OSError as exc:
            raise SourceReadFailure(self.kind.value, f"cannot read {path}: {exc}") from exc
        log_debug("dotenv_loaded", source=self.kind.value, path=str(path), keys=sorted(data.keys()))
        return data


class RootDotEnvReader(_DotEnvReader):
    """The shared ``.env`` at the monorepo root."""

    kind = SourceKind.ROOT_DOTENV_FILE

    def path_for(self, context: ResolutionContext) -> Path:
        return context.base_path / ".env"


class AppDotEnvReader(_DotEnvReader):
    """The app's own ``apps/<app>/.env``."""

    kind = SourceKind.APP_DOTENV_FILE

    def path_for(self, context: ResolutionContext) -> Path:
        return context.base_path / "apps" / context.app_id / ".env"


def parse_dotenv(path: Path) -> dict[str, object]:
    """Parse ``path`` into a nested dictionary.

    Blank lines and ``#`` comments are ignored, an ``export`` prefix is
    accepted, and lines without ``=`` are skipped with a debug event rather
    than failing the whole file.

    Examples
    --------
    >>> from tempfile import TemporaryDirectory
    >>> tmp = TemporaryDirectory()
    >>> env_file = Path(tmp.name) / '.env'
    >>> _ = env_file.write_text('# comment\\nAPI_URL="https://api"\\nDB__PORT=5432\\n', encoding='utf-8')
    >>> parse_dotenv(env_file)
    {'apiurl': 'https://api', 'db': {'port': 5432}}
    >>> tmp.cleanup()
    """

    result: dict[str, object] = {}
    with path.open("r", encoding="utf-8") as handle:
        for line_number, raw_line in enumerate(handle, start=1):
            line = raw_line.strip()
            if not line or line.startswith("#"):
                continue
            if line.startswith("export "):
                line = line[len("export ") :].lstrip()
            if "=" not in line:
                log_debug("dotenv_invalid_line", source="dotenv", path=str(path), line=line_number)
                continue
            key, value = line.split("=", 1)
            segments = env_name_to_path(key.strip())
            coerced = coerce_value(_strip_quotes(value.strip()))
            if not segments or is_absent(coerced):
                continue
            try:
                assign_nested(result, segments, coerced)
            except ValueError:
                log_debug("env_key_conflict", source="dotenv", path=str(path), line=line_number)
    return result


def _strip_quotes(value: str) -> str:
    """Trim surrounding quotes and inline comments from ``value``.

    Examples
    --------
    >>> _strip_quotes('"token"')
    'token'
    >>> _strip_quotes("value # comment")
    'value'
    """

    if len(value) >= 2 and value[0] == value[-1] and value[0] in {'"', "'"}:
        return value[1:-1]
    if value.startswith("#"):
        return ""
    if " #" in value:
        return value.split(" #", 1)[0].strip()
    return value
