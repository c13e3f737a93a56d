"""Limiter and Lua script registries.

A *script definition* pairs a Lua script source with the ordered list of
response headers its reply values map onto. A *limiter definition* names the
script it runs and may override the command executor, key provider, log level,
response handler and script options for every installation that uses it.

Two limiters ship with the package, each backed by a script of the same id:

- ``fixed_window``: ``opts=[limit, window_seconds]``
- ``token_bucket``: ``opts=[limit, window_seconds, burst]``

User registries (see ``configure_limits``) shadow these entries by id.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from importlib import resources
from pathlib import Path
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Mapping, Sequence

from starlette.requests import Request

# A command is a flat list of scalars, e.g. ["EVALSHA", digest, 1, "bucket", 10, 60].
CommandExecutor = Callable[[Sequence[Any]], Awaitable[Any]]
KeyProvider = Callable[[Request], "Sequence[str] | Awaitable[Sequence[str]]"]
ScriptSource = Callable[[], "str | Awaitable[str]"]
# (request, resolved config, evaluation outcome) -> ResponseEffect
ResponseHandler = Callable[..., Any]
# None: not set, False: logging disabled, otherwise a level name or number.
LogLevelOption = str | int | bool | None

DEFAULT_LIMITER_ID = "fixed_window"

FIXED_WINDOW_HEADERS = (
    "x-ratelimit-limit",
    "x-ratelimit-reset",
    "x-ratelimit-remaining",
)

TOKEN_BUCKET_HEADERS = (
    "x-ratelimit-limit",
    "x-ratelimit-reset",
    "x-ratelimit-remaining",
    "retry-after",
)


@dataclass(frozen=True)
class ScriptDefinition:
    """Lua script source plus the header names its reply values map onto."""

    script: ScriptSource
    headers: Sequence[str]


@dataclass(frozen=True)
class LimiterDefinition:
    """Named limiter: the script it runs and optional per-limiter overrides."""

    luascript: str | None = None
    cmd: CommandExecutor | None = None
    key: KeyProvider | None = None
    log_level: LogLevelOption = None
    response: ResponseHandler | None = None
    opts: Sequence[Any] | None = field(default=None)


def packaged_script(name: str) -> ScriptSource:
    """Return a script source reading ``scriptlimit/lua/<name>.lua``."""

    def load() -> str:
        return resources.files("scriptlimit").joinpath("lua").joinpath(f"{name}.lua").read_text(encoding="utf-8")

    load.__qualname__ = f"packaged_script({name!r})"
    return load


def file_script(path: str | Path) -> ScriptSource:
    """Return a script source reading a Lua file from disk on first use."""

    script_path = Path(path)

    def load() -> str:
        return script_path.read_text(encoding="utf-8")

    load.__qualname__ = f"file_script({str(script_path)!r})"
    return load


BUILTIN_LIMITERS: Mapping[str, LimiterDefinition] = MappingProxyType(
    {
        "fixed_window": LimiterDefinition(luascript="fixed_window"),
        "token_bucket": LimiterDefinition(luascript="token_bucket"),
    }
)

BUILTIN_SCRIPTS: Mapping[str, ScriptDefinition] = MappingProxyType(
    {
        "fixed_window": ScriptDefinition(
            script=packaged_script("fixed_window"),
            headers=FIXED_WINDOW_HEADERS,
        ),
        "token_bucket": ScriptDefinition(
            script=packaged_script("token_bucket"),
            headers=TOKEN_BUCKET_HEADERS,
        ),
    }
)
