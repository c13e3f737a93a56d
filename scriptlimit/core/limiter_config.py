"""Limiter configuration resolution.

Every installation of the middleware resolves exactly one
``ResolvedLimiterConfig``. Each field is taken from the first source that
provides it:

1. per-call options given at the installation site,
2. the limiter definition selected by ``limiter`` (user registry first, then
   the built-in registry),
3. process-wide defaults (``LimiterDefaults``),
4. built-in defaults (limiter ``fixed_window``, log level ``error``, response
   handler ``put_response``).

``key`` and ``opts`` only come from sources 1 and 2, ``cmd`` from 1 to 3.
Anything that cannot be resolved raises ``ConfigurationAppError`` so a
misconfigured limiter stops the application at startup instead of silently
turning rate limiting off.

``resolve_limiter_config`` is pure: the process-wide lookups (settings, the
registries passed to ``configure_limits``, the Redis executor built from
``SCRIPTLIMIT_REDIS_URL``) happen in ``get_limiter_defaults`` only.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from functools import lru_cache
from typing import Any, Mapping, Sequence

from scriptlimit.core.config import normalize_log_level, settings
from scriptlimit.core.errors import ConfigurationAppError
from scriptlimit.core.registry import (
    BUILTIN_LIMITERS,
    BUILTIN_SCRIPTS,
    DEFAULT_LIMITER_ID,
    CommandExecutor,
    KeyProvider,
    LimiterDefinition,
    LogLevelOption,
    ResponseHandler,
    ScriptDefinition,
    ScriptSource,
)

logger = logging.getLogger(__name__)

DEFAULT_LOG_LEVEL = "error"

CALL_OPTIONS = frozenset({"limiter", "key", "opts", "cmd", "log_level", "response"})

_SCALAR_TYPES = (str, bytes, int, float)


@dataclass(frozen=True)
class ResolvedLimiterConfig:
    """Fully resolved, immutable limiter configuration.

    Attributes:
        limiter_id: Id of the limiter definition that was resolved.
        cmd: Command executor used for SCRIPT LOAD and EVALSHA.
        key: Key provider returning the bucket keys for a request.
        response: Response handler turning an evaluation outcome into an effect.
        log_level: ``logging`` level for evaluation failures, None when disabled.
        opts: Scalars passed to the script as ARGV.
        headers: Header names matched positionally to the script's reply values.
        script: Script source, called when the digest is (re)loaded.
        script_id: Script cache key.
    """

    limiter_id: str
    cmd: CommandExecutor
    key: KeyProvider
    response: ResponseHandler
    log_level: int | None
    opts: tuple[Any, ...]
    headers: tuple[str, ...]
    script: ScriptSource
    script_id: str


@dataclass(frozen=True)
class LimiterDefaults:
    """Process-wide defaults and user registries consumed by the resolver."""

    cmd: CommandExecutor | None = None
    log_level: LogLevelOption = None
    response: ResponseHandler | None = None
    limiters: Mapping[str, LimiterDefinition] = field(default_factory=dict)
    luascripts: Mapping[str, ScriptDefinition] = field(default_factory=dict)


_configured_defaults: LimiterDefaults | None = None


def configure_limits(
    *,
    cmd: CommandExecutor | None = None,
    log_level: LogLevelOption = None,
    response: ResponseHandler | None = None,
    limiters: Mapping[str, LimiterDefinition] | None = None,
    luascripts: Mapping[str, ScriptDefinition] | None = None,
) -> LimiterDefaults:
    """Register process-wide limiter defaults and registries.

    Must be called before the middleware is installed: installations resolve
    their configuration once and never look at the defaults again.

    Example:
        >>> configure_limits(
        ...     cmd=RedisCommandExecutor.from_url("redis://10.10.10.2:6379/0"),
        ...     limiters={"custom": LimiterDefinition(luascript="custom_bucket")},
        ...     luascripts={"custom_bucket": ScriptDefinition(
        ...         script=file_script("./lua/custom_bucket.lua"),
        ...         headers=["x-ratelimit-limit", "x-ratelimit-reset"],
        ...     )},
        ... )
    """
    global _configured_defaults

    _configured_defaults = LimiterDefaults(
        cmd=cmd,
        log_level=log_level,
        response=response,
        limiters=dict(limiters or {}),
        luascripts=dict(luascripts or {}),
    )
    logger.debug(
        "limiter_defaults.configured",
        extra={
            "limiters": sorted(_configured_defaults.limiters),
            "luascripts": sorted(_configured_defaults.luascripts),
            "has_cmd": cmd is not None,
        },
    )
    return _configured_defaults


def reset_limits() -> None:
    """Forget defaults registered with ``configure_limits``."""
    global _configured_defaults

    _configured_defaults = None


@lru_cache(maxsize=None)
def _default_redis_executor(url: str, socket_timeout: float | None) -> CommandExecutor:
    from scriptlimit.adapters.redis import RedisCommandExecutor

    return RedisCommandExecutor.from_url(url, socket_timeout=socket_timeout)


def get_limiter_defaults() -> LimiterDefaults:
    """Assemble process-wide defaults from ``configure_limits`` and settings.

    Programmatic defaults win over settings. When no command executor was
    registered and ``SCRIPTLIMIT_REDIS_URL`` is set, a shared
    ``RedisCommandExecutor`` for that URL becomes the default.
    """

    base = _configured_defaults or LimiterDefaults()

    cmd = base.cmd
    if cmd is None and settings.limit.redis_url:
        cmd = _default_redis_executor(
            settings.limit.redis_url,
            settings.limit.redis_socket_timeout_seconds,
        )

    log_level = base.log_level
    if log_level is None:
        log_level = settings.limit.log_level

    return replace(base, cmd=cmd, log_level=log_level)


def to_logging_level(value: LogLevelOption) -> int | None:
    """Convert a log level option to a ``logging`` level (None disables logging).

    Raises:
        ConfigurationAppError: If the value is not a known level.
    """
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    try:
        normalized = normalize_log_level(value)
    except ValueError as exc:
        raise ConfigurationAppError(
            code="invalid_log_level",
            message=str(exc),
            details={"option": "log_level"},
        ) from exc
    if normalized is None or normalized is False:
        return None
    return logging.getLevelName(normalized.upper())


def _first(*candidates: Any) -> Any:
    """Return the first candidate that is not None."""
    for candidate in candidates:
        if candidate is not None:
            return candidate
    return None


def _lookup(
    entry_id: str,
    user_registry: Mapping[str, Any],
    builtin_registry: Mapping[str, Any],
    *,
    kind: str,
) -> Any:
    """Find ``entry_id`` in the user registry, falling back to built-ins."""
    if entry_id in user_registry:
        return user_registry[entry_id]
    if entry_id in builtin_registry:
        return builtin_registry[entry_id]
    known = sorted(set(user_registry) | set(builtin_registry))
    raise ConfigurationAppError(
        code=f"unknown_{kind}",
        message=f"{kind} '{entry_id}' is not registered",
        details={"option": kind, "hint": f"Registered {kind}s: {', '.join(known) or 'none'}"},
    )


def _missing(option: str, limiter_id: str, hint: str) -> ConfigurationAppError:
    return ConfigurationAppError(
        code=f"missing_{option}",
        message=f"Limiter '{limiter_id}' has no '{option}' configured",
        details={"option": option, "limiter": limiter_id, "hint": hint},
    )


def _require_callable(value: Any, option: str, limiter_id: str) -> Any:
    if not callable(value):
        raise ConfigurationAppError(
            code=f"invalid_{option}",
            message=f"Limiter '{limiter_id}' option '{option}' must be callable, got {type(value).__name__}",
            details={"option": option, "limiter": limiter_id},
        )
    return value


def _validate_opts(opts: Any, limiter_id: str) -> tuple[Any, ...]:
    if isinstance(opts, (str, bytes)) or not isinstance(opts, Sequence):
        raise ConfigurationAppError(
            code="invalid_opts",
            message=f"Limiter '{limiter_id}' opts must be a list of scalars",
            details={"option": "opts", "limiter": limiter_id},
        )
    for value in opts:
        if isinstance(value, bool) or not isinstance(value, _SCALAR_TYPES):
            raise ConfigurationAppError(
                code="invalid_opts",
                message=f"Limiter '{limiter_id}' opts contain a non-scalar value: {value!r}",
                details={"option": "opts", "limiter": limiter_id},
            )
    return tuple(opts)


def _validate_headers(headers: Any, script_id: str) -> tuple[str, ...]:
    if isinstance(headers, str) or not isinstance(headers, Sequence):
        raise ConfigurationAppError(
            code="invalid_headers",
            message=f"Lua script '{script_id}' headers must be a list of header names",
            details={"option": "headers", "script_id": script_id},
        )
    if not all(isinstance(name, str) and name for name in headers):
        raise ConfigurationAppError(
            code="invalid_headers",
            message=f"Lua script '{script_id}' headers must be non-empty strings",
            details={"option": "headers", "script_id": script_id},
        )
    return tuple(name.lower() for name in headers)


def resolve_limiter_config(
    call_options: Mapping[str, Any],
    defaults: LimiterDefaults,
) -> ResolvedLimiterConfig:
    """Resolve one limiter installation into an immutable configuration.

    Args:
        call_options: Options given at the installation site. Accepted keys:
            ``limiter``, ``key``, ``opts``, ``cmd``, ``log_level``, ``response``.
        defaults: Process-wide defaults and user registries.

    Returns:
        ResolvedLimiterConfig: The resolved configuration.

    Raises:
        ConfigurationAppError: If an option is unknown or invalid, or a
            required field cannot be resolved from any source.
    """
    # Imported here: the default handler needs ResolvedLimiterConfig at type-check time only.
    from scriptlimit.core.response import put_response

    unknown = sorted(set(call_options) - CALL_OPTIONS)
    if unknown:
        raise ConfigurationAppError(
            code="unknown_option",
            message=f"Unknown rate limit option(s): {', '.join(unknown)}",
            details={"hint": f"Valid options: {', '.join(sorted(CALL_OPTIONS))}"},
        )

    limiter_id = _first(call_options.get("limiter"), DEFAULT_LIMITER_ID)
    limiter: LimiterDefinition = _lookup(
        limiter_id, defaults.limiters, BUILTIN_LIMITERS, kind="limiter"
    )

    script_id = limiter.luascript
    if not script_id:
        raise _missing("luascript", limiter_id, "Set LimiterDefinition(luascript=...)")
    luascript: ScriptDefinition = _lookup(
        script_id, defaults.luascripts, BUILTIN_SCRIPTS, kind="luascript"
    )

    key = _first(call_options.get("key"), limiter.key)
    if key is None:
        raise _missing("key", limiter_id, "Pass key=... when installing the limiter or set it on the limiter definition")

    opts = _first(call_options.get("opts"), limiter.opts)
    if opts is None:
        raise _missing("opts", limiter_id, "Pass opts=[...] when installing the limiter or set it on the limiter definition")

    cmd = _first(call_options.get("cmd"), limiter.cmd, defaults.cmd)
    if cmd is None:
        raise _missing("cmd", limiter_id, "Set SCRIPTLIMIT_REDIS_URL or call configure_limits(cmd=...)")

    log_level = _first(
        call_options.get("log_level"),
        limiter.log_level,
        defaults.log_level,
        DEFAULT_LOG_LEVEL,
    )
    response = _first(call_options.get("response"), limiter.response, defaults.response, put_response)

    config = ResolvedLimiterConfig(
        limiter_id=limiter_id,
        cmd=_require_callable(cmd, "cmd", limiter_id),
        key=_require_callable(key, "key", limiter_id),
        response=_require_callable(response, "response", limiter_id),
        log_level=to_logging_level(log_level),
        opts=_validate_opts(opts, limiter_id),
        headers=_validate_headers(luascript.headers, script_id),
        script=_require_callable(luascript.script, "script", limiter_id),
        script_id=script_id,
    )

    logger.debug(
        "limiter_config.resolved",
        extra={
            "limiter": config.limiter_id,
            "script_id": config.script_id,
            "opts": list(config.opts),
            "headers": list(config.headers),
            "log_level": config.log_level,
        },
    )
    return config
