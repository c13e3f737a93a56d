"""HTTP middleware applying a Redis Lua script rate limiter.

The limiter configuration is resolved when the middleware is constructed, so
a misconfigured limiter fails application startup. The enable flag
(``SCRIPTLIMIT_ENABLED``) is read on every request.

Usage:
    app.middleware("http")(
        RateLimitMiddleware(opts=[10, 60], key=client_key("high_cost"))
    )

    app.middleware("http")(
        token_bucket_middleware(20, 600, 5, key=client_key("uploads"), paths=["/v1/uploads"])
    )
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Iterable

from fastapi import Request, Response

from scriptlimit.core.config import parse_enabled_flag, settings
from scriptlimit.core.errors import ConfigurationAppError
from scriptlimit.core.evaluator import evaluate
from scriptlimit.core.limiter_config import (
    LimiterDefaults,
    ResolvedLimiterConfig,
    get_limiter_defaults,
    resolve_limiter_config,
)
from scriptlimit.core.registry import KeyProvider
from scriptlimit.core.response import ResponseEffect
from scriptlimit.core.script_cache import ScriptCache, script_cache
from scriptlimit.utils.awaitables import maybe_await

CallNext = Callable[[Request], Awaitable[Response]]

WRAPPER_OPTIONS = frozenset({"limiter", "opts"})


def _under(path: str, prefix: str) -> bool:
    base = prefix.rstrip("/")
    return path == prefix or path == base or path.startswith(base + "/")


def _reject_wrapper_options(options: dict[str, Any], wrapper: str) -> None:
    clashing = sorted(WRAPPER_OPTIONS & set(options))
    if clashing:
        raise ConfigurationAppError(
            code="unknown_option",
            message=f"{wrapper} sets {', '.join(clashing)} itself",
            details={"option": clashing[0], "hint": "Use RateLimitMiddleware to choose limiter and opts freely"},
        )


class RateLimitMiddleware:
    """Callable for ``app.middleware("http")`` enforcing one limiter.

    Args:
        paths: Only requests whose path lies under one of these prefixes
            (whole segments) are limited. All paths when omitted.
        exclude_paths: Requests whose path lies under one of these prefixes
            are never limited.
        defaults: Process-wide defaults; ``get_limiter_defaults()`` when omitted.
        cache: Script digest cache; the process-wide cache when omitted.
        **options: Installation options: ``limiter``, ``key``, ``opts``,
            ``cmd``, ``log_level``, ``response``. ``fixed_window_middleware``
            and ``token_bucket_middleware`` set ``limiter`` and ``opts``
            themselves and reject both.

    Raises:
        ConfigurationAppError: If the limiter cannot be resolved.
    """

    def __init__(
        self,
        *,
        paths: Iterable[str] | None = None,
        exclude_paths: Iterable[str] | None = None,
        defaults: LimiterDefaults | None = None,
        cache: ScriptCache | None = None,
        **options: Any,
    ) -> None:
        self.config: ResolvedLimiterConfig = resolve_limiter_config(
            options,
            defaults if defaults is not None else get_limiter_defaults(),
        )
        self.paths = tuple(paths) if paths is not None else None
        self.exclude_paths = tuple(exclude_paths or ())
        self.cache = cache if cache is not None else script_cache

    def covers(self, path: str) -> bool:
        """Tell whether requests to ``path`` go through this limiter.

        Prefixes match whole path segments: ``/v1`` covers ``/v1`` and
        ``/v1/items`` but not ``/v10``.
        """

        if any(_under(path, prefix) for prefix in self.exclude_paths):
            return False
        if self.paths is None:
            return True
        return any(_under(path, prefix) for prefix in self.paths)

    async def __call__(self, request: Request, call_next: CallNext) -> Response:
        if not parse_enabled_flag(settings.limit.enabled) or not self.covers(request.url.path):
            return await call_next(request)

        outcome = await evaluate(request, self.config, self.cache)
        effect: ResponseEffect = await maybe_await(
            self.config.response(request, self.config, outcome)
        )

        if effect.halt is not None:
            return effect.halt

        response = await call_next(request)
        for name, value in effect.headers:
            response.headers[name] = value
        return response


def fixed_window_middleware(
    limit: int,
    window_seconds: int,
    *,
    key: KeyProvider,
    **options: Any,
) -> RateLimitMiddleware:
    """Fixed window limiter: ``limit`` requests per ``window_seconds``."""

    _reject_wrapper_options(options, "fixed_window_middleware")
    return RateLimitMiddleware(
        limiter="fixed_window",
        opts=[limit, window_seconds],
        key=key,
        **options,
    )


def token_bucket_middleware(
    limit: int,
    window_seconds: int,
    burst: int,
    *,
    key: KeyProvider,
    **options: Any,
) -> RateLimitMiddleware:
    """Token bucket limiter: ``limit`` tokens per ``window_seconds``, at most ``burst`` at once."""

    _reject_wrapper_options(options, "token_bucket_middleware")
    return RateLimitMiddleware(
        limiter="token_bucket",
        opts=[limit, window_seconds, burst],
        key=key,
        **options,
    )
