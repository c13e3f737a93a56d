"""Redis Lua script rate limiting middleware for FastAPI and Starlette."""

from scriptlimit.core.errors import ConfigurationAppError
from scriptlimit.core.evaluator import EvaluationFailure, EvaluationSuccess, evaluate
from scriptlimit.core.keys import client_key, header_key, state_key
from scriptlimit.core.limiter_config import (
    LimiterDefaults,
    ResolvedLimiterConfig,
    configure_limits,
    resolve_limiter_config,
)
from scriptlimit.core.middleware import (
    RateLimitMiddleware,
    fixed_window_middleware,
    token_bucket_middleware,
)
from scriptlimit.core.registry import (
    LimiterDefinition,
    ScriptDefinition,
    file_script,
    packaged_script,
)
from scriptlimit.core.response import ResponseEffect, put_response
from scriptlimit.core.script_cache import script_cache

__all__ = [
    "ConfigurationAppError",
    "EvaluationFailure",
    "EvaluationSuccess",
    "LimiterDefaults",
    "LimiterDefinition",
    "RateLimitMiddleware",
    "ResolvedLimiterConfig",
    "ResponseEffect",
    "ScriptDefinition",
    "client_key",
    "configure_limits",
    "evaluate",
    "file_script",
    "fixed_window_middleware",
    "header_key",
    "packaged_script",
    "put_response",
    "resolve_limiter_config",
    "script_cache",
    "state_key",
    "token_bucket_middleware",
]
