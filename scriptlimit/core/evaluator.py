"""Admission check for a single request.

The check runs the limiter's Lua script by digest::

    EVALSHA <digest> <number of keys> <key...> <opt...>

If Redis answers that it does not know the digest (NOSCRIPT, after a restart
or ``SCRIPT FLUSH``), the script is loaded again and the command is sent one
more time with the new digest. Whatever the second attempt returns is final.

``evaluate`` never raises for a per-request fault: key provider errors,
transport errors and malformed script replies are all returned as an
``EvaluationFailure`` so the response handler can fail open.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal, Sequence, Union

from redis.exceptions import NoScriptError
from starlette.requests import Request

from scriptlimit.core.errors import KeyAppError, ScriptResultError
from scriptlimit.core.script_cache import ScriptCache, script_cache
from scriptlimit.utils.awaitables import maybe_await

if TYPE_CHECKING:
    from scriptlimit.core.limiter_config import ResolvedLimiterConfig

logger = logging.getLogger(__name__)

NOSCRIPT_PREFIX = "NOSCRIPT"
ALLOW = "allow"
DENY = "deny"


@dataclass(frozen=True)
class EvaluationSuccess:
    """Script reply of the expected shape.

    Attributes:
        action: ``"allow"`` or ``"deny"``.
        header_values: Values (or ``(name, value)`` pairs) for response headers.
        extra: Reply elements after the header values, not interpreted.
    """

    action: Literal["allow", "deny"]
    header_values: tuple[Any, ...]
    extra: tuple[Any, ...] = ()

    @property
    def allowed(self) -> bool:
        return self.action == ALLOW


@dataclass(frozen=True)
class EvaluationFailure:
    """Evaluation could not produce a decision."""

    cause: Exception


EvaluationOutcome = Union[EvaluationSuccess, EvaluationFailure]


def _error_message(error: Any) -> str | None:
    if isinstance(error, str):
        return error
    if isinstance(error, bytes):
        return error.decode("utf-8", errors="replace")
    message = getattr(error, "message", None)
    if isinstance(message, str):
        return message
    if isinstance(error, BaseException) and error.args and isinstance(error.args[0], str):
        return error.args[0]
    return None


def is_script_unknown(error: Any) -> bool:
    """Tell whether ``error`` is Redis reporting an unknown script digest.

    redis-py raises ``NoScriptError``; other clients surface the raw
    ``NOSCRIPT ...`` reply as the error message. Errors without a readable
    message are never classified as NOSCRIPT.
    """
    if isinstance(error, NoScriptError):
        return True
    message = _error_message(error)
    return message is not None and message.startswith(NOSCRIPT_PREFIX)


async def _get_keys(request: Request, config: ResolvedLimiterConfig) -> list[str]:
    keys = await maybe_await(config.key(request))
    if isinstance(keys, (str, bytes)) or not isinstance(keys, Sequence) or not keys:
        raise KeyAppError(
            code="invalid_bucket_keys",
            message=f"Key provider for limiter '{config.limiter_id}' must return a non-empty list of keys",
            details={"limiter": config.limiter_id},
        )
    if not all(isinstance(key, str) and key for key in keys):
        raise KeyAppError(
            code="invalid_bucket_keys",
            message=f"Key provider for limiter '{config.limiter_id}' returned a non-string key",
            details={"limiter": config.limiter_id},
        )
    return list(keys)


def build_evalsha_command(digest: str, keys: Sequence[str], opts: Sequence[Any]) -> list[Any]:
    """Build ``EVALSHA digest numkeys key... opt...``."""

    return ["EVALSHA", digest, len(keys), *keys, *opts]


def _decode(value: Any) -> Any:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


def _invalid_header_text(value: Any) -> str | None:
    """Return why ``value`` cannot be sent as header text, or None if it can."""

    if isinstance(value, bool) or not isinstance(value, (str, bytes, int)):
        return f"header text must be a string or integer, got {value!r}"
    if isinstance(value, int):
        return None
    if isinstance(value, str):
        try:
            value = value.encode("latin-1")
        except UnicodeEncodeError:
            return f"header text must be latin-1 encodable, got {value!r}"
    if b"\r" in value or b"\n" in value:
        return f"header text must not contain line breaks, got {value!r}"
    return None


def _invalid_header_value(value: Any) -> str | None:
    if isinstance(value, (list, tuple)):
        if len(value) != 2:
            return f"header pair must be {{name, value}}, got {value!r}"
        name, header_value = value
        if isinstance(name, (str, bytes)) and not name:
            return "header pair name must not be empty"
        return _invalid_header_text(name) or _invalid_header_text(header_value)
    return _invalid_header_text(value)


def parse_script_reply(reply: Any) -> EvaluationOutcome:
    """Validate a limiter script reply and turn it into an outcome.

    The reply must be a sequence whose first element is the action and whose
    second element is the list of header values. Each header value is a
    string, bytes or integer, or a ``{name, value}`` pair of those, and must
    be latin-1 text without line breaks. Anything else is a
    ``ScriptResultError`` failure; positions are never guessed.
    """

    if not isinstance(reply, (list, tuple)) or len(reply) < 2:
        return EvaluationFailure(
            ScriptResultError(
                code="invalid_script_reply",
                message=f"Limiter script must return {{action, headers, ...}}, got {reply!r}",
            )
        )

    action, header_values, *extra = reply
    if not isinstance(header_values, (list, tuple)):
        return EvaluationFailure(
            ScriptResultError(
                code="invalid_script_reply",
                message=f"Limiter script header values must be a list, got {header_values!r}",
            )
        )

    for value in header_values:
        problem = _invalid_header_value(value)
        if problem is not None:
            return EvaluationFailure(
                ScriptResultError(
                    code="invalid_script_reply",
                    message=f"Limiter script returned an unusable header value: {problem}",
                )
            )

    return EvaluationSuccess(
        action=ALLOW if _decode(action) == ALLOW else DENY,
        header_values=tuple(header_values),
        extra=tuple(extra),
    )


async def evaluate(
    request: Request,
    config: ResolvedLimiterConfig,
    cache: ScriptCache = script_cache,
) -> EvaluationOutcome:
    """Run the limiter script for one request.

    Args:
        request: Incoming request, handed to the key provider.
        config: Resolved limiter configuration.
        cache: Script digest cache, the process-wide one by default.

    Returns:
        EvaluationOutcome: Decision and header values, or the failure cause.
    """

    try:
        digest = await cache.get_digest(config)
        keys = await _get_keys(request, config)
    except Exception as exc:
        return EvaluationFailure(exc)

    try:
        reply = await maybe_await(config.cmd(build_evalsha_command(digest, keys, config.opts)))
    except Exception as exc:
        if not is_script_unknown(exc):
            return EvaluationFailure(exc)

        logger.info(
            "script_cache.reload",
            extra={
                "limiter": config.limiter_id,
                "script_id": config.script_id,
                "stale_digest": digest,
            },
        )
        try:
            digest = await cache.load_digest(config)
            keys = await _get_keys(request, config)
            reply = await maybe_await(config.cmd(build_evalsha_command(digest, keys, config.opts)))
        except Exception as retry_exc:
            return EvaluationFailure(retry_exc)

    return parse_script_reply(reply)
