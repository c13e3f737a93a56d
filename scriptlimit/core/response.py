"""Default response handler.

``put_response`` turns an evaluation outcome into a ``ResponseEffect``: the
rate limit headers to set and, when the limit is exceeded, the 429 response
that ends the request. The middleware applies the effect.

A failed evaluation produces an empty effect. The request goes through
untouched and the failure is logged at the limiter's log level (or not at
all when logging is disabled): losing Redis turns rate limiting off, it does
not take the protected endpoints down.

Custom handlers must accept ``(request, config, outcome)`` and return a
``ResponseEffect`` (or an awaitable resolving to one).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Sequence

from fastapi import status
from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response

from scriptlimit.core.evaluator import EvaluationFailure, EvaluationOutcome

if TYPE_CHECKING:
    from scriptlimit.core.limiter_config import ResolvedLimiterConfig

logger = logging.getLogger(__name__)

LIMIT_STATUS = status.HTTP_429_TOO_MANY_REQUESTS
LIMIT_BODY = "Too Many Requests"

HeaderList = tuple[tuple[str, str], ...]


@dataclass(frozen=True)
class ResponseEffect:
    """What the middleware does with the response.

    Attributes:
        headers: Headers to set, in order, replacing same-named headers.
        halt: Response sent instead of calling the rest of the application.
    """

    headers: HeaderList = ()
    halt: Response | None = None


PASS_THROUGH = ResponseEffect()


def _header_text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("latin-1")
    return str(value)


def _is_pair(value: Any) -> bool:
    return isinstance(value, (list, tuple)) and len(value) == 2


def map_headers(values: Sequence[Any], names: Sequence[str]) -> HeaderList:
    """Match script header values with configured header names by position.

    A ``(name, value)`` pair sets ``name`` instead of the positional name.
    Values past the end of ``names`` are dropped unless they are pairs.

    Examples:
        >>> map_headers(["10", "55"], ["x-limit", "x-reset", "x-remaining"])
        (('x-limit', '10'), ('x-reset', '55'))
        >>> map_headers([["x-custom", 1]], ["x-limit"])
        (('x-custom', '1'),)
    """

    headers: list[tuple[str, str]] = []
    for position, value in enumerate(values):
        if _is_pair(value):
            name, header_value = value
            headers.append((_header_text(name).lower(), _header_text(header_value)))
        elif position < len(names):
            headers.append((names[position], _header_text(value)))
    return tuple(headers)


def put_response(
    request: Request,
    config: ResolvedLimiterConfig,
    outcome: EvaluationOutcome,
) -> ResponseEffect:
    """Build the response effect for an evaluation outcome.

    - allow: set rate limit headers, continue.
    - deny: set rate limit headers, answer ``429 Too Many Requests`` (plain text).
    - failure: leave the response alone and log the cause.

    Args:
        request: Incoming request.
        config: Resolved limiter configuration.
        outcome: Result of ``evaluate``.

    Returns:
        ResponseEffect: Headers to set and optional halting response.
    """

    if isinstance(outcome, EvaluationFailure):
        if config.log_level is not None:
            logger.log(
                config.log_level,
                "rate_limit.evaluation_failed",
                extra={
                    "limiter": config.limiter_id,
                    "script_id": config.script_id,
                    "error_type": type(outcome.cause).__name__,
                    "error_msg": str(outcome.cause),
                    "request_path": request.url.path,
                },
            )
        return PASS_THROUGH

    headers = map_headers(outcome.header_values, config.headers)

    if outcome.allowed:
        logger.debug(
            "rate_limit.allowed",
            extra={"limiter": config.limiter_id, "request_path": request.url.path},
        )
        return ResponseEffect(headers=headers)

    logger.info(
        "rate_limit.denied",
        extra={
            "limiter": config.limiter_id,
            "request_path": request.url.path,
            "request_method": request.method,
        },
    )
    rejection = PlainTextResponse(LIMIT_BODY, status_code=LIMIT_STATUS)
    for name, value in headers:
        rejection.headers[name] = value
    return ResponseEffect(headers=headers, halt=rejection)
