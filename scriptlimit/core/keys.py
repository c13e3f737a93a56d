"""Bucket key providers.

A key provider receives the request and returns the Redis keys passed to the
limiter script (``KEYS`` in Lua). The first key names the bucket the request
is counted against. Providers raise ``KeyAppError`` when the request carries
nothing to key on; the evaluation then fails open.

The prefix separates limiters that share a Redis instance, e.g.
``client_key("high_cost")`` produces ``high_cost:ip:10.0.0.7``.
"""

from __future__ import annotations

from starlette.requests import Request

from scriptlimit.core.errors import KeyAppError
from scriptlimit.core.logging import fingerprint
from scriptlimit.core.registry import KeyProvider


def client_key(prefix: str, *, api_key_header: str = "X-API-Key") -> KeyProvider:
    """Key requests by API key when present, otherwise by client IP.

    API keys are hashed so the secret never becomes part of a Redis key.
    """

    def provider(request: Request) -> list[str]:
        api_key = request.headers.get(api_key_header)
        if api_key:
            return [f"{prefix}:api_key:{fingerprint(api_key)}"]

        client_host = request.client.host if request.client else None
        if not client_host:
            raise KeyAppError(
                code="missing_client_address",
                message="Request has neither an API key nor a client address",
            )
        return [f"{prefix}:ip:{client_host}"]

    return provider


def header_key(header: str, prefix: str) -> KeyProvider:
    """Key requests by the value of a request header."""

    def provider(request: Request) -> list[str]:
        value = request.headers.get(header)
        if not value:
            raise KeyAppError(
                code="missing_key_header",
                message=f"Missing {header} header",
                details={"option": header},
            )
        return [f"{prefix}:{value}"]

    return provider


def state_key(attribute: str, prefix: str) -> KeyProvider:
    """Key requests by an attribute set on ``request.state`` by earlier middleware.

    Example:
        >>> user_key = state_key("user_id", "high_cost_pipeline")
        >>> # request.state.user_id == 12345 -> ["high_cost_pipeline:12345"]
    """

    def provider(request: Request) -> list[str]:
        value = getattr(request.state, attribute, None)
        if value is None:
            raise KeyAppError(
                code="missing_request_state",
                message=f"Missing {attribute}",
                details={"option": attribute},
            )
        return [f"{prefix}:{value}"]

    return provider
