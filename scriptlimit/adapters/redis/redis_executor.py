"""Redis command executor built on redis-py's asyncio client."""

from __future__ import annotations

import logging
from typing import Any, Sequence

from redis.asyncio import Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from scriptlimit.adapters.redis.base import AbstractCommandExecutor
from scriptlimit.core.errors import CommandAppError

logger = logging.getLogger(__name__)


class RedisCommandExecutor(AbstractCommandExecutor):
    """Send limiter commands through a redis-py asyncio client.

    Error replies (``ResponseError`` and its ``NoScriptError`` subclass) are
    raised unchanged so NOSCRIPT can be recognized by the evaluator. Connection
    and timeout failures are raised as ``CommandAppError``.
    """

    def __init__(self, client: Redis) -> None:
        self.client = client

    @classmethod
    def from_url(cls, url: str, *, socket_timeout: float | None = None) -> "RedisCommandExecutor":
        """Create an executor with its own connection pool.

        No connection is opened until the first command.

        Args:
            url: Redis URL, e.g. ``redis://localhost:6379/0``.
            socket_timeout: Per-command socket timeout in seconds.
        """
        client = Redis.from_url(
            url,
            encoding="utf-8",
            decode_responses=True,
            socket_timeout=socket_timeout,
        )
        logger.debug("redis_executor.created", extra={"redis_url": url})
        return cls(client)

    async def __call__(self, command: Sequence[Any]) -> Any:
        try:
            return await self.client.execute_command(*command)
        except (RedisConnectionError, RedisTimeoutError) as exc:
            raise CommandAppError(
                code="redis_unavailable",
                message=f"Redis command {command[0]} failed: {exc}",
                details={"command": str(command[0])},
            ) from exc

    async def aclose(self) -> None:
        """Close the underlying connection pool."""
        await self.client.aclose()
