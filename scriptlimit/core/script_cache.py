"""Process-wide cache of Lua script digests.

Limiter scripts are registered with Redis (``SCRIPT LOAD``) the first time
they are needed and invoked by their SHA1 digest afterwards. The digest is
kept here, keyed by script id, for the lifetime of the process.

The cache is never expired on a timer. Redis may forget scripts on restart or
``SCRIPT FLUSH``; the evaluator notices the resulting NOSCRIPT error and calls
``load_digest`` to register the script again.

There is no lock. Concurrent first loads of the same script may each send
``SCRIPT LOAD``; Redis returns the same digest for the same source, so every
writer stores the same value.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from scriptlimit.core.errors import ScriptResultError
from scriptlimit.utils.awaitables import maybe_await

if TYPE_CHECKING:
    from scriptlimit.core.limiter_config import ResolvedLimiterConfig

logger = logging.getLogger(__name__)


class ScriptCache:
    """Read-through map of script id to Redis script digest."""

    def __init__(self) -> None:
        self._digests: dict[str, str] = {}
        self._hits = 0
        self._misses = 0
        self._loads = 0

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return (
            f"ScriptCache(entries={len(self._digests)}, hits={self._hits}, "
            f"misses={self._misses}, loads={self._loads})"
        )

    def peek(self, script_id: str) -> str | None:
        """Return the cached digest without loading it."""

        return self._digests.get(script_id)

    async def get_digest(self, config: ResolvedLimiterConfig) -> str:
        """Return the digest for ``config.script_id``, loading it on a miss.

        Args:
            config: Resolved limiter configuration (script source and command executor).

        Returns:
            str: SHA1 digest of the registered script.

        Raises:
            Exception: Whatever the script source or command executor raised.
        """

        digest = self._digests.get(config.script_id)
        if digest is not None:
            self._hits += 1
            return digest

        self._misses += 1
        return await self.load_digest(config)

    async def load_digest(self, config: ResolvedLimiterConfig) -> str:
        """Register the script with Redis and cache its digest.

        Bypasses any cached value. On failure the entry for the script id is
        removed and the error propagates.

        Args:
            config: Resolved limiter configuration.

        Returns:
            str: SHA1 digest returned by ``SCRIPT LOAD``.
        """

        script_id = config.script_id
        try:
            source = await maybe_await(config.script())
            reply = await maybe_await(config.cmd(["SCRIPT", "LOAD", source]))
            digest = _decode_digest(reply, script_id)
        except Exception:
            self._digests.pop(script_id, None)
            raise

        self._loads += 1
        self._digests[script_id] = digest
        logger.info(
            "script_cache.loaded",
            extra={
                "script_id": script_id,
                "digest": digest,
                "loads": self._loads,
            },
        )
        return digest

    def invalidate(self, script_id: str) -> None:
        """Drop the cached digest for one script."""

        self._digests.pop(script_id, None)

    def clear(self) -> None:
        """Remove all cached digests and reset counters."""

        self._digests.clear()
        self._hits = 0
        self._misses = 0
        self._loads = 0

    def stats(self) -> dict[str, int]:
        """Return cache counters without exposing digests."""

        return {
            "entries": len(self._digests),
            "hits": self._hits,
            "misses": self._misses,
            "loads": self._loads,
        }


def _decode_digest(reply: object, script_id: str) -> str:
    if isinstance(reply, bytes):
        reply = reply.decode("ascii", errors="replace")
    if not isinstance(reply, str) or not reply:
        raise ScriptResultError(
            code="invalid_script_digest",
            message=f"SCRIPT LOAD returned no digest for script '{script_id}'",
            details={"script_id": script_id, "command": "SCRIPT LOAD"},
        )
    return reply


# Shared by every limiter installation in the process.
script_cache = ScriptCache()
