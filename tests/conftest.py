"""Pytest configuration and fixtures shared across all test modules.

Environment variables are set before any scriptlimit import so the global
settings object is built from them. Redis is replaced by ``FakeRedis``, an
async command executor that records every command it receives.
"""

import hashlib
import os
from typing import Any, Callable

import pytest
from redis.exceptions import NoScriptError, ResponseError

# CRITICAL: Set these before any imports that might load settings
os.environ["APP_ENV"] = "testing"
os.environ.setdefault("SCRIPTLIMIT_ENABLED", "false")
os.environ.setdefault("SCRIPTLIMIT_LOG_LEVEL", "error")
os.environ.pop("SCRIPTLIMIT_REDIS_URL", None)

from scriptlimit.core.config import settings  # noqa: E402
from scriptlimit.core.limiter_config import (  # noqa: E402
    LimiterDefaults,
    ResolvedLimiterConfig,
    reset_limits,
    resolve_limiter_config,
)
from scriptlimit.core.script_cache import script_cache  # noqa: E402


class FakeRedis:
    """Stand-in for the Redis commands the limiter sends.

    ``SCRIPT LOAD`` registers the source under its SHA1 digest. ``EVALSHA``
    answers NOSCRIPT for unknown digests, raises queued ``errors`` first, and
    otherwise returns ``reply`` (called if callable).
    """

    def __init__(self, reply: Any = None) -> None:
        self.commands: list[list[Any]] = []
        self.scripts: dict[str, str] = {}
        self.errors: list[Exception] = []
        self.reply = reply if reply is not None else ["allow", [10, 59, 9]]

    async def __call__(self, command: Any) -> Any:
        command = list(command)
        self.commands.append(command)

        if command[:2] == ["SCRIPT", "LOAD"]:
            digest = hashlib.sha1(command[2].encode()).hexdigest()
            self.scripts[digest] = command[2]
            return digest

        if command[0] == "EVALSHA":
            if self.errors:
                raise self.errors.pop(0)
            if command[1] not in self.scripts:
                raise NoScriptError("No matching script. Please use EVAL.")
            return self.reply() if callable(self.reply) else self.reply

        raise ResponseError(f"unknown command '{command[0]}'")

    def flush(self) -> None:
        """Forget every registered script, like SCRIPT FLUSH or a restart."""
        self.scripts.clear()

    def count(self, name: str) -> int:
        return sum(1 for command in self.commands if command[0] == name)


def static_key(request: Any) -> list[str]:
    return ["test:bucket"]


@pytest.fixture(autouse=True)
def _isolate_process_state(monkeypatch: pytest.MonkeyPatch):
    """Reset the digest cache, registered defaults and the enable flag."""
    script_cache.clear()
    reset_limits()
    monkeypatch.setattr(settings.limit, "enabled", False)
    yield
    script_cache.clear()
    reset_limits()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def enable_limits(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings.limit, "enabled", "true")


@pytest.fixture
def make_config(fake_redis: FakeRedis) -> Callable[..., ResolvedLimiterConfig]:
    """Resolve a limiter against FakeRedis; keyword arguments are call options."""

    def _make(**options: Any) -> ResolvedLimiterConfig:
        options.setdefault("key", static_key)
        options.setdefault("opts", [10, 60])
        return resolve_limiter_config(options, LimiterDefaults(cmd=fake_redis))

    return _make
