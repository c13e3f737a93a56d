"""Store adapters - command executors the limiter sends Redis commands through."""

from scriptlimit.adapters.redis.base import AbstractCommandExecutor
from scriptlimit.adapters.redis.redis_executor import RedisCommandExecutor

__all__ = [
    "AbstractCommandExecutor",
    "RedisCommandExecutor",
]
