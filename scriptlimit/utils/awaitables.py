"""Helpers for capabilities that may be plain or async callables."""

from __future__ import annotations

import inspect
from typing import Any, TypeVar

T = TypeVar("T")


async def maybe_await(value: T | Any) -> T:
    """Await ``value`` if it is awaitable, otherwise return it unchanged."""

    if inspect.isawaitable(value):
        return await value
    return value
