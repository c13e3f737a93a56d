"""Command executor interface.

The limiter only needs one thing from a store client: send a command given
as a flat list of scalars and return the reply. Any async callable with that
shape works as ``cmd``; this base class documents the contract for adapters.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Sequence


class AbstractCommandExecutor(ABC):
    """Interface for store command executors."""

    @abstractmethod
    async def __call__(self, command: Sequence[Any]) -> Any:
        """Execute one command.

        Args:
            command: Command name followed by its arguments, e.g.
                ``["EVALSHA", digest, 1, "bucket", 10, 60]``.

        Returns:
            The decoded store reply.

        Raises:
            Exception: Store error replies (NOSCRIPT included) and transport failures.
        """
        raise NotImplementedError
