"""Exception types raised by the limiter.

Only ``ConfigurationAppError`` ever leaves the library: it is raised while a
limiter is being installed. Every other error is raised inside a single
evaluation and turned into an ``EvaluationFailure`` so the request fails open.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for logs."""

    code: str
    message: str
    hint: str
    option: str
    limiter: str
    script_id: str
    command: str


@dataclass
class AppError(Exception):
    """Base error for limiter failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ConfigurationAppError(AppError):
    """Raised at installation time when a limiter cannot be fully resolved."""


class CommandAppError(AppError):
    """Raised when a store command cannot be delivered (connection, timeout)."""


class KeyAppError(AppError):
    """Raised when a key provider cannot produce bucket keys."""


class ScriptResultError(AppError):
    """Raised when a limiter script returns a reply of the wrong shape."""
