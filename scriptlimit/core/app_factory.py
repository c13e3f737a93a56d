"""Application factory for the demonstration FastAPI app.

Shows the limiter installed the way a host application would do it: logging
first, then the rate limit middleware covering the ``/v1`` API while
``/health`` stays unlimited.
"""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI

from scriptlimit.api.routes import health_router, ping_router
from scriptlimit.core.config import settings
from scriptlimit.core.keys import client_key
from scriptlimit.core.logging import configure_logging
from scriptlimit.core.middleware import fixed_window_middleware

API_PREFIX = "/v1"
PING_LIMIT = 10
PING_WINDOW_SECONDS = 60


def create_app(**limiter_options: Any) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        **limiter_options: Extra installation options for the ``/v1`` limiter,
            e.g. ``cmd=`` to use a specific command executor.

    Returns:
        Configured FastAPI app with the rate limit middleware and routers.

    Raises:
        ConfigurationAppError: If the limiter cannot be resolved (for example
            no command executor is configured).
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app = FastAPI(
        title="scriptlimit",
        description="Redis Lua script rate limiting middleware demo.",
        version="0.1.0",
    )

    app.middleware("http")(
        fixed_window_middleware(
            PING_LIMIT,
            PING_WINDOW_SECONDS,
            key=client_key("ping"),
            paths=[API_PREFIX],
            **limiter_options,
        )
    )

    app.include_router(ping_router, prefix=API_PREFIX)
    app.include_router(health_router)

    return app
