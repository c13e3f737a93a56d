from __future__ import annotations

from fastapi import APIRouter

router = APIRouter(tags=["Ping"])


@router.get("/ping")
def ping() -> dict:
    """Rate limited echo endpoint; responses carry the x-ratelimit-* headers."""

    return {"pong": True}
