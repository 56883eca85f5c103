from __future__ import annotations

from fastapi import APIRouter

router = APIRouter(prefix="/v1", tags=["Ping"])


@router.get("/ping")
async def ping() -> dict:
    """Lightweight endpoint behind the rate limit, useful for smoke tests."""

    return {"pong": True}
