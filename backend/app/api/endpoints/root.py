from __future__ import annotations

from fastapi import APIRouter

from ...core.config import settings

router = APIRouter()


@router.get(
    "/",
    tags=["root"],
    summary="API root – service name and entry points",
)
async def root() -> dict:
    """Smoke-test payload naming the chat endpoint and the docs."""
    return {
        "message": f"{settings.app.name} API",
        "version": "v1",
        "chat": "/api/v1/chat",
        "docs": "/api/docs",
    }
