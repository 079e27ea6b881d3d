from __future__ import annotations

from fastapi import APIRouter

from .endpoints.chat import router as chat_router
from .endpoints.health import router as health_router
from .endpoints.root import router as root_router

router = APIRouter()

# Mounted under /api/v1 by main.create_app
for endpoint_router in (root_router, health_router, chat_router):
    router.include_router(endpoint_router)
