from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from ...core.config import ConfigurationError
from ...core.resources import ChatResources
from ..deps import get_resources

router = APIRouter(
    prefix="/health",
    tags=["health"],
)


@router.get(
    "",
    summary="Service liveness check",
)
async def health_check() -> dict:
    """
    Liveness check for the Docker healthcheck and monitoring.
    Does not touch credentials or the similarity store.
    """
    return {"status": "ok"}


@router.get(
    "/ready",
    summary="Readiness check: credentials and datastore address are configured",
)
async def readiness_check(resources: ChatResources = Depends(get_resources)) -> JSONResponse:
    try:
        resources.check_configuration()
    except ConfigurationError as exc:
        return JSONResponse(status_code=503, content={"status": "unavailable", "error": str(exc)})
    return JSONResponse(
        content={
            "status": "ready",
            "store_backend": resources.settings.store.backend,
            "embedding_dimension": resources.settings.embedding.dimension,
        }
    )
