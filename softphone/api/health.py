"""Health check endpoint."""
import logging

from fastapi import APIRouter, Request

from softphone.core.config import settings

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/health")
async def health_check(request: Request):
    """Health check endpoint."""
    logger.debug(
        f"[HEALTH] Health check requested - Client: {request.client.host if request.client else 'unknown'}"
    )
    return {"status": "healthy"}


@router.get("/config")
async def client_config(request: Request):
    """Tell the browser which environment and callback domain it talks to."""
    domain = settings.base_url or str(request.base_url).rstrip("/")
    return {"environment": settings.environment, "domain": domain}
