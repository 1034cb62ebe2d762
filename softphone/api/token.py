"""Device token endpoint."""
import logging

from fastapi import APIRouter, Depends, Request

from softphone.api.responses import error_response
from softphone.core.dependencies import get_bridge_controller
from softphone.core.exceptions import ProviderNotConfigured
from softphone.services.bridge.controller import ConferenceBridgeController

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/token")
async def get_token(
    request: Request,
    controller: ConferenceBridgeController = Depends(get_bridge_controller),
):
    """Mint a credential the browser device registers with."""
    logger.info(
        f"[TOKEN] Token requested - Client: {request.client.host if request.client else 'unknown'}"
    )
    try:
        token = controller.mint_device_token()
    except ProviderNotConfigured as e:
        return error_response(500, e.message)
    except Exception as e:
        logger.error(
            f"[TOKEN] Error generating token - Error: {type(e).__name__}: {str(e)}",
            exc_info=True,
        )
        return error_response(500, f"Failed to generate token: {str(e)}")

    logger.info("[TOKEN] Token generated successfully")
    return {"token": token}
