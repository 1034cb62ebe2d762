"""Browser leg voice webhook."""
import logging

from fastapi import APIRouter, Depends, Request

from softphone.api.responses import twiml_response
from softphone.core.dependencies import get_base_url, get_bridge_controller
from softphone.services.bridge.controller import ConferenceBridgeController
from softphone.services.telephony import twiml

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/voice/client")
async def handle_client_leg(
    request: Request,
    controller: ConferenceBridgeController = Depends(get_bridge_controller),
    base_url: str = Depends(get_base_url),
):
    """
    Answer the browser's own leg.

    The browser dials ``conference:<bridge name>`` after the server started
    the far leg; this puts it into the same bridge.
    """
    try:
        form = await request.form()
        to = form.get("To") or ""
    except Exception as e:
        logger.warning(f"[VOICE CLIENT] Unreadable request body: {type(e).__name__}: {str(e)}")
        to = ""

    logger.info(f"[VOICE CLIENT] Browser leg requested - To: '{to}'")
    try:
        return twiml_response(controller.route_client_leg(to, base_url))
    except Exception as e:
        logger.error(
            f"[VOICE CLIENT] Error building instructions - To: '{to}', "
            f"Error: {type(e).__name__}: {str(e)}",
            exc_info=True,
        )
        return twiml_response(twiml.say_twiml("Invalid connection request"))
