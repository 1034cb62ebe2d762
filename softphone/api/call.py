"""Call placement, status and provider webhook endpoints."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict, Field

from softphone.api.responses import error_response, ok_response, twiml_response
from softphone.core.dependencies import get_base_url, get_bridge_controller, get_status_relay
from softphone.core.exceptions import InvalidArgument, ProviderRequestFailed
from softphone.services.bridge.controller import ConferenceBridgeController
from softphone.services.relay.relay import StatusRelay

router = APIRouter()
logger = logging.getLogger(__name__)


class OutgoingCallRequest(BaseModel):
    """Outbound call request."""

    To: Optional[str] = None


class HangupRequest(BaseModel):
    """Hang-up request; at least one identifier is required."""

    model_config = ConfigDict(populate_by_name=True)

    call_id: Optional[str] = Field(default=None, alias="callId")
    bridge_name: Optional[str] = Field(default=None, alias="bridgeName")


def _client_host(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _int_or_none(value) -> Optional[int]:
    try:
        return int(value) if value not in (None, "") else None
    except (TypeError, ValueError):
        return None


@router.post("/call/outgoing")
async def place_outgoing_call(
    request: Request,
    body: Optional[OutgoingCallRequest] = None,
    controller: ConferenceBridgeController = Depends(get_bridge_controller),
    base_url: str = Depends(get_base_url),
):
    """Create a bridge and dial the remote party into it."""
    to = body.To if body else None
    logger.info(f"[OUTGOING CALL] Request received - To: {to}, Client: {_client_host(request)}")

    if not to or not to.strip():
        return error_response(400, "Please provide a phone number to call.")

    try:
        placed = await controller.place_outbound_call(to, base_url)
    except InvalidArgument as e:
        return error_response(400, e.message)
    except ProviderRequestFailed as e:
        logger.error(f"[OUTGOING CALL] Provider rejected call - To: {to}, Error: {e}")
        return error_response(500, f"Failed to initiate call: {e.message}")

    return {
        "callId": placed.call_id,
        "status": "initiated",
        "bridgeName": placed.bridge_name,
    }


@router.get("/call/status/{call_id}")
async def get_call_status(
    call_id: str,
    relay: StatusRelay = Depends(get_status_relay),
):
    """Status from the cache, or from the provider on a miss."""
    try:
        record = await relay.get(call_id)
    except ProviderRequestFailed as e:
        logger.error(f"[CALL STATUS] Error fetching call status - CallSid: {call_id}, Error: {e}")
        return error_response(500, f"Failed to get call status: {e.message}")
    return record.to_payload()


@router.post("/call/hangup")
async def hang_up_call(
    body: Optional[HangupRequest] = None,
    controller: ConferenceBridgeController = Depends(get_bridge_controller),
):
    """End the far leg and the bridge. Safe to call for calls that already ended."""
    call_id = body.call_id if body else None
    bridge_name = body.bridge_name if body else None
    logger.info(f"[HANGUP] Request received - CallSid: {call_id}, Bridge: {bridge_name}")

    try:
        await controller.hang_up(call_id=call_id, bridge_name=bridge_name)
    except InvalidArgument as e:
        return error_response(400, e.message)
    except ProviderRequestFailed as e:
        logger.error(f"[HANGUP] Error hanging up call - CallSid: {call_id}, Error: {e}")
        return error_response(500, f"Failed to hang up call: {e.message}")

    return {"success": True, "status": "completed"}


@router.post("/call/incoming")
async def handle_incoming_call(
    request: Request,
    controller: ConferenceBridgeController = Depends(get_bridge_controller),
):
    """Route a PSTN caller to the browser client."""
    try:
        form = await request.form()
        from_number = form.get("From")
        call_sid = form.get("CallSid")
    except Exception as e:
        logger.warning(f"[INCOMING CALL] Unreadable request body: {type(e).__name__}: {str(e)}")
        from_number, call_sid = None, None

    logger.info(f"[INCOMING CALL] Received incoming call webhook - CallSid: {call_sid}, From: {from_number}")
    return twiml_response(controller.route_incoming(from_number))


@router.post("/call/conference-status")
async def handle_conference_status(request: Request):
    """
    Bridge lifecycle callbacks.

    Logged only. Always 200 so the provider never retries a callback we
    cannot parse.
    """
    try:
        form = await request.form()
        logger.info(
            f"[CONFERENCE STATUS] Event: {form.get('StatusCallbackEvent')} "
            f"for {form.get('FriendlyName') or form.get('ConferenceName')} "
            f"(ConferenceSid: {form.get('ConferenceSid')}, CallSid: {form.get('CallSid')})"
        )
    except Exception as e:
        logger.warning(f"[CONFERENCE STATUS] Unreadable callback: {type(e).__name__}: {str(e)}")
    return ok_response()


@router.post("/call/status")
async def handle_call_status(
    request: Request,
    relay: StatusRelay = Depends(get_status_relay),
):
    """
    Leg status callbacks from the provider.

    Feeds the status relay. Always answers 200, whatever the payload.
    """
    try:
        form = await request.form()
        call_sid = form.get("CallSid")
        call_status = form.get("CallStatus")
        logger.info(
            f"[CALL STATUS] Received status update - CallSid: {call_sid}, "
            f"CallStatus: {call_status}, Client: {_client_host(request)}"
        )
        if call_sid and call_status:
            await relay.ingest(
                call_sid,
                call_status,
                direction=form.get("Direction"),
                duration_seconds=_int_or_none(form.get("CallDuration")),
            )
        else:
            logger.warning(f"[CALL STATUS] Ignoring callback without CallSid/CallStatus - Fields: {list(form.keys())}")
    except Exception as e:
        logger.error(
            f"[CALL STATUS] Error handling call status update - "
            f"Error: {type(e).__name__}: {str(e)}",
            exc_info=True,
        )
    # Still return OK to Twilio to avoid retries
    return ok_response()
