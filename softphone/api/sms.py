"""Text message send and inbound webhook endpoints."""
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from softphone.api.responses import twiml_response
from softphone.core.config import settings
from softphone.core.dependencies import get_status_relay, get_telephony_provider
from softphone.core.exceptions import InvalidArgument, ProviderRequestFailed
from softphone.services.relay.events import NEW_MESSAGE_EVENT
from softphone.services.relay.relay import StatusRelay
from softphone.services.telephony import twiml
from softphone.services.telephony.numbers import normalize_number
from softphone.services.telephony.provider import TelephonyProvider

router = APIRouter()
logger = logging.getLogger(__name__)


class SendMessageRequest(BaseModel):
    """Outbound text message."""

    to: Optional[str] = None
    body: Optional[str] = None


def message_payload(
    sid: Optional[str],
    body: Optional[str],
    from_number: Optional[str],
    to: Optional[str],
    direction: str,
    status: Optional[str],
    timestamp,
) -> dict:
    """Message in the shape widgets render, for both the reply and the socket push."""
    if isinstance(timestamp, datetime):
        timestamp = timestamp.isoformat()
    return {
        "sid": sid,
        "body": body,
        "from": from_number,
        "to": to,
        "direction": direction,
        "status": status,
        "timestamp": timestamp,
    }


def _failure(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


@router.post("/sms/send")
async def send_message(
    body: Optional[SendMessageRequest] = None,
    provider: TelephonyProvider = Depends(get_telephony_provider),
    relay: StatusRelay = Depends(get_status_relay),
):
    """Send a text from the configured number and tell every connected widget."""
    if body is None or not body.to or not body.body:
        return _failure(400, "Missing required parameters: to, body")

    try:
        to = normalize_number(body.to, settings.default_country_code)
    except InvalidArgument as e:
        return _failure(400, e.message)

    logger.info(f"[SMS] Sending message - To: {to}, Length: {len(body.body)}")
    try:
        message = await provider.send_message(to, body.body)
    except ProviderRequestFailed as e:
        logger.error(f"[SMS] Provider rejected message - To: {to}, Error: {e}")
        return _failure(500, e.message or "Failed to send message")

    payload = message_payload(
        message.sid,
        message.body,
        message.from_number,
        message.to,
        "outbound",
        message.status,
        message.date_created,
    )
    relay.broadcast(NEW_MESSAGE_EVENT, payload)
    return {"success": True, "message": payload}


@router.post("/sms/webhook")
async def handle_incoming_message(
    request: Request,
    relay: StatusRelay = Depends(get_status_relay),
):
    """Relay an inbound text to every connected widget and acknowledge it with empty TwiML."""
    try:
        form = await request.form()
        payload = message_payload(
            form.get("MessageSid"),
            form.get("Body"),
            form.get("From"),
            form.get("To"),
            "inbound",
            form.get("Status") or "received",
            form.get("DateCreated") or datetime.now(timezone.utc),
        )
        logger.info(f"[SMS] Received message - MessageSid: {payload['sid']}, From: {payload['from']}")
        relay.broadcast(NEW_MESSAGE_EVENT, payload)
    except Exception as e:
        logger.error(
            f"[SMS] Error handling incoming message - Error: {type(e).__name__}: {str(e)}",
            exc_info=True,
        )
        return Response(content="Error handling webhook", status_code=500, media_type="text/plain")
    return twiml_response(twiml.empty_messaging_twiml())
