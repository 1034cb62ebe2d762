"""Status push socket."""
import json
import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from softphone.core.dependencies import get_status_relay
from softphone.services.relay.events import (
    REGISTER_EVENT,
    STATUS_UPDATE_EVENT,
    UNREGISTER_EVENT,
    WELCOME_EVENT,
)
from softphone.services.relay.relay import StatusRelay

router = APIRouter()
logger = logging.getLogger(__name__)

WELCOME_MESSAGE = "Connected to softphone server"


class SocketConnection:
    """One connected browser socket, usable as a relay subscriber."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket
        self.id = id(websocket)

    async def send_event(self, event: str, data: Any) -> None:
        await self.websocket.send_json({"event": event, "data": data})


def _call_id_from(data: Any) -> Optional[str]:
    """Accept either a bare call id or ``{"callId": ...}``."""
    if isinstance(data, str):
        return data.strip() or None
    if isinstance(data, dict):
        value = data.get("callId") or data.get("callSid")
        return str(value) if value else None
    return None


async def handle_socket_message(
    connection: SocketConnection, message: Any, relay: StatusRelay
) -> None:
    """Handle one control frame from a client."""
    if not isinstance(message, dict):
        logger.warning(f"[SOCKET] Ignoring non-object frame from {connection.id}")
        return

    event = message.get("event")
    call_id = _call_id_from(message.get("data"))

    if event == REGISTER_EVENT and call_id:
        relay.subscribe(call_id, connection)
        logger.info(f"[SOCKET] Client {connection.id} registered for updates on call {call_id}")
        # Catch the late joiner up with whatever the cache already knows
        record = relay.cache.get(call_id)
        if record is not None:
            await connection.send_event(
                STATUS_UPDATE_EVENT, {"callId": record.call_id, "status": record.status}
            )
    elif event == UNREGISTER_EVENT and call_id:
        relay.unsubscribe(call_id, connection)
        logger.info(f"[SOCKET] Client {connection.id} unregistered from call {call_id}")
    else:
        logger.debug(f"[SOCKET] Unhandled frame from {connection.id}: {message}")


@router.websocket("/ws")
async def status_socket(
    websocket: WebSocket,
    relay: StatusRelay = Depends(get_status_relay),
):
    """Clients join a call's topic here and receive its status updates."""
    await websocket.accept()
    connection = SocketConnection(websocket)
    relay.connect(connection)
    logger.info(f"[SOCKET] New client connected {connection.id}")

    try:
        await connection.send_event(WELCOME_EVENT, WELCOME_MESSAGE)
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(frame.get("code", 1000))
            text = frame.get("text")
            if text is None:
                logger.warning(f"[SOCKET] Ignoring binary frame from {connection.id}")
                continue
            try:
                message = json.loads(text)
            except json.JSONDecodeError:
                logger.warning(f"[SOCKET] Ignoring malformed frame from {connection.id}")
                continue
            await handle_socket_message(connection, message, relay)
    except WebSocketDisconnect:
        logger.info(f"[SOCKET] Client disconnected {connection.id}")
    finally:
        relay.disconnect(connection)
