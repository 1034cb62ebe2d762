"""Socket push subscriber."""
import asyncio
import json
import logging
from typing import Any, Callable, Dict, Optional, Set

import websockets

from softphone.services.call_session.constants import PUSH_RECONNECT_DELAY_SECONDS
from softphone.services.call_session.models import CallEvent, UpdateSource
from softphone.services.relay.events import (
    REGISTER_EVENT,
    STATUS_UPDATE_EVENT,
    UNREGISTER_EVENT,
    WELCOME_EVENT,
)

logger = logging.getLogger(__name__)


class StatusPushSubscriber:
    """
    Keeps a socket open to the server and turns status pushes into events.

    The tracked call is registered on every (re)connect, so a dropped socket
    only loses the pushes sent while it was down; the fallback poller covers
    those.
    """

    def __init__(
        self,
        url: str,
        dispatch: Callable[[CallEvent], Any],
        reconnect_delay: float = PUSH_RECONNECT_DELAY_SECONDS,
        connect: Callable[..., Any] = websockets.connect,
    ):
        self.url = url
        self.dispatch = dispatch
        self.reconnect_delay = reconnect_delay
        self._connect = connect
        self.call_id: Optional[str] = None
        self.stats: Dict[str, int] = {"connects": 0, "reconnects": 0, "pushes": 0}
        self._websocket = None
        self._task: Optional[asyncio.Task] = None
        self._sends: Set[asyncio.Task] = set()
        self._closing = False

    @property
    def connected(self) -> bool:
        return self._websocket is not None

    def open(self) -> None:
        """Start the connect loop in the background."""
        if self._task is not None and not self._task.done():
            return
        self._closing = False
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def aclose(self) -> None:
        self._closing = True
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        if self._sends:
            await asyncio.gather(*self._sends, return_exceptions=True)

    def start(self, call_id: str) -> None:
        """Join ``call_id``'s topic, leaving the previous one."""
        if call_id == self.call_id:
            return
        previous, self.call_id = self.call_id, call_id
        if previous:
            self._send_soon(UNREGISTER_EVENT, previous)
        self._send_soon(REGISTER_EVENT, call_id)

    def stop(self) -> None:
        previous, self.call_id = self.call_id, None
        if previous:
            self._send_soon(UNREGISTER_EVENT, previous)

    def _send_soon(self, event: str, call_id: str) -> None:
        # While disconnected the next connect registers the tracked call
        if self._websocket is None:
            return
        task = asyncio.get_running_loop().create_task(self._send(event, call_id))
        self._sends.add(task)
        task.add_done_callback(self._sends.discard)

    async def _send(self, event: str, call_id: str) -> None:
        websocket = self._websocket
        if websocket is None:
            return
        try:
            await websocket.send(json.dumps({"event": event, "data": call_id}))
            logger.info(f"[PUSH] Sent {event} - CallSid: {call_id}")
        except websockets.WebSocketException as e:
            logger.warning(f"[PUSH] Could not send {event} - CallSid: {call_id}, Error: {e}")

    async def _run(self) -> None:
        while not self._closing:
            try:
                async with self._connect(self.url) as websocket:
                    self._websocket = websocket
                    self.stats["connects"] += 1
                    logger.info(f"[PUSH] Connected to {self.url}")
                    if self.call_id:
                        await self._send(REGISTER_EVENT, self.call_id)
                    async for raw in websocket:
                        self.handle_frame(raw)
            except (websockets.WebSocketException, OSError, asyncio.TimeoutError) as e:
                logger.warning(f"[PUSH] Connection lost: {type(e).__name__}: {str(e)}")
            finally:
                self._websocket = None

            if self._closing:
                return
            self.stats["reconnects"] += 1
            await asyncio.sleep(self.reconnect_delay)

    def handle_frame(self, raw: Any) -> None:
        """Turn one server frame into a ``socket-push`` event, if it is a status push."""
        try:
            frame = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning(f"[PUSH] Ignoring malformed frame: {raw!r}")
            return
        if not isinstance(frame, dict):
            return

        event, data = frame.get("event"), frame.get("data")
        if event == STATUS_UPDATE_EVENT and isinstance(data, dict):
            call_id, status = data.get("callId"), data.get("status")
            if call_id and status:
                self.stats["pushes"] += 1
                logger.debug(f"[PUSH] Status pushed - CallSid: {call_id}, Status: {status}")
                self.dispatch(CallEvent.remote_status(call_id, status, UpdateSource.SOCKET_PUSH))
        elif event == WELCOME_EVENT:
            logger.info(f"[PUSH] Server says: {data}")
