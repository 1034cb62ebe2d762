"""Softphone: the call operations a widget needs, wired together."""
import logging
from typing import Callable, Optional

from softphone.core.exceptions import InvalidArgument, LocalMediaError, ProviderRequestFailed
from softphone.services.call_session.api_client import SoftphoneApiClient
from softphone.services.call_session.device import CallingDevice, DeviceSession
from softphone.services.call_session.models import (
    CallEvent,
    CallSession,
    CallStatus,
    EventKind,
)
from softphone.services.call_session.poller import FallbackPoller
from softphone.services.call_session.push import StatusPushSubscriber
from softphone.services.call_session.state_machine import CallStateMachine

logger = logging.getLogger(__name__)


def format_duration(seconds: int) -> str:
    """``M:SS``, e.g. ``2:05``."""
    minutes, seconds = divmod(max(seconds, 0), 60)
    return f"{minutes}:{seconds:02d}"


def socket_url(base_url: str) -> str:
    """Push socket URL for a server base URL."""
    base_url = base_url.rstrip("/")
    if base_url.startswith("https://"):
        return "wss://" + base_url[len("https://"):] + "/ws"
    if base_url.startswith("http://"):
        return "ws://" + base_url[len("http://"):] + "/ws"
    return base_url + "/ws"


class Softphone:
    """
    User-facing call operations.

    Every operation goes through the state machine; this class only adds the
    network round trips around it.
    """

    def __init__(
        self,
        machine: CallStateMachine,
        device_session: DeviceSession,
        api: SoftphoneApiClient,
        poller: Optional[FallbackPoller] = None,
        push: Optional[StatusPushSubscriber] = None,
    ):
        self.machine = machine
        self.device_session = device_session
        self.api = api
        self.poller = poller
        self.push = push
        for tracker in (poller, push):
            if tracker is not None:
                machine.attach_tracker(tracker)

    @property
    def session(self) -> Optional[CallSession]:
        return self.machine.session

    @property
    def status(self) -> CallStatus:
        return self.machine.status

    @property
    def error_message(self) -> Optional[str]:
        return self.machine.error_message

    @property
    def is_muted(self) -> bool:
        return bool(self.session and self.session.muted_locally)

    @property
    def formatted_duration(self) -> str:
        return format_duration(self.session.duration_seconds if self.session else 0)

    async def start(self) -> bool:
        """Open the push socket and register the device."""
        if self.push is not None:
            self.push.open()
        return await self.device_session.initialize()

    async def make_call(self, number: str) -> Optional[CallSession]:
        """
        Place an outbound call.

        Two-phase: the session goes to ``connecting`` before the server is
        asked, then the server's answer either confirms it (call id and
        bridge recorded, tracking started, local leg joined) or rolls it back
        to idle with the error surfaced.

        Raises:
            InvalidArgument: no number, or a call is already active
        """
        number = (number or "").strip()
        if not number:
            raise InvalidArgument("Please provide a phone number to call.")

        dialing = self.machine.dispatch(CallEvent.local(EventKind.DIAL, remote_address=number))
        if not dialing.applied:
            raise InvalidArgument(f"Cannot place a call while one is {self.status}")
        session_id = dialing.session.session_id

        try:
            placed = await self.api.place_call(number)
        except ProviderRequestFailed as e:
            logger.error(f"[SOFTPHONE] Call request failed - To: {number}, Error: {e}")
            self.machine.dispatch(
                CallEvent.local(
                    EventKind.PLACE_FAILED,
                    session_id=session_id,
                    message=f"Failed to make call: {e.message}",
                )
            )
            return self.session

        call_id, bridge_name = placed.get("callId"), placed.get("bridgeName")
        if not call_id:
            self.machine.dispatch(
                CallEvent.local(
                    EventKind.PLACE_FAILED,
                    session_id=session_id,
                    message="Failed to make call: server returned no call id",
                )
            )
            return self.session

        confirmed = self.machine.dispatch(
            CallEvent.local(
                EventKind.PLACED,
                session_id=session_id,
                call_id=call_id,
                bridge_name=bridge_name,
            )
        )
        if confirmed.applied and bridge_name:
            await self.device_session.connect_to_bridge(bridge_name, call_id, session_id)
        return self.session

    def answer(self) -> None:
        """Accept the ringing incoming call; the SDK's accept callback moves it to in-progress."""
        if self.status is not CallStatus.INCOMING or self.machine.local_leg is None:
            logger.debug("[SOFTPHONE] Nothing to answer")
            return
        try:
            self.machine.local_leg.accept()
        except LocalMediaError as e:
            self.machine.dispatch(CallEvent.local(EventKind.ERROR, message=e.message))

    def reject(self) -> None:
        self.machine.dispatch(CallEvent.local(EventKind.USER_REJECT))

    def hang_up(self) -> None:
        self.machine.dispatch(CallEvent.local(EventKind.HANGUP))

    def toggle_mute(self) -> None:
        if self.session is None:
            return
        self.machine.dispatch(
            CallEvent.local(EventKind.MUTE_CHANGED, muted=not self.session.muted_locally)
        )

    def clear_error(self) -> None:
        self.machine.clear_error()

    async def aclose(self) -> None:
        if self.poller is not None:
            self.poller.stop()
        if self.push is not None:
            await self.push.aclose()
        await self.machine.aclose()
        self.device_session.destroy()
        await self.api.aclose()


def build_softphone(
    base_url: str,
    device_factory: Callable[[str], CallingDevice],
    push_url: Optional[str] = None,
    api: Optional[SoftphoneApiClient] = None,
) -> Softphone:
    """Wire a softphone against a running server."""
    api = api or SoftphoneApiClient(base_url)
    machine = CallStateMachine(remote_hangup=api.hang_up)
    poller = FallbackPoller(api.fetch_status, machine.dispatch, machine.is_finished)
    push = StatusPushSubscriber(push_url or socket_url(base_url), machine.dispatch)
    device_session = DeviceSession(device_factory, api.fetch_token, machine)
    return Softphone(machine, device_session, api, poller=poller, push=push)
