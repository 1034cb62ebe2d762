"""Browser device session and local call handles."""
import asyncio
import itertools
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from pydantic import BaseModel, ConfigDict

from softphone.core.exceptions import LocalMediaError
from softphone.services.call_session.constants import DEVICE_READY_TIMEOUT_SECONDS
from softphone.services.call_session.models import CallEvent, EventKind
from softphone.services.call_session.state_machine import CallStateMachine
from softphone.services.telephony.numbers import BRIDGE_PREFIX

logger = logging.getLogger(__name__)

ONE_WAY_WARNING = "Device not ready. Call initiated but audio may be one-way."


class DeviceState(str, Enum):
    """Registration state of the calling device."""

    UNREGISTERED = "unregistered"
    REGISTERING = "registering"
    REGISTERED = "registered"
    ERROR = "error"

    def __str__(self) -> str:
        return self.value


class DeviceCall(ABC):
    """One call object of the voice SDK, i.e. a local leg."""

    @property
    @abstractmethod
    def parameters(self) -> Dict[str, str]:
        """Provider parameters of the leg (``CallSid``, ``From``, ...)."""
        pass

    @abstractmethod
    def on(self, event: str, callback: Callable[..., None]) -> None:
        """Register a callback for accept/disconnect/cancel/reject/error."""
        pass

    @abstractmethod
    def accept(self) -> None:
        pass

    @abstractmethod
    def reject(self) -> None:
        pass

    @abstractmethod
    def disconnect(self) -> None:
        pass

    @abstractmethod
    def mute(self, muted: bool) -> None:
        pass


class CallingDevice(ABC):
    """The voice SDK device registered under the browser client identity."""

    @abstractmethod
    def on(self, event: str, callback: Callable[..., None]) -> None:
        """Register a callback for registered/unregistered/error/incoming."""
        pass

    @abstractmethod
    async def register(self) -> None:
        pass

    @abstractmethod
    async def connect(self, params: Dict[str, str]) -> DeviceCall:
        """Open an outgoing leg with the given connect parameters."""
        pass

    @abstractmethod
    def destroy(self) -> None:
        pass


class HandleKind(str, Enum):
    DEVICE = "device"
    REST_ONLY = "rest-only"  # No local audio leg; the call only exists server-side

    def __str__(self) -> str:
        return self.value


class LocalCallHandle(BaseModel):
    """
    The client's grip on its side of a call.

    A ``device`` handle wraps an SDK call object. A ``rest-only`` handle is
    what remains when the device could not join the bridge: the remote leg
    is still up and can only be ended through the server.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    kind: HandleKind
    leg_id: str
    call: Optional[DeviceCall] = None
    call_id: Optional[str] = None
    muted: bool = False

    @classmethod
    def device(cls, leg_id: str, call: DeviceCall, call_id: Optional[str] = None) -> "LocalCallHandle":
        return cls(kind=HandleKind.DEVICE, leg_id=leg_id, call=call, call_id=call_id)

    @classmethod
    def rest_only(cls, leg_id: str, call_id: Optional[str]) -> "LocalCallHandle":
        return cls(kind=HandleKind.REST_ONLY, leg_id=leg_id, call_id=call_id)

    @property
    def has_audio(self) -> bool:
        return self.kind is HandleKind.DEVICE

    def accept(self) -> None:
        if not self.has_audio:
            raise LocalMediaError("There is no local audio leg to answer")
        self.call.accept()

    def reject(self) -> None:
        if self.has_audio:
            self.call.reject()

    def disconnect(self) -> None:
        # A rest-only leg is ended by the remote hang-up
        if self.has_audio:
            self.call.disconnect()

    def mute(self, muted: bool) -> None:
        self.muted = muted
        if self.has_audio:
            self.call.mute(muted)


class DeviceSession:
    """
    Registers the calling device and feeds its callbacks to the state machine.

    Every local leg gets a leg id. SDK callbacks carry it, so a callback from
    an older call object is recognised as stale by the reducer.
    """

    def __init__(
        self,
        device_factory: Callable[[str], CallingDevice],
        fetch_token: Callable[[], Awaitable[str]],
        machine: CallStateMachine,
        ready_timeout: float = DEVICE_READY_TIMEOUT_SECONDS,
    ):
        self.device_factory = device_factory
        self.fetch_token = fetch_token
        self.machine = machine
        self.ready_timeout = ready_timeout
        self.device: Optional[CallingDevice] = None
        self.state = DeviceState.UNREGISTERED
        # Created by initialize() so it belongs to the loop that awaits it
        self._registered: Optional[asyncio.Event] = None
        self._legs = itertools.count(1)

    @property
    def is_ready(self) -> bool:
        return self.state is DeviceState.REGISTERED

    async def initialize(self) -> bool:
        """
        Fetch a token, create and register the device.

        If the device never confirms registration within ``ready_timeout`` it
        is assumed ready anyway; a device that reported an error is not.
        Failures are surfaced as warnings, never raised.
        """
        if self.device is not None:
            return self.is_ready

        self.state = DeviceState.REGISTERING
        registered = self._registered = asyncio.Event()
        try:
            token = await self.fetch_token()
            device = self.device_factory(token)
        except Exception as e:
            self.state = DeviceState.ERROR
            self._surface(f"Failed to initialize device: {e}")
            return False

        self.device = device
        device.on("registered", self._on_registered)
        device.on("unregistered", self._on_unregistered)
        device.on("error", self._on_device_error)
        device.on("incoming", self._on_incoming)

        try:
            await device.register()
        except Exception as e:
            self.state = DeviceState.ERROR
            self._surface(f"Device registration failed: {e}")
            return False

        try:
            await asyncio.wait_for(registered.wait(), self.ready_timeout)
        except asyncio.TimeoutError:
            if self.state is DeviceState.REGISTERING:
                logger.warning("[DEVICE] No registration confirmation, assuming device is ready")
                self.state = DeviceState.REGISTERED
        return self.is_ready

    async def connect_to_bridge(
        self, bridge_name: str, call_id: Optional[str], session_id: Optional[str]
    ) -> LocalCallHandle:
        """
        Join the local leg to the bridge of an outbound call.

        Falls back to a rest-only handle, with a one-way audio warning, when
        the device is not registered or cannot connect.
        """
        leg_id = self._next_leg_id()
        handle = None

        if self.device is not None and self.is_ready:
            try:
                call = await self.device.connect({"To": f"{BRIDGE_PREFIX}{bridge_name}"})
            except Exception as e:
                logger.warning(f"[DEVICE] Could not join bridge {bridge_name}: {type(e).__name__}: {str(e)}")
            else:
                self._bind(call, leg_id)
                handle = LocalCallHandle.device(leg_id, call, call_id)
                logger.info(f"[DEVICE] Joined bridge {bridge_name} - CallSid: {call_id}, Leg: {leg_id}")

        if handle is None:
            handle = LocalCallHandle.rest_only(leg_id, call_id)
            self._surface(ONE_WAY_WARNING)

        self.machine.dispatch(
            CallEvent.local(EventKind.LEG_ATTACHED, session_id=session_id, leg_id=leg_id),
            handle,
        )
        return handle

    def destroy(self) -> None:
        if self.device is not None:
            self.device.destroy()
            self.device = None
        self.state = DeviceState.UNREGISTERED
        self._registered = None
        logger.info("[DEVICE] Device destroyed")

    # Device callbacks

    def _on_registered(self, *args: Any) -> None:
        logger.info("[DEVICE] Device registered")
        self.state = DeviceState.REGISTERED
        if self._registered is not None:
            self._registered.set()

    def _on_unregistered(self, *args: Any) -> None:
        logger.info("[DEVICE] Device unregistered")
        self.state = DeviceState.UNREGISTERED
        if self._registered is not None:
            self._registered.clear()

    def _on_device_error(self, error: Any = None, *args: Any) -> None:
        # Registration errors are kept separate from call state
        self.state = DeviceState.ERROR
        self._surface(f"Device error: {error}")

    def _on_incoming(self, call: DeviceCall) -> None:
        leg_id = self._next_leg_id()
        params = call.parameters or {}
        call_id = params.get("CallSid")
        self._bind(call, leg_id)
        logger.info(f"[DEVICE] Incoming call from {params.get('From')} - CallSid: {call_id}, Leg: {leg_id}")
        self.machine.dispatch(
            CallEvent.incoming(leg_id, remote_address=params.get("From"), call_id=call_id),
            LocalCallHandle.device(leg_id, call, call_id),
        )

    def _bind(self, call: DeviceCall, leg_id: str) -> None:
        for event, kind in (
            ("accept", EventKind.ACCEPT),
            ("disconnect", EventKind.DISCONNECT),
            ("cancel", EventKind.CANCEL),
            ("reject", EventKind.REJECT),
        ):
            call.on(event, self._relay(kind, leg_id))
        call.on("error", self._relay_error(leg_id))

    def _relay(self, kind: EventKind, leg_id: str) -> Callable[..., None]:
        def callback(*args: Any) -> None:
            self.machine.dispatch(CallEvent.device(kind, leg_id))

        return callback

    def _relay_error(self, leg_id: str) -> Callable[..., None]:
        def callback(error: Any = None, *args: Any) -> None:
            self.machine.dispatch(CallEvent.device(EventKind.ERROR, leg_id, message=f"Call error: {error}"))

        return callback

    def _surface(self, message: str) -> None:
        error = LocalMediaError(message)
        logger.warning(f"[DEVICE] {error.message}")
        self.machine.dispatch(CallEvent.local(EventKind.ERROR, message=error.message))

    def _next_leg_id(self) -> str:
        return f"leg-{next(self._legs)}"
