"""Call session models."""
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Tuple
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid4().hex


class CallStatus(str, Enum):
    """Client-side lifecycle of a call."""

    IDLE = "idle"
    CONNECTING = "connecting"
    RINGING = "ringing"
    INCOMING = "incoming"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"  # Terminal; reverts to idle after the quiet period

    def __str__(self) -> str:
        """Return the string value of the status."""
        return self.value

    @property
    def is_live(self) -> bool:
        return self in (CallStatus.CONNECTING, CallStatus.RINGING, CallStatus.IN_PROGRESS)


class CallDirection(str, Enum):
    OUTBOUND = "outbound"
    INBOUND = "inbound"

    def __str__(self) -> str:
        return self.value


class UpdateSource(str, Enum):
    """Where an event came from."""

    DEVICE_SDK = "device-sdk"
    SOCKET_PUSH = "socket-push"
    POLL = "poll"
    LOCAL = "local"  # User actions and client timers

    def __str__(self) -> str:
        return self.value


class EventKind(str, Enum):
    """Everything the state machine reacts to."""

    # User actions
    DIAL = "dial"
    HANGUP = "hangup"
    USER_REJECT = "user-reject"
    MUTE_CHANGED = "mute-changed"
    # Outbound placement (optimistic update, then confirm or roll back)
    PLACED = "placed"
    PLACE_FAILED = "place-failed"
    # Device SDK
    INCOMING = "incoming"
    LEG_ATTACHED = "leg-attached"
    ACCEPT = "accept"
    DISCONNECT = "disconnect"
    CANCEL = "cancel"
    REJECT = "reject"
    ERROR = "error"
    # Push and poll
    REMOTE_STATUS = "remote-status"
    # Timers
    TICK = "tick"
    RING_TIMEOUT = "ring-timeout"
    QUIET_PERIOD_ELAPSED = "quiet-period-elapsed"

    def __str__(self) -> str:
        return self.value


class CallEvent(BaseModel):
    """One input to the reducer, tagged with its source."""

    model_config = ConfigDict(frozen=True)

    kind: EventKind
    source: UpdateSource
    call_id: Optional[str] = None
    session_id: Optional[str] = None
    leg_id: Optional[str] = None
    status: Optional[str] = None  # Raw provider status for REMOTE_STATUS
    remote_address: Optional[str] = None
    bridge_name: Optional[str] = None
    message: Optional[str] = None
    muted: Optional[bool] = None
    at: datetime = Field(default_factory=_now)

    @classmethod
    def remote_status(cls, call_id: str, status: str, source: UpdateSource) -> "CallEvent":
        return cls(kind=EventKind.REMOTE_STATUS, source=source, call_id=call_id, status=status)

    @classmethod
    def device(cls, kind: EventKind, leg_id: Optional[str], message: Optional[str] = None) -> "CallEvent":
        return cls(kind=kind, source=UpdateSource.DEVICE_SDK, leg_id=leg_id, message=message)

    @classmethod
    def incoming(
        cls, leg_id: str, remote_address: Optional[str], call_id: Optional[str] = None
    ) -> "CallEvent":
        return cls(
            kind=EventKind.INCOMING,
            source=UpdateSource.DEVICE_SDK,
            leg_id=leg_id,
            call_id=call_id,
            remote_address=remote_address,
        )

    @classmethod
    def local(cls, kind: EventKind, **fields) -> "CallEvent":
        return cls(kind=kind, source=UpdateSource.LOCAL, **fields)


class CallSession(BaseModel):
    """The one live call on this client."""

    session_id: str = Field(default_factory=_new_id)
    call_id: Optional[str] = None
    bridge_name: Optional[str] = None  # Outbound only
    direction: CallDirection
    remote_address: Optional[str] = None
    status: CallStatus
    muted_locally: bool = False
    started_at: Optional[datetime] = None
    duration_seconds: int = 0
    last_update_source: UpdateSource
    local_leg_id: Optional[str] = None
    end_reason: Optional[str] = None
    error_message: Optional[str] = None


class EffectKind(str, Enum):
    """Side effects the state machine runs after a transition."""

    START_TIMER = "start-timer"
    STOP_TIMER = "stop-timer"
    DISCONNECT_LOCAL_LEG = "disconnect-local-leg"
    REJECT_LOCAL_LEG = "reject-local-leg"
    REJECT_OFFERED_CALL = "reject-offered-call"  # Handle passed with the event, never the current leg
    DISCONNECT_OFFERED_LEG = "disconnect-offered-leg"
    SET_MUTE = "set-mute"
    HANGUP_REMOTE = "hangup-remote"
    START_TRACKING = "start-tracking"
    STOP_TRACKING = "stop-tracking"
    SCHEDULE_IDLE_RESET = "schedule-idle-reset"
    CANCEL_IDLE_RESET = "cancel-idle-reset"
    START_RING_TIMEOUT = "start-ring-timeout"
    CANCEL_RING_TIMEOUT = "cancel-ring-timeout"
    SURFACE_ERROR = "surface-error"

    def __str__(self) -> str:
        return self.value


class Effect(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: EffectKind
    session_id: Optional[str] = None
    call_id: Optional[str] = None
    bridge_name: Optional[str] = None
    message: Optional[str] = None
    muted: Optional[bool] = None


class Transition(BaseModel):
    """Result of feeding one event to the reducer."""

    model_config = ConfigDict(frozen=True)

    session: Optional[CallSession]
    applied: bool
    effects: Tuple[Effect, ...] = ()
    reason: Optional[str] = None  # Why a discarded event lost

    @property
    def status(self) -> CallStatus:
        return self.session.status if self.session else CallStatus.IDLE

    def has_effect(self, kind: EffectKind) -> bool:
        return any(effect.kind == kind for effect in self.effects)
