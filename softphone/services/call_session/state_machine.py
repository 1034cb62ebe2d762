"""Call state machine: owns the live session and runs reducer side effects."""
import asyncio
import logging
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Protocol

from softphone.core.exceptions import StaleEventDiscarded
from softphone.services.call_session.constants import (
    DURATION_TICK_SECONDS,
    QUIET_PERIOD_SECONDS,
    RING_TIMEOUT_SECONDS,
)
from softphone.services.call_session.models import (
    CallEvent,
    CallSession,
    CallStatus,
    Effect,
    EffectKind,
    EventKind,
    Transition,
)
from softphone.services.call_session.reducer import reduce

logger = logging.getLogger(__name__)

RemoteHangup = Callable[..., Awaitable[Any]]
TransitionListener = Callable[[Transition], None]

_DISCARD_HISTORY = 50


class CallTracker(Protocol):
    """Something that follows a remote call id (the poller, the push socket)."""

    def start(self, call_id: str) -> None:
        ...

    def stop(self) -> None:
        ...


class CallStateMachine:
    """
    Single entry point for every call event on the client.

    ``dispatch`` runs the pure reducer, stores the resulting session and then
    executes the transition's effects in order. Dispatch is synchronous, so
    the read-modify-write of the session never interleaves with another
    producer on the event loop. Timers and remote hang-ups run as tasks on the
    running loop.
    """

    def __init__(
        self,
        remote_hangup: Optional[RemoteHangup] = None,
        quiet_period: float = QUIET_PERIOD_SECONDS,
        ring_timeout: float = RING_TIMEOUT_SECONDS,
        tick_interval: float = DURATION_TICK_SECONDS,
    ):
        self.remote_hangup = remote_hangup
        self.quiet_period = quiet_period
        self.ring_timeout = ring_timeout
        self.tick_interval = tick_interval

        self.session: Optional[CallSession] = None
        self.local_leg = None  # LocalCallHandle of the current session
        self.error_message: Optional[str] = None
        self.trackers: List[CallTracker] = []
        self.recent_discards: Deque[StaleEventDiscarded] = deque(maxlen=_DISCARD_HISTORY)
        self.stats: Dict[str, int] = {
            "applied": 0,
            "discarded": 0,
            "timer_starts": 0,
            "timer_stops": 0,
            "remote_hangups": 0,
        }

        self._listeners: List[TransitionListener] = []
        self._timer_task: Optional[asyncio.Task] = None
        self._idle_reset: Optional[asyncio.TimerHandle] = None
        self._ring_timeout: Optional[asyncio.TimerHandle] = None
        self._background: set = set()

    @property
    def status(self) -> CallStatus:
        return self.session.status if self.session else CallStatus.IDLE

    def is_finished(self) -> bool:
        """True once there is nothing left to track remotely."""
        return self.session is None or self.session.status is CallStatus.COMPLETED

    def attach_tracker(self, tracker: CallTracker) -> None:
        self.trackers.append(tracker)

    def add_listener(self, listener: TransitionListener) -> None:
        """Call ``listener`` with every applied transition."""
        self._listeners.append(listener)

    def remove_listener(self, listener: TransitionListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def clear_error(self) -> None:
        self.error_message = None
        if self.session is not None:
            self.session = self.session.model_copy(update={"error_message": None})

    def dispatch(self, event: CallEvent, handle=None) -> Transition:
        """
        Fold one event into the session and run the resulting effects.

        ``handle`` is the local call handle that came with the event: the
        offered leg for ``incoming``, the joined leg for ``leg-attached``.
        """
        previous = self.session
        transition = reduce(previous, event)
        self.session = transition.session

        if transition.applied:
            self.stats["applied"] += 1
            if transition.status != (previous.status if previous else CallStatus.IDLE):
                logger.info(
                    f"[STATE MACHINE] {previous.status if previous else CallStatus.IDLE} -> "
                    f"{transition.status} on {event.kind} from {event.source}"
                    f" (CallSid: {self._call_id_of(transition.session or previous)})"
                )
        else:
            self.stats["discarded"] += 1
            discard = StaleEventDiscarded(transition.reason or "discarded")
            self.recent_discards.append(discard)
            logger.debug(f"[STALE] {event.kind} from {event.source} discarded: {discard.message}")

        for effect in transition.effects:
            self._run_effect(effect, handle)

        if transition.applied:
            self._track_local_leg(previous, transition, event, handle)
            if transition.session is None:
                self._clear_timers()
            self._notify(transition)
        return transition

    async def aclose(self) -> None:
        """Cancel timers and wait for in-flight remote hang-ups."""
        self._clear_timers()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    # Effects

    def _run_effect(self, effect: Effect, handle) -> None:
        kind = effect.kind
        if kind == EffectKind.START_TIMER:
            self._start_duration_timer(effect.session_id)
        elif kind == EffectKind.STOP_TIMER:
            self._stop_duration_timer()
        elif kind == EffectKind.DISCONNECT_LOCAL_LEG:
            self._on_local_leg("disconnect", self.local_leg)
        elif kind == EffectKind.REJECT_LOCAL_LEG:
            self._on_local_leg("reject", self.local_leg)
        elif kind == EffectKind.REJECT_OFFERED_CALL:
            self._on_local_leg("reject", handle)
        elif kind == EffectKind.DISCONNECT_OFFERED_LEG:
            self._on_local_leg("disconnect", handle)
        elif kind == EffectKind.SET_MUTE:
            self._on_local_leg("mute", self.local_leg, bool(effect.muted))
        elif kind == EffectKind.HANGUP_REMOTE:
            self._hang_up_remote(effect.call_id, effect.bridge_name)
        elif kind == EffectKind.START_TRACKING:
            for tracker in self.trackers:
                tracker.start(effect.call_id)
        elif kind == EffectKind.STOP_TRACKING:
            for tracker in self.trackers:
                tracker.stop()
        elif kind == EffectKind.SCHEDULE_IDLE_RESET:
            self._cancel_handle(self._idle_reset)
            self._idle_reset = self._schedule(
                self.quiet_period, EventKind.QUIET_PERIOD_ELAPSED, effect.session_id
            )
        elif kind == EffectKind.CANCEL_IDLE_RESET:
            self._cancel_handle(self._idle_reset)
            self._idle_reset = None
        elif kind == EffectKind.START_RING_TIMEOUT:
            self._cancel_handle(self._ring_timeout)
            self._ring_timeout = self._schedule(
                self.ring_timeout, EventKind.RING_TIMEOUT, effect.session_id
            )
        elif kind == EffectKind.CANCEL_RING_TIMEOUT:
            self._cancel_handle(self._ring_timeout)
            self._ring_timeout = None
        elif kind == EffectKind.SURFACE_ERROR:
            self.error_message = effect.message
            logger.warning(f"[STATE MACHINE] {effect.message}")

    def _start_duration_timer(self, session_id: str) -> None:
        if self._timer_task is not None and not self._timer_task.done():
            logger.debug("[STATE MACHINE] Duration timer already running")
            return
        self.stats["timer_starts"] += 1
        self._timer_task = asyncio.get_running_loop().create_task(
            self._run_duration_timer(session_id)
        )

    def _stop_duration_timer(self) -> None:
        self.stats["timer_stops"] += 1
        task, self._timer_task = self._timer_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _run_duration_timer(self, session_id: str) -> None:
        while True:
            await asyncio.sleep(self.tick_interval)
            transition = self.dispatch(CallEvent.local(EventKind.TICK, session_id=session_id))
            if not transition.applied:
                return

    def _schedule(self, delay: float, kind: EventKind, session_id: str) -> asyncio.TimerHandle:
        event = CallEvent.local(kind, session_id=session_id)
        return asyncio.get_running_loop().call_later(delay, self.dispatch, event)

    @staticmethod
    def _cancel_handle(handle: Optional[asyncio.TimerHandle]) -> None:
        if handle is not None:
            handle.cancel()

    def _hang_up_remote(self, call_id: Optional[str], bridge_name: Optional[str]) -> None:
        if not call_id and not bridge_name:
            return
        if self.remote_hangup is None:
            logger.warning(f"[STATE MACHINE] No remote hang-up configured - CallSid: {call_id}")
            return
        self.stats["remote_hangups"] += 1
        task = asyncio.get_running_loop().create_task(
            self._send_remote_hangup(call_id, bridge_name)
        )
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _send_remote_hangup(self, call_id: Optional[str], bridge_name: Optional[str]) -> None:
        try:
            await self.remote_hangup(call_id=call_id, bridge_name=bridge_name)
            logger.info(f"[STATE MACHINE] Remote leg hung up - CallSid: {call_id}, Bridge: {bridge_name}")
        except Exception as e:
            # Local cleanup already happened; the bridge also ends when its last leg leaves
            logger.warning(
                f"[STATE MACHINE] Remote hang-up failed - CallSid: {call_id}, "
                f"Error: {type(e).__name__}: {str(e)}"
            )

    @staticmethod
    def _on_local_leg(action: str, handle, *args) -> None:
        if handle is None:
            return
        try:
            getattr(handle, action)(*args)
        except Exception as e:
            logger.warning(f"[STATE MACHINE] Local leg {action} failed: {type(e).__name__}: {str(e)}")

    # Bookkeeping

    def _track_local_leg(self, previous, transition: Transition, event: CallEvent, handle) -> None:
        current = transition.session
        if current is None or previous is None or previous.session_id != current.session_id:
            self.local_leg = None
        if handle is not None and current is not None and event.kind in (
            EventKind.INCOMING,
            EventKind.LEG_ATTACHED,
        ):
            self.local_leg = handle

    def _clear_timers(self) -> None:
        task, self._timer_task = self._timer_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
        for handle in (self._idle_reset, self._ring_timeout):
            self._cancel_handle(handle)
        self._idle_reset = None
        self._ring_timeout = None

    def _notify(self, transition: Transition) -> None:
        for listener in list(self._listeners):
            try:
                listener(transition)
            except Exception as e:
                logger.error(f"[STATE MACHINE] Listener failed: {type(e).__name__}: {str(e)}", exc_info=True)

    @staticmethod
    def _call_id_of(session: Optional[CallSession]) -> Optional[str]:
        return session.call_id if session else None
