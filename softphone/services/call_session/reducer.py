"""
Call state reconciliation.

Device SDK callbacks, socket pushes, fallback polls, user actions and client
timers all feed ``reduce``. It is a pure function of the current session and
one event: it never touches the network or a clock and returns the next
session plus the side effects to run, so every ordering of events can be
replayed in tests.

Ordering rule: a terminal status dominates every live one, and among live
statuses ``in-progress`` > ``ringing`` > ``connecting``. Proposals that would
move backwards, or away from a terminal status, are discarded. The local
device is authoritative for the local leg; push and poll are authoritative
for the remote leg, which the local leg cannot see end on a bridge.
"""
from typing import Callable, Dict, Optional

from softphone.services.call_session.constants import (
    CONNECTING_STATUSES,
    IN_PROGRESS_STATUSES,
    RINGING_STATUSES,
    TERMINAL_STATUSES,
)
from softphone.services.call_session.models import (
    CallDirection,
    CallEvent,
    CallSession,
    CallStatus,
    Effect,
    EffectKind,
    EventKind,
    Transition,
)

_LIVE_RANK = {
    CallStatus.CONNECTING: 1,
    CallStatus.RINGING: 2,
    CallStatus.IN_PROGRESS: 3,
}


def is_terminal_status(raw_status: Optional[str]) -> bool:
    """Whether a raw provider status ends the call."""
    return bool(raw_status) and raw_status.strip().lower() in TERMINAL_STATUSES


def proposed_status(raw_status: Optional[str]) -> Optional[CallStatus]:
    """Map a raw provider status onto the client status it proposes."""
    if not raw_status:
        return None
    status = raw_status.strip().lower()
    if status in TERMINAL_STATUSES:
        return CallStatus.COMPLETED
    if status in IN_PROGRESS_STATUSES:
        return CallStatus.IN_PROGRESS
    if status in RINGING_STATUSES:
        return CallStatus.RINGING
    if status in CONNECTING_STATUSES:
        return CallStatus.CONNECTING
    return None


def _apply(session: Optional[CallSession], *effects: Effect) -> Transition:
    return Transition(session=session, applied=True, effects=effects)


def _discard(session: Optional[CallSession], reason: str, *effects: Effect) -> Transition:
    return Transition(session=session, applied=False, reason=reason, effects=effects)


def _touch(session: CallSession, event: CallEvent, **updates) -> CallSession:
    return session.model_copy(update={"last_update_source": event.source, **updates})


def _same_session(session: Optional[CallSession], event: CallEvent) -> bool:
    return session is not None and session.session_id == event.session_id


def _matches_leg(session: Optional[CallSession], event: CallEvent) -> bool:
    return (
        session is not None
        and session.local_leg_id is not None
        and session.local_leg_id == event.leg_id
    )


def _to_in_progress(session: CallSession, event: CallEvent, *extra: Effect) -> Transition:
    updates = {"status": CallStatus.IN_PROGRESS}
    effects = list(extra)
    if session.started_at is None:
        # The timer runs from the first in-progress, whoever reported it
        updates.update(started_at=event.at, duration_seconds=0)
        effects.append(Effect(kind=EffectKind.START_TIMER, session_id=session.session_id))
    return _apply(_touch(session, event, **updates), *effects)


def _end(session: CallSession, event: CallEvent, end_reason: str) -> Transition:
    """First terminal transition of a call that got past ``incoming``."""
    ended = _touch(session, event, status=CallStatus.COMPLETED, end_reason=end_reason)
    effects = [
        Effect(kind=EffectKind.DISCONNECT_LOCAL_LEG),
        Effect(kind=EffectKind.STOP_TIMER, session_id=session.session_id),
        Effect(kind=EffectKind.STOP_TRACKING, call_id=session.call_id),
    ]
    if session.call_id or session.bridge_name:
        effects.append(
            Effect(
                kind=EffectKind.HANGUP_REMOTE,
                call_id=session.call_id,
                bridge_name=session.bridge_name,
            )
        )
    effects.append(Effect(kind=EffectKind.SCHEDULE_IDLE_RESET, session_id=session.session_id))
    return _apply(ended, *effects)


def _dismiss_incoming(session: CallSession, reject_leg: bool) -> Transition:
    """An incoming call that was never answered goes straight back to idle."""
    effects = [Effect(kind=EffectKind.CANCEL_RING_TIMEOUT, session_id=session.session_id)]
    if reject_leg:
        effects.append(Effect(kind=EffectKind.REJECT_LOCAL_LEG))
    effects.append(Effect(kind=EffectKind.STOP_TRACKING, call_id=session.call_id))
    return _apply(None, *effects)


def _on_dial(session: Optional[CallSession], event: CallEvent) -> Transition:
    if session is not None and session.status is not CallStatus.COMPLETED:
        return _discard(session, f"a call is already {session.status}")

    effects = []
    if session is not None:
        effects.append(Effect(kind=EffectKind.CANCEL_IDLE_RESET, session_id=session.session_id))
    dialing = CallSession(
        direction=CallDirection.OUTBOUND,
        remote_address=event.remote_address,
        status=CallStatus.CONNECTING,
        last_update_source=event.source,
    )
    return _apply(dialing, *effects)


def _on_placed(session: Optional[CallSession], event: CallEvent) -> Transition:
    # A far leg nobody is waiting for any more still has to be torn down
    orphan_hangup = Effect(
        kind=EffectKind.HANGUP_REMOTE, call_id=event.call_id, bridge_name=event.bridge_name
    )
    if not _same_session(session, event):
        return _discard(session, "placement confirmed for a call that is gone", orphan_hangup)
    if session.status is CallStatus.COMPLETED:
        ended = session.model_copy(
            update={"call_id": event.call_id, "bridge_name": event.bridge_name}
        )
        return _discard(ended, "placement confirmed after the call ended", orphan_hangup)

    placed = _touch(session, event, call_id=event.call_id, bridge_name=event.bridge_name)
    return _apply(placed, Effect(kind=EffectKind.START_TRACKING, call_id=event.call_id))


def _on_place_failed(session: Optional[CallSession], event: CallEvent) -> Transition:
    error = Effect(kind=EffectKind.SURFACE_ERROR, message=event.message)
    if not _same_session(session, event):
        return _discard(session, "placement failed for a call that is gone")
    if session.status is not CallStatus.CONNECTING or session.call_id:
        return _discard(session, f"placement failed while {session.status}", error)
    # Roll the optimistic connecting state back
    return _apply(None, error)


def _on_incoming(session: Optional[CallSession], event: CallEvent) -> Transition:
    if session is not None and session.status is not CallStatus.COMPLETED:
        return _discard(
            session,
            f"incoming call offered while already {session.status}",
            Effect(kind=EffectKind.REJECT_OFFERED_CALL),
        )

    effects = []
    if session is not None:
        effects.append(Effect(kind=EffectKind.CANCEL_IDLE_RESET, session_id=session.session_id))
    ringing = CallSession(
        call_id=event.call_id,
        direction=CallDirection.INBOUND,
        remote_address=event.remote_address,
        status=CallStatus.INCOMING,
        last_update_source=event.source,
        local_leg_id=event.leg_id,
    )
    effects.append(Effect(kind=EffectKind.START_RING_TIMEOUT, session_id=ringing.session_id))
    return _apply(ringing, *effects)


def _on_leg_attached(session: Optional[CallSession], event: CallEvent) -> Transition:
    if not _same_session(session, event) or session.status is CallStatus.COMPLETED:
        return _discard(
            session,
            "local leg attached to a call that is no longer active",
            Effect(kind=EffectKind.DISCONNECT_OFFERED_LEG),
        )
    return _apply(session.model_copy(update={"local_leg_id": event.leg_id}))


def _on_accept(session: Optional[CallSession], event: CallEvent) -> Transition:
    if not _matches_leg(session, event):
        return _discard(session, f"accept from leg {event.leg_id} which is not the current call")
    if session.status is CallStatus.COMPLETED:
        return _discard(session, "accept after the call ended")
    if session.status is CallStatus.IN_PROGRESS:
        return _apply(_touch(session, event))
    extra = ()
    if session.status is CallStatus.INCOMING:
        extra = (Effect(kind=EffectKind.CANCEL_RING_TIMEOUT, session_id=session.session_id),)
    return _to_in_progress(session, event, *extra)


def _on_local_leg_ended(session: Optional[CallSession], event: CallEvent) -> Transition:
    if not _matches_leg(session, event):
        return _discard(session, f"{event.kind} from leg {event.leg_id} which is not the current call")
    if session.status is CallStatus.COMPLETED:
        return _discard(session, f"duplicate {event.kind} after the call ended")
    if session.status is CallStatus.INCOMING:
        return _dismiss_incoming(session, reject_leg=False)
    return _end(session, event, end_reason=str(event.kind))


def _on_hangup(session: Optional[CallSession], event: CallEvent) -> Transition:
    if session is None:
        return _discard(session, "no call to hang up")
    if session.status is CallStatus.COMPLETED:
        return _discard(session, "hang-up after the call ended")
    if session.status is CallStatus.INCOMING:
        return _dismiss_incoming(session, reject_leg=True)
    return _end(session, event, end_reason=str(event.kind))


def _on_user_reject(session: Optional[CallSession], event: CallEvent) -> Transition:
    if session is None or session.status is not CallStatus.INCOMING:
        return _discard(session, "no incoming call to reject")
    return _dismiss_incoming(session, reject_leg=True)


def _on_error(session: Optional[CallSession], event: CallEvent) -> Transition:
    # An error is not proof the call ended: report it, keep the status
    message = event.message or "Unknown device error"
    surface = Effect(kind=EffectKind.SURFACE_ERROR, message=message)
    if session is None:
        return _apply(None, surface)
    return _apply(session.model_copy(update={"error_message": message}), surface)


def _on_remote_status(session: Optional[CallSession], event: CallEvent) -> Transition:
    if session is None:
        return _discard(session, f"'{event.status}' for {event.call_id} with no call tracked")
    if not event.call_id or event.call_id != session.call_id:
        return _discard(session, f"'{event.status}' for untracked call {event.call_id}")

    proposed = proposed_status(event.status)
    if proposed is None:
        return _discard(session, f"unrecognized status '{event.status}'")
    if session.status is CallStatus.COMPLETED:
        return _discard(session, f"'{event.status}' from {event.source} after the call ended")

    if proposed is CallStatus.COMPLETED:
        if session.status is CallStatus.INCOMING:
            return _dismiss_incoming(session, reject_leg=True)
        return _end(session, event, end_reason=event.status.strip().lower())

    if session.status is CallStatus.INCOMING:
        return _discard(session, f"'{event.status}' ignored, incoming calls are answered on the device")

    current_rank = _LIVE_RANK[session.status]
    next_rank = _LIVE_RANK[proposed]
    if next_rank < current_rank:
        return _discard(session, f"'{event.status}' from {event.source} would regress {session.status}")
    if next_rank == current_rank:
        return _apply(_touch(session, event))
    if proposed is CallStatus.IN_PROGRESS:
        return _to_in_progress(session, event)
    return _apply(_touch(session, event, status=proposed))


def _on_tick(session: Optional[CallSession], event: CallEvent) -> Transition:
    if not _same_session(session, event) or session.status is not CallStatus.IN_PROGRESS:
        return _discard(session, "timer tick outside an active call")
    return _apply(session.model_copy(update={"duration_seconds": session.duration_seconds + 1}))


def _on_ring_timeout(session: Optional[CallSession], event: CallEvent) -> Transition:
    if not _same_session(session, event) or session.status is not CallStatus.INCOMING:
        return _discard(session, "ring timeout for a call that is no longer ringing")
    return _dismiss_incoming(session, reject_leg=True)


def _on_quiet_period_elapsed(session: Optional[CallSession], event: CallEvent) -> Transition:
    if not _same_session(session, event) or session.status is not CallStatus.COMPLETED:
        return _discard(session, "quiet period elapsed for a call that is gone")
    return _apply(None)


def _on_mute_changed(session: Optional[CallSession], event: CallEvent) -> Transition:
    if session is None or not session.status.is_live:
        return _discard(session, "no active call to mute")
    muted = bool(event.muted)
    return _apply(
        _touch(session, event, muted_locally=muted),
        Effect(kind=EffectKind.SET_MUTE, muted=muted),
    )


_HANDLERS: Dict[EventKind, Callable[[Optional[CallSession], CallEvent], Transition]] = {
    EventKind.DIAL: _on_dial,
    EventKind.HANGUP: _on_hangup,
    EventKind.USER_REJECT: _on_user_reject,
    EventKind.MUTE_CHANGED: _on_mute_changed,
    EventKind.PLACED: _on_placed,
    EventKind.PLACE_FAILED: _on_place_failed,
    EventKind.INCOMING: _on_incoming,
    EventKind.LEG_ATTACHED: _on_leg_attached,
    EventKind.ACCEPT: _on_accept,
    EventKind.DISCONNECT: _on_local_leg_ended,
    EventKind.CANCEL: _on_local_leg_ended,
    EventKind.REJECT: _on_local_leg_ended,
    EventKind.ERROR: _on_error,
    EventKind.REMOTE_STATUS: _on_remote_status,
    EventKind.TICK: _on_tick,
    EventKind.RING_TIMEOUT: _on_ring_timeout,
    EventKind.QUIET_PERIOD_ELAPSED: _on_quiet_period_elapsed,
}


def reduce(session: Optional[CallSession], event: CallEvent) -> Transition:
    """Fold one event into the current session (``None`` means idle)."""
    return _HANDLERS[event.kind](session, event)
