"""Fallback status poller."""
import asyncio
import logging
from typing import Awaitable, Callable, Optional

from softphone.services.call_session.constants import POLL_INTERVAL_SECONDS
from softphone.services.call_session.models import CallEvent, UpdateSource
from softphone.services.call_session.reducer import is_terminal_status

logger = logging.getLogger(__name__)

FetchStatus = Callable[[str], Awaitable[Optional[str]]]


class FallbackPoller:
    """
    Polls the server's cached status while a call is live.

    Covers dropped socket pushes: every tick the cached status is fetched and
    handed to the state machine as a ``poll`` event, where the same
    non-regression rules as for pushes apply. A failed fetch is logged and
    retried on the next tick. The loop ends on a terminal status, when the
    machine reports nothing left to track, or on ``stop()``.
    """

    def __init__(
        self,
        fetch_status: FetchStatus,
        dispatch: Callable[[CallEvent], object],
        is_finished: Callable[[], bool] = lambda: False,
        interval: float = POLL_INTERVAL_SECONDS,
    ):
        self.fetch_status = fetch_status
        self.dispatch = dispatch
        self.is_finished = is_finished
        self.interval = interval
        self.call_id: Optional[str] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, call_id: str) -> None:
        """Start polling ``call_id``; any loop for another call is stopped first."""
        if self.running and self.call_id == call_id:
            return
        self.stop()
        self.call_id = call_id
        self._task = asyncio.get_running_loop().create_task(self._run(call_id))
        logger.info(f"[POLLER] Started polling - CallSid: {call_id}, Interval: {self.interval}s")

    def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        if not task.done() and task is not asyncio.current_task():
            task.cancel()
        logger.info(f"[POLLER] Stopped polling - CallSid: {self.call_id}")

    async def _run(self, call_id: str) -> None:
        while True:
            await asyncio.sleep(self.interval)
            if self._task is not asyncio.current_task():
                return

            try:
                status = await self.fetch_status(call_id)
            except Exception as e:
                logger.warning(
                    f"[POLLER] Status fetch failed - CallSid: {call_id}, "
                    f"Error: {type(e).__name__}: {str(e)}"
                )
                continue

            if status:
                logger.debug(f"[POLLER] Polled status - CallSid: {call_id}, Status: {status}")
                self.dispatch(CallEvent.remote_status(call_id, status, UpdateSource.POLL))

            # The dispatch above may have stopped us through the state machine
            if self._task is not asyncio.current_task():
                return
            if is_terminal_status(status) or self.is_finished():
                self._task = None
                logger.info(f"[POLLER] Call finished, polling ends - CallSid: {call_id}")
                return
