"""Status relay: webhook ingestion, status cache and socket fan-out."""
import asyncio
import logging
from typing import Any, Dict, List, Optional, Protocol, Set

from softphone.services.relay.cache import StatusCache, StatusRecord
from softphone.services.relay.events import STATUS_UPDATE_EVENT
from softphone.services.telephony.provider import TelephonyProvider

logger = logging.getLogger(__name__)

# A socket that cannot take a push within this long is dropped
SEND_TIMEOUT_SECONDS = 5.0


class StatusSubscriber(Protocol):
    """Anything that can receive a pushed event (usually a socket)."""

    async def send_event(self, event: str, data: Any) -> None:
        ...


class StatusRelay:
    """
    Single owner of the status cache and the topic registry.

    One topic per call id. Status is only pushed to sockets that explicitly
    joined that call's topic; connection-wide events (new messages) go to
    every connected socket. Delivery is fire-and-forget: pushes run as
    background tasks, so a webhook never waits on a slow socket, and the
    client's fallback poller covers anything lost here.
    """

    def __init__(
        self,
        provider: TelephonyProvider,
        cache: Optional[StatusCache] = None,
        send_timeout: float = SEND_TIMEOUT_SECONDS,
    ):
        self.provider = provider
        self.cache = cache if cache is not None else StatusCache()
        self.send_timeout = send_timeout
        self._topics: Dict[str, Set[StatusSubscriber]] = {}
        self._connections: Set[StatusSubscriber] = set()
        self._deliveries: Set[asyncio.Task] = set()

    def connect(self, subscriber: StatusSubscriber) -> None:
        """Track a newly connected socket for broadcasts."""
        self._connections.add(subscriber)

    def disconnect(self, subscriber: StatusSubscriber) -> None:
        """Forget a socket entirely: broadcasts and every topic."""
        self._connections.discard(subscriber)
        self.unsubscribe_all(subscriber)

    @property
    def connections(self) -> Set[StatusSubscriber]:
        return set(self._connections)

    def subscribe(self, call_id: str, subscriber: StatusSubscriber) -> None:
        """Join a call's topic."""
        self._topics.setdefault(call_id, set()).add(subscriber)
        logger.info(f"[RELAY] Subscriber joined topic - CallSid: {call_id}")

    def unsubscribe(self, call_id: str, subscriber: StatusSubscriber) -> None:
        """Leave a call's topic."""
        members = self._topics.get(call_id)
        if not members:
            return
        members.discard(subscriber)
        if not members:
            del self._topics[call_id]

    def unsubscribe_all(self, subscriber: StatusSubscriber) -> None:
        """Drop a subscriber from every topic, e.g. when its socket closes."""
        for call_id in list(self._topics):
            self.unsubscribe(call_id, subscriber)

    def subscribers(self, call_id: str) -> Set[StatusSubscriber]:
        return set(self._topics.get(call_id, ()))

    async def ingest(
        self,
        call_id: str,
        raw_status: str,
        direction: Optional[str] = None,
        duration_seconds: Optional[int] = None,
    ) -> StatusRecord:
        """Record a provider status callback and push it to the call's topic."""
        status = raw_status.strip().lower()
        record = self.cache.upsert(
            call_id, status, direction=direction, duration_seconds=duration_seconds
        )
        logger.info(f"[RELAY] Updated status cache - CallSid: {call_id}, Status: {status}")
        self.publish(record)
        return record

    async def get(self, call_id: str) -> StatusRecord:
        """
        Get the status of a call.

        On a cache miss the provider is asked for the live status and the
        cache is seeded with the answer. Either way the record is republished
        so late subscribers catch up.

        Raises:
            ProviderRequestFailed: if the live lookup fails
        """
        record = self.cache.get(call_id)
        if record is not None:
            logger.debug(f"[RELAY] Cache hit - CallSid: {call_id}, Status: {record.status}")
        else:
            call = await self.provider.fetch_call(call_id)
            logger.info(f"[RELAY] Cache miss, fetched live status - CallSid: {call_id}, Status: {call.status}")
            record = self.cache.put(
                StatusRecord(
                    call_id=call_id,
                    status=call.status.lower(),
                    direction=call.direction,
                    duration_seconds=call.duration_seconds,
                )
            )
        self.publish(record)
        return record

    def publish(self, record: StatusRecord) -> int:
        """Schedule a push of a record to its topic; returns how many sockets it goes to."""
        payload = {"callId": record.call_id, "status": record.status}
        return self._fan_out(STATUS_UPDATE_EVENT, payload, self.subscribers(record.call_id), record.call_id)

    def broadcast(self, event: str, data: Any) -> int:
        """Schedule a push of an event to every connected socket, whatever topics it joined."""
        return self._fan_out(event, data, set(self._connections))

    async def drain(self) -> None:
        """Wait for every scheduled push to finish."""
        while self._deliveries:
            await asyncio.gather(*list(self._deliveries), return_exceptions=True)

    def _fan_out(
        self,
        event: str,
        data: Any,
        members: Set[StatusSubscriber],
        call_id: Optional[str] = None,
    ) -> int:
        if not members:
            return 0
        task = asyncio.get_running_loop().create_task(
            self._deliver(event, data, list(members), call_id)
        )
        self._deliveries.add(task)
        task.add_done_callback(self._deliveries.discard)
        return len(members)

    async def _deliver(
        self,
        event: str,
        data: Any,
        members: List[StatusSubscriber],
        call_id: Optional[str],
    ) -> None:
        results = await asyncio.gather(
            *(asyncio.wait_for(member.send_event(event, data), self.send_timeout) for member in members),
            return_exceptions=True,
        )
        delivered = 0
        for member, result in zip(members, results):
            if isinstance(result, Exception):
                logger.warning(
                    f"[RELAY] Push failed, dropping subscriber - Event: {event}, CallSid: {call_id}, "
                    f"Error: {type(result).__name__}: {result}"
                )
                if call_id is None:
                    self.disconnect(member)
                else:
                    self.unsubscribe(call_id, member)
            else:
                delivered += 1
        logger.debug(
            f"[RELAY] Pushed {event} - CallSid: {call_id}, Delivered: {delivered}/{len(members)}"
        )
