"""In-memory call status cache."""
from typing import Dict, Optional

from pydantic import BaseModel


class StatusRecord(BaseModel):
    """Last known provider status for one call."""

    call_id: str
    status: str
    direction: Optional[str] = None
    duration_seconds: Optional[int] = None

    def to_payload(self) -> dict:
        """Serialize in the shape the status endpoint returns."""
        return {
            "callId": self.call_id,
            "status": self.status,
            "direction": self.direction,
            "durationSeconds": self.duration_seconds,
        }


class StatusCache:
    """
    Last-write-wins store of call statuses keyed by call id.

    Entries are never evicted: the key space is provider generated and grows
    with call volume for the lifetime of the process. Ordering protection is
    the client's job, not the cache's.
    """

    def __init__(self):
        self._records: Dict[str, StatusRecord] = {}

    def get(self, call_id: str) -> Optional[StatusRecord]:
        """Get the cached record for a call."""
        return self._records.get(call_id)

    def put(self, record: StatusRecord) -> StatusRecord:
        """Store a record, replacing any previous one."""
        self._records[record.call_id] = record
        return record

    def upsert(
        self,
        call_id: str,
        status: str,
        direction: Optional[str] = None,
        duration_seconds: Optional[int] = None,
    ) -> StatusRecord:
        """Overwrite the status, keeping earlier fields the update lacks."""
        previous = self._records.get(call_id)
        record = StatusRecord(
            call_id=call_id,
            status=status,
            direction=direction if direction is not None else (previous.direction if previous else None),
            duration_seconds=(
                duration_seconds
                if duration_seconds is not None
                else (previous.duration_seconds if previous else None)
            ),
        )
        return self.put(record)

    def clear(self) -> None:
        self._records.clear()

    def __contains__(self, call_id: str) -> bool:
        return call_id in self._records

    def __len__(self) -> int:
        return len(self._records)
