"""Pending mutation events held in the on-device queue."""

from __future__ import annotations

import enum
import secrets
import time
from dataclasses import dataclass, field
from typing import Any, Dict


class EventType(str, enum.Enum):
    CHECKIN = "checkin"
    CHECKOUT = "checkout"
    COMPANY = "company"
    SALE = "sale"


def now_ms() -> int:
    return int(time.time() * 1000)


def parse_event_type(value: str) -> EventType | str:
    """Known types become EventType; unknown ones are kept verbatim so the
    sync engine can report and drop them instead of failing the whole read."""
    try:
        return EventType(value)
    except ValueError:
        return value


def make_event_id(event_type: EventType, timestamp: int) -> str:
    """``<type>-<epoch ms>-<random>``; unique without coordination."""
    return f"{event_type.value}-{timestamp}-{secrets.token_hex(5)}"


@dataclass
class PendingEvent:
    """A queued mutation awaiting transmission.

    ``payload`` is exactly the request body of the target endpoint; it is never
    rewritten after enqueue. Only ``retry_count`` changes while queued.
    """

    id: str
    type: EventType | str
    payload: Dict[str, Any]
    timestamp: int
    retry_count: int = 0
    # Insertion order, used to keep FIFO among events with equal timestamps
    seq: int = field(default=0, compare=False)

    @classmethod
    def create(cls, event_type: EventType | str, payload: Dict[str, Any], timestamp: int | None = None) -> "PendingEvent":
        event_type = EventType(event_type)
        ts = now_ms() if timestamp is None else timestamp
        return cls(
            id=make_event_id(event_type, ts),
            type=event_type,
            payload=payload,
            timestamp=ts,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value if isinstance(self.type, EventType) else self.type,
            "payload": self.payload,
            "timestamp": self.timestamp,
            "retryCount": self.retry_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PendingEvent":
        return cls(
            id=data["id"],
            type=parse_event_type(data["type"]),
            payload=data["payload"],
            timestamp=int(data["timestamp"]),
            retry_count=int(data.get("retryCount", 0)),
        )
