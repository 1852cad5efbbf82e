"""
Outbound event channels.

Each component owns an EventChannel; consumers (CLI, Telegram) subscribe
explicitly and receive events on their own queue.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Type of outbound event."""
    POSITION_UPDATED = "position_updated"
    TRADE_EXECUTED = "trade_executed"
    TRADE_FAILED = "trade_failed"
    STATUS = "status"


@dataclass
class Event:
    """Event delivered to subscribers."""
    type: EventType
    data: Dict[str, Any]
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type.value, "data": self.data}


class EventChannel:
    """
    Fan-out of events to subscriber queues.

    Publishing never blocks: when a subscriber's queue is full the oldest
    queued event is dropped.
    """

    def __init__(self, name: str, maxsize: int = 1000):
        self.name = name
        self.maxsize = maxsize
        self._subscribers: List[asyncio.Queue] = []

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.maxsize)
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def publish(self, event: Event) -> None:
        for queue in self._subscribers:
            if queue.full():
                dropped = queue.get_nowait()
                logger.warning(f"[{self.name}] Subscriber queue full, dropped {dropped.type.value} event")
            queue.put_nowait(event)

    def emit(self, event_type: EventType, data: Dict[str, Any]) -> Event:
        event = Event(type=event_type, data=data)
        self.publish(event)
        return event

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)
