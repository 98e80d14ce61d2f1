"""In-process pub/sub for status, queue and agent-state events.

Delivery is best effort: a subscriber that falls behind loses events rather
than slowing the scheduler down. The task store stays authoritative.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections import deque
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Protocol

logger = logging.getLogger(__name__)

QUEUE_CHANNEL = "queue:update"


def agent_channel(agent: str) -> str:
    return f"status:{agent}"


def task_channel(task_id: str) -> str:
    return f"task:{task_id}:status"


class Publisher(Protocol):
    async def publish(self, channel: str, payload: dict[str, Any]) -> None: ...


@dataclass
class Event:
    channel: str
    payload: dict[str, Any]
    timestamp: float = field(default_factory=time.time)

    def to_sse(self) -> str:
        body = json.dumps({"channel": self.channel, "payload": self.payload, "timestamp": self.timestamp}, default=str)
        return f"data: {body}\n\n"


class EventBus:
    """Fan-out publisher with bounded per-subscriber queues."""

    def __init__(self, max_queue: int = 256, history: int = 100) -> None:
        self._max_queue = max_queue
        self._subscribers: list[tuple[str, asyncio.Queue[Event]]] = []
        self._history: deque[Event] = deque(maxlen=history)
        self.dropped = 0

    async def publish(self, channel: str, payload: dict[str, Any]) -> None:
        event = Event(channel, payload)
        self._history.append(event)
        for prefix, queue in list(self._subscribers):
            if not channel.startswith(prefix):
                continue
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                self.dropped += 1
                logger.debug("Dropped %s event for slow subscriber", channel)

    @asynccontextmanager
    async def subscribe(self, prefix: str = "") -> AsyncIterator[asyncio.Queue[Event]]:
        """Receive every event whose channel starts with ``prefix``."""
        entry: tuple[str, asyncio.Queue[Event]] = (prefix, asyncio.Queue(maxsize=self._max_queue))
        self._subscribers.append(entry)
        try:
            yield entry[1]
        finally:
            self._subscribers.remove(entry)

    def recent(self, limit: int = 20, prefix: str = "") -> list[Event]:
        events = [e for e in self._history if e.channel.startswith(prefix)]
        return events[-limit:]

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)
