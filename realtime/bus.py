from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Event:
    type: str
    data: dict


class EventBus:
    """Fan-out of pipeline events to SSE subscribers. Slow readers lose the oldest events."""

    def __init__(self, maxsize: int = 100) -> None:
        self._maxsize = maxsize
        self._lock = asyncio.Lock()
        self._subscribers: set[asyncio.Queue[Event]] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def subscribe(self) -> asyncio.Queue[Event]:
        queue: asyncio.Queue[Event] = asyncio.Queue(maxsize=self._maxsize)
        async with self._lock:
            self._subscribers.add(queue)
        return queue

    async def unsubscribe(self, queue: asyncio.Queue[Event]) -> None:
        async with self._lock:
            self._subscribers.discard(queue)

    async def publish(self, event: Event) -> int:
        async with self._lock:
            subscribers = list(self._subscribers)
        for queue in subscribers:
            if queue.full():
                dropped = queue.get_nowait()
                logger.debug("subscriber queue full, dropped %s event", dropped.type)
            queue.put_nowait(event)
        return len(subscribers)
