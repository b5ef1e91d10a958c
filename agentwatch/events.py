"""In-process bus for canonical activity events."""
from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import AsyncIterator, Callable, Optional

from agentwatch import config
from agentwatch.models import ActivityEvent
from agentwatch.observability import record_activity_event

logger = logging.getLogger("agentwatch.events")

Subscriber = Callable[[ActivityEvent], None]


class ActivityEventBus:
    """Fan-out of activity events to synchronous subscribers and async streams.

    Subscribers run inline on the emitting call; a failing subscriber is
    logged and skipped so it can never disturb session state updates.
    """

    def __init__(self, history_limit: Optional[int] = None):
        limit = config.EVENT_HISTORY_LIMIT if history_limit is None else history_limit
        self._subscribers: list[Subscriber] = []
        self._queues: set[asyncio.Queue] = set()
        self._history: deque[ActivityEvent] = deque(maxlen=max(1, limit))

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            try:
                self._subscribers.remove(callback)
            except ValueError:
                pass

        return _unsubscribe

    def emit(
        self,
        event_type: str,
        session_id: int,
        *,
        tool_id: Optional[str] = None,
        parent_tool_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> ActivityEvent:
        event = ActivityEvent(
            type=event_type,
            sessionId=session_id,
            toolId=tool_id,
            parentToolId=parent_tool_id,
            status=status,
            timestamp=time.time(),
        )
        self.publish(event)
        return event

    def publish(self, event: ActivityEvent) -> None:
        self._history.append(event)
        record_activity_event(event.type)
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                logger.exception("Activity subscriber failed for %s", event.type)
        for queue in list(self._queues):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning("Dropping %s event for a slow stream consumer", event.type)

    def recent(self, limit: int = 50) -> list[ActivityEvent]:
        if limit <= 0:
            return []
        return list(self._history)[-limit:]

    async def stream(self) -> AsyncIterator[ActivityEvent]:
        """Yield events as they are published until the consumer goes away."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=config.EVENT_STREAM_QUEUE_SIZE)
        self._queues.add(queue)
        try:
            while True:
                yield await queue.get()
        finally:
            self._queues.discard(queue)

    @property
    def stream_count(self) -> int:
        return len(self._queues)
