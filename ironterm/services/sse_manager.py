"""
SSE Manager

Fan-out hub for push events. Every subsystem publishes through one
SSEManager; each connected overlay client owns a bounded queue that the
/events endpoint drains into a Server-Sent Events stream.
"""

import asyncio
import logging
from collections import deque
from datetime import datetime, timezone
from typing import AsyncIterator, Deque, Dict, Any, Set, Union

from pydantic import BaseModel

from ..event_models import SSEEvent, SSEEventType, HeartbeatSSEData

logger = logging.getLogger(__name__)


class SSEManager:
    """Broadcasts SSE events to every subscribed client queue."""

    def __init__(self, max_queue_size: int = 256, history_size: int = 100):
        self.max_queue_size = max_queue_size
        self._subscribers: Set[asyncio.Queue] = set()
        self._history: Deque[SSEEvent] = deque(maxlen=history_size)
        self._event_counter = 0

    @property
    def connection_count(self) -> int:
        return len(self._subscribers)

    @property
    def history(self) -> list:
        """Most recent events, oldest first."""
        return list(self._history)

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.max_queue_size)
        self._subscribers.add(queue)
        logger.info(f"SSE client connected ({len(self._subscribers)} active)")
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._subscribers.discard(queue)
        logger.info(f"SSE client disconnected ({len(self._subscribers)} active)")

    async def broadcast_event(
        self,
        event_type: SSEEventType,
        data: Union[BaseModel, Dict[str, Any]],
    ) -> SSEEvent:
        """Publish one event to every subscriber.

        Args:
            event_type: Kind of event
            data: Payload, either a pydantic model or a plain dict

        Returns:
            The event that was published
        """
        if isinstance(data, BaseModel):
            payload = data.model_dump(by_alias=True, mode="json")
        else:
            payload = data

        self._event_counter += 1
        event = SSEEvent(event=event_type, data=payload, id=str(self._event_counter))
        self._history.append(event)

        for queue in list(self._subscribers):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                # Slow consumer: drop its oldest event rather than block publishers
                try:
                    queue.get_nowait()
                    queue.put_nowait(event)
                except (asyncio.QueueEmpty, asyncio.QueueFull):
                    pass
                logger.warning(f"SSE client queue full, dropped oldest event before {event_type.value}")

        logger.debug(f"Broadcast {event_type.value} to {len(self._subscribers)} clients")
        return event

    async def stream(self, queue: asyncio.Queue, heartbeat_seconds: float = 15.0) -> AsyncIterator[str]:
        """Yield SSE-formatted text for one subscriber until cancelled."""
        try:
            while True:
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=heartbeat_seconds)
                except asyncio.TimeoutError:
                    event = SSEEvent(
                        event=SSEEventType.HEARTBEAT,
                        data=HeartbeatSSEData(
                            timestamp=datetime.now(timezone.utc),
                            connections_active=self.connection_count,
                        ).model_dump(mode="json"),
                    )
                yield event.to_sse_format()
        finally:
            self.unsubscribe(queue)
