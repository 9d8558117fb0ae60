"""Event bus for negotiation domain events and their SSE stream."""

import asyncio
import logging
from typing import Dict, Any, AsyncGenerator, Optional

from vehiclemarket.core.timeutils import utcnow

logger = logging.getLogger(__name__)


class EventBus:
    """
    In-memory event bus using asyncio.Queue for pub/sub.

    Each subscriber gets its own queue and may narrow the stream to a single
    conversation. Delivery is best-effort: a subscriber that cannot receive is
    dropped and never blocks the publisher.
    """

    def __init__(self, max_queue_size: int = 100):
        self._subscribers: list[tuple[asyncio.Queue, Optional[str]]] = []
        self._max_queue_size = max_queue_size

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def publish(self, event_type: str, data: Dict[str, Any]) -> None:
        """
        Publish an event to all matching subscribers.

        Args:
            event_type: Type of event (e.g., "proposal_submitted", "proposal_accepted")
            data: Event payload data; ``conversation_id`` is used for filtering
        """
        event = {
            "type": event_type,
            "data": data,
            "timestamp": utcnow().isoformat()
        }
        conversation_id = data.get("conversation_id")

        dead = []
        for entry in self._subscribers:
            queue, scope = entry
            if scope is not None and scope != conversation_id:
                continue
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                dead.append(entry)

        for entry in dead:
            logger.warning("Dropping slow event subscriber")
            self._subscribers.remove(entry)

    async def subscribe(self, conversation_id: Optional[str] = None) -> AsyncGenerator[Dict[str, Any], None]:
        """
        Subscribe to events and receive them as an async generator.

        Args:
            conversation_id: Only receive events of this conversation

        Yields:
            Event dictionaries containing type, data, and timestamp

        Usage:
            async for event in event_bus.subscribe(conversation_id):
                print(event)
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._max_queue_size)
        entry = (queue, conversation_id)
        self._subscribers.append(entry)

        try:
            while True:
                event = await queue.get()
                yield event
        finally:
            if entry in self._subscribers:
                self._subscribers.remove(entry)


# Global event bus instance
event_bus = EventBus()
