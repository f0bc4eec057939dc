"""
Live event fan-out

Marketplace events (new bids, closed auctions) are pushed to every open
WebSocket and to every Server-Sent Events subscriber.
"""
import asyncio
from typing import Any, Dict, Optional, Set
from core.logger import setup_logger

logger = setup_logger(__name__)

class EventHub:
    """Broadcasts JSON events to WebSocket connections and SSE queues"""

    def __init__(self, max_queue_size: int = 100):
        self.max_queue_size = max_queue_size
        self._queues: Set[asyncio.Queue] = set()
        self._sockets: Dict[str, Any] = {}

    # === WebSocket connections ===

    def add_socket(self, connection_id: str, websocket) -> None:
        self._sockets[connection_id] = websocket
        logger.debug(f"Socket registered: {connection_id} ({len(self._sockets)} open)")

    def remove_socket(self, connection_id: str) -> None:
        self._sockets.pop(connection_id, None)

    @property
    def connection_count(self) -> int:
        return len(self._sockets)

    # === SSE subscribers ===

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.max_queue_size)
        self._queues.add(queue)
        logger.debug(f"SSE subscriber added ({len(self._queues)} total)")
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._queues.discard(queue)

    @property
    def subscriber_count(self) -> int:
        return len(self._queues)

    async def broadcast(
        self,
        event: Dict[str, Any],
        exclude: Optional[str] = None,
        streams: bool = True
    ) -> int:
        """
        Deliver an event to everyone listening

        Args:
            event: JSON-serializable payload with a "type" key
            exclude: Connection id that should not receive it
            streams: Also hand it to SSE subscribers

        Returns:
            Number of receivers the event was handed to
        """
        delivered = 0
        for queue in (list(self._queues) if streams else []):
            try:
                queue.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning("SSE subscriber queue full, dropping event")

        for connection_id, websocket in list(self._sockets.items()):
            if connection_id == exclude:
                continue
            try:
                await websocket.send_json(event)
                delivered += 1
            except Exception as e:
                # Socket already gone; its handler will unregister it
                logger.debug(f"Broadcast to {connection_id} failed: {e}")
                self._sockets.pop(connection_id, None)

        logger.debug(f"Broadcast {event.get('type')} to {delivered} receivers")
        return delivered
