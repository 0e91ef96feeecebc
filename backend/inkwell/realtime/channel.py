"""In-process real-time channel keyed by stream id.

WebSocket handlers subscribe on the event loop; agent actions broadcast from
worker threads. Payloads are handed to the subscriber's loop with
``call_soon_threadsafe`` so per-stream order is preserved.
"""

import asyncio
import logging
import threading
from typing import Any

logger = logging.getLogger(__name__)


class Subscription:
    """One connected client listening on a stream id."""

    def __init__(self, stream_id: str, loop: asyncio.AbstractEventLoop):
        self.stream_id = stream_id
        self.loop = loop
        self.queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()

    def deliver(self, payload: dict[str, Any]) -> None:
        self.loop.call_soon_threadsafe(self.queue.put_nowait, payload)

    async def get(self) -> dict[str, Any]:
        return await self.queue.get()


class ChannelHub:
    """Fan-out of broadcast payloads to the subscribers of a stream id."""

    def __init__(self):
        self._subscribers: dict[str, list[Subscription]] = {}
        self._lock = threading.Lock()

    def subscribe(self, stream_id: str) -> Subscription:
        subscription = Subscription(stream_id, asyncio.get_running_loop())
        with self._lock:
            self._subscribers.setdefault(stream_id, []).append(subscription)
        logger.info(f"📡 Subscribed to {stream_id}")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            subscribers = self._subscribers.get(subscription.stream_id, [])
            if subscription in subscribers:
                subscribers.remove(subscription)
            if not subscribers:
                self._subscribers.pop(subscription.stream_id, None)

    def subscriber_count(self, stream_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(stream_id, []))

    def broadcast(self, stream_id: str, payload: dict[str, Any]) -> None:
        with self._lock:
            subscribers = list(self._subscribers.get(stream_id, []))
        if not subscribers:
            logger.debug(f"No subscribers for {stream_id}; dropping {list(payload)}")
            return
        for subscription in subscribers:
            try:
                subscription.deliver(payload)
            except RuntimeError:
                # Subscriber's event loop is gone
                self.unsubscribe(subscription)
