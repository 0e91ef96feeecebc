"""Streaming broadcaster: routes generation output to a client's stream id."""

import logging
import threading
from collections import OrderedDict
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class RealtimeChannel(Protocol):
    def broadcast(self, stream_id: str, payload: dict[str, Any]) -> None: ...


class StreamBroadcaster:
    """Delivers chunk, tool status and terminal events.

    Every method is a no-op without a stream id, so background generation
    works without a listener. Exactly one terminal event (``done`` or
    ``error``) is sent per stream id.
    """

    def __init__(self, channel: RealtimeChannel, max_tracked_streams: int = 10_000):
        self.channel = channel
        self.max_tracked_streams = max_tracked_streams
        self._terminated: OrderedDict[str, str] = OrderedDict()
        self._lock = threading.Lock()

    def _send(self, stream_id: str, payload: dict[str, Any]) -> None:
        try:
            self.channel.broadcast(stream_id, payload)
        except Exception as e:
            # Delivery is fire-and-forget; a broken channel must not fail the action
            logger.error(f"Broadcast to {stream_id} failed: {e}", exc_info=True)

    def _claim_terminal(self, stream_id: str, event: str) -> bool:
        with self._lock:
            if stream_id in self._terminated:
                logger.warning(
                    f"Dropping '{event}' for {stream_id}: stream already ended with '{self._terminated[stream_id]}'"
                )
                return False
            self._terminated[stream_id] = event
            while len(self._terminated) > self.max_tracked_streams:
                self._terminated.popitem(last=False)
            return True

    def is_terminated(self, stream_id: str) -> bool:
        with self._lock:
            return stream_id in self._terminated

    def on_chunk(self, stream_id: str | None, delta: str | None) -> None:
        if not stream_id or not delta:
            return
        if self.is_terminated(stream_id):
            return
        logger.debug(f"[Agent] Broadcasting chunk to stream_id: {stream_id}, chunk length: {len(delta)}")
        self._send(stream_id, {"content": delta})

    def on_tool_status(self, stream_id: str | None, description: str) -> None:
        if not stream_id or self.is_terminated(stream_id):
            return
        self._send(stream_id, {"tool_status": description})

    def on_complete(self, stream_id: str | None) -> None:
        if not stream_id or not self._claim_terminal(stream_id, "done"):
            return
        logger.info(f"[Agent] Broadcasting completion to stream_id: {stream_id}")
        self._send(stream_id, {"done": True})

    def on_error(self, stream_id: str | None, message: str) -> None:
        if not stream_id or not self._claim_terminal(stream_id, "error"):
            return
        logger.info(f"[Agent] Broadcasting error to stream_id: {stream_id}")
        self._send(stream_id, {"error": message})
