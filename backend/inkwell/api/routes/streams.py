"""WebSocket subscription to an action's stream id."""

import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from inkwell.realtime.channel import ChannelHub, Subscription

logger = logging.getLogger(__name__)

router = APIRouter()


async def _close_safely(ws: WebSocket, *, code: int = 1000, reason: str | None = None) -> None:
    """Attempt to close the websocket without raising."""
    if ws.application_state != WebSocketState.CONNECTED:
        return
    try:
        await ws.close(code=code, reason=reason)
    except Exception:
        logger.debug("Websocket already closed", exc_info=True)


async def _relay(websocket: WebSocket, subscription: Subscription) -> None:
    """Forward payloads until the stream's terminal event."""
    while True:
        payload = await subscription.get()
        await websocket.send_json(payload)
        if payload.get("done") or "error" in payload:
            logger.info(f"📭 Stream {subscription.stream_id} ended")
            return


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            raise WebSocketDisconnect(message.get("code", 1000))


@router.websocket("/streams/{stream_id}")
async def stream_socket(websocket: WebSocket, stream_id: str):
    """Relay ``{content}``, ``{tool_status}`` and the final ``{done}``/``{error}`` for one stream."""
    hub: ChannelHub = websocket.app.state.services.channel_hub

    await websocket.accept()
    subscription = hub.subscribe(stream_id)
    await websocket.send_json({"type": "confirm_subscription", "stream_id": stream_id})

    relay = asyncio.create_task(_relay(websocket, subscription))
    watcher = asyncio.create_task(_wait_for_disconnect(websocket))
    try:
        done, _ = await asyncio.wait({relay, watcher}, return_when=asyncio.FIRST_COMPLETED)
        for completed in done:
            try:
                completed.result()
            except WebSocketDisconnect:
                logger.info(f"Client left stream {stream_id}")
            except Exception as exc:
                logger.exception(f"Stream {stream_id} relay ended with error: {exc}")
    finally:
        hub.unsubscribe(subscription)
        tasks = [relay, watcher]
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await _close_safely(websocket)
