"""WebSocket endpoint bridging a browser to a sprite's agent session."""

import asyncio
import contextlib
import logging
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from backend.web.models.requests import parse_client_message
from backend.web.models.sprite import SpriteStatus
from backend.web.services.agent_bridge import error_event

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sprites", tags=["agent"])


class WebSocketTransport:
    """Fire-and-forget sender: events are queued and written in order by one task."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket
        self._queue: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue()
        self._writer = asyncio.create_task(self._write_loop())

    def send(self, event: dict[str, Any]) -> None:
        self._queue.put_nowait(event)

    async def _write_loop(self) -> None:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            try:
                await self.websocket.send_json(event)
            except Exception as e:
                # Client went away; drop the rest
                logger.debug("ws send dropped: %s", e)
                return

    async def close(self) -> None:
        """Flush queued events, then stop the writer."""
        self._queue.put_nowait(None)
        with contextlib.suppress(asyncio.CancelledError):
            await self._writer


@router.websocket("/{sprite_id}/ws")
async def sprite_agent_ws(websocket: WebSocket, sprite_id: str) -> None:
    app = websocket.app
    store = app.state.store
    bridge = app.state.bridge

    await websocket.accept()
    logger.info("ws open sprite=%s", sprite_id)
    transport = WebSocketTransport(websocket)

    sprite = await store.get(sprite_id)
    if sprite is None:
        transport.send(error_event("Sprite not found"))
        await transport.close()
        await websocket.close()
        return

    await bridge.connect(transport, sprite)
    await store.update_status(sprite_id, SpriteStatus.WORKING)
    try:
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                break
            try:
                message = parse_client_message(frame.get("text") or frame.get("bytes"))
            except ValueError as e:
                logger.warning("ws invalid message sprite=%s err=%s", sprite_id, e)
                transport.send(error_event(str(e)))
                continue
            logger.info("ws message sprite=%s type=%s", sprite_id, message.type)
            await bridge.handle_message(sprite_id, message, transport)
    except WebSocketDisconnect:
        pass
    finally:
        logger.info("ws close sprite=%s", sprite_id)
        if bridge.on_transport_close(sprite_id, transport):
            await store.update_status(sprite_id, SpriteStatus.IDLE)
        await transport.close()
