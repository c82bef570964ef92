from __future__ import annotations

import logging

from fastapi import APIRouter, Query, WebSocket

from ..channel import WebSocketChannel
from ..constants import DEFAULT_ROOM
from ..lifecycle import ConnectionLifecycle
from ..state import message_router, registry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="", tags=["ws"])


@router.websocket("/ws")
async def websocket_endpoint(ws: WebSocket, room: str = Query(default=DEFAULT_ROOM)):
    """Accept a client into *room* and relay its traffic until it leaves."""
    await ws.accept()
    room_key = room or DEFAULT_ROOM
    lifecycle = ConnectionLifecycle(room_key, WebSocketChannel(ws), registry, message_router)
    final_state = await lifecycle.run()
    logger.debug("Connection %s in room %s finished in state %s", lifecycle.client.id, room_key, final_state.value)
