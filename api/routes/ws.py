"""WebSocket route for live price/volume ticks."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from api.deps import get_tick_relay
from api.websocket.manager import TickRelayManager

logger = logging.getLogger(__name__)

router = APIRouter(tags=["websocket"])


@router.websocket("/ws/ticks")
async def websocket_ticks(
    websocket: WebSocket,
    manager: TickRelayManager = Depends(get_tick_relay),
) -> None:
    await websocket.accept()
    await manager.connect(websocket)

    try:
        while True:
            message = await websocket.receive_json()
            if not isinstance(message, dict):
                continue
            action = message.get("action") or message.get("type")
            if action == "subscribe":
                symbols_raw = message.get("symbols", [])
                symbols = {str(sym).upper() for sym in symbols_raw if sym}
                await manager.update_subscription(websocket, symbols=symbols)
            elif action == "ping":
                await websocket.send_json({"type": "pong"})
    except WebSocketDisconnect:
        await manager.disconnect(websocket)
    except Exception:
        logger.warning("Tick websocket closed with error", exc_info=True)
        await manager.disconnect(websocket)
