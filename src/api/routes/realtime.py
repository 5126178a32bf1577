"""
Realtime endpoint
=================

WS /api/v1/ws -- booking events pushed as ``{"event": ..., "data": ...}``

Clients join rooms by sending::

    {"action": "joinUserRoom", "id": 42}
    {"action": "joinDriverRoom", "id": 7}
    {"action": "joinAdminRoom"}

and get ``{"joined": "<room>"}`` back.  Joining twice is harmless.
"""

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from src.realtime.events import ADMIN_ROOM, driver_room, user_room

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


def _room_for(message) -> str:
    if not isinstance(message, dict):
        raise ValueError("expected a JSON object")
    action = message.get("action")
    if action == "joinAdminRoom":
        return ADMIN_ROOM
    if action in ("joinUserRoom", "joinDriverRoom"):
        target = int(message["id"])
        return user_room(target) if action == "joinUserRoom" else driver_room(target)
    raise ValueError(f"unknown action {action!r}")


@router.websocket("/ws")
async def realtime(websocket: WebSocket):
    rooms = websocket.app.state.services.router
    await websocket.accept()
    connection_id = rooms.register(websocket)
    logger.info("Realtime client %s connected", connection_id)
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                room = _room_for(json.loads(raw))
            except (KeyError, TypeError, ValueError) as exc:
                await websocket.send_json({"error": f"bad request: {exc}"})
                continue
            rooms.join(connection_id, room)
            await websocket.send_json({"joined": room})
    except WebSocketDisconnect:
        logger.info("Realtime client %s disconnected", connection_id)
    finally:
        rooms.disconnect(connection_id)
