from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status

from felicity.core.db import SessionLocal
from felicity.core.deps import load_active_user
from felicity.core.errors import Unauthorized
from felicity.core.security import Actor
from felicity.realtime.forum_socket import SessionFactory, handle_forum_frame

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Forum"])


def get_session_factory() -> SessionFactory:
    return SessionLocal


def _bearer(websocket: WebSocket) -> str | None:
    header = websocket.headers.get("authorization") or ""
    scheme, _, value = header.partition(" ")
    if scheme.lower() == "bearer" and value:
        return value.strip()
    return None


@router.websocket("/ws/forum")
async def forum_socket(
    websocket: WebSocket,
    token: str | None = Query(default=None),
    session_factory: SessionFactory = Depends(get_session_factory),
):
    # Identity is checked before accept: no room can be joined without it
    async with session_factory() as db:
        try:
            user = await load_active_user(db, token or _bearer(websocket))
        except Unauthorized as e:
            logger.info("forum socket refused: %s", e)
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return
        actor = Actor(id=user.id, role=user.role)

    broadcaster = websocket.app.state.broadcaster
    await websocket.accept()

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                frame = json.loads(raw)
            except ValueError:
                await websocket.send_json({"event": "forum:error", "message": "Invalid JSON"})
                continue
            await handle_forum_frame(session_factory, broadcaster, actor, websocket, frame)
    except WebSocketDisconnect:
        pass
    finally:
        await broadcaster.leave_all(websocket)
        logger.debug("forum socket closed user=%s", actor.id)
