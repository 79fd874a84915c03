from __future__ import annotations

import logging
from typing import Any, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from felicity.core.errors import FelicityError
from felicity.core.security import Actor
from felicity.realtime.broadcaster import Broadcaster, Subscriber, forum_room
from felicity.services.forum import get_access_context

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AsyncSession]


def _event_id(frame: dict) -> int | None:
    raw = frame.get("eventId", frame.get("event_id"))
    try:
        return int(raw) if raw is not None else None
    except (TypeError, ValueError):
        return None


async def handle_forum_frame(
    session_factory: SessionFactory,
    broadcaster: Broadcaster,
    actor: Actor,
    socket: Subscriber,
    frame: Any,
) -> None:
    """Apply one client frame: `{"action": "join"|"leave", "eventId": ...}`.

    Joining re-runs the same access resolution the REST endpoints use. Only a
    caller that may participate is admitted to the room.
    """
    if not isinstance(frame, dict):
        await socket.send_json({"event": "forum:error", "message": "Invalid frame"})
        return

    action = frame.get("action")
    event_id = _event_id(frame)

    if action == "leave":
        if event_id is not None:
            await broadcaster.leave(forum_room(event_id), socket)
        return

    if action != "join":
        await socket.send_json({"event": "forum:error", "message": "Unknown action"})
        return

    if event_id is None:
        await socket.send_json({"event": "forum:error", "message": "Missing eventId"})
        return

    async with session_factory() as db:
        try:
            access = await get_access_context(db, actor, event_id)
            allowed = access.can_participate
        except FelicityError:
            allowed = False

    if not allowed:
        logger.info("forum join denied user=%s event=%s", actor.id, event_id)
        await socket.send_json({"event": "forum:error", "message": "Forum access denied"})
        return

    await broadcaster.join(forum_room(event_id), socket)
    logger.debug("forum join user=%s event=%s", actor.id, event_id)
    await socket.send_json({"event": "forum:joined", "eventId": str(event_id)})
