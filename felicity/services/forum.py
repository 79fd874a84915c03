"""Event discussion forum: access, message tree, reactions and moderation.

Every operation first resolves the caller's capability set for the event
(`get_access_context`) and then checks the one capability it needs.
Successful mutations are pushed to the event's forum room.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from felicity.core.errors import BusinessRuleError, Forbidden, NotFound, ValidationFailed
from felicity.core.security import Actor
from felicity.core.timeutil import utcnow
from felicity.models.event import Event
from felicity.models.forum import ForumMessage, ForumReaction
from felicity.models.registration import INACTIVE_REGISTRATION_STATUSES, Registration
from felicity.realtime.broadcaster import Broadcaster, forum_room
from felicity.services.profiles import display_name_for, find_organiser, find_participant

logger = logging.getLogger(__name__)

ALLOWED_REACTIONS = ("👍", "❤️", "🎉", "👏", "❓")
DEFAULT_VISIBLE_REACTIONS = ("👍", "❤️")
DELETED_PLACEHOLDER = "This message was removed by an organizer."
MAX_CONTENT_LENGTH = 2000


@dataclass(frozen=True)
class AccessContext:
    event: Event
    can_moderate: bool = False
    can_announce: bool = False
    can_participate: bool = False

    def permissions(self) -> dict:
        return {
            "can_moderate": self.can_moderate,
            "can_announce": self.can_announce,
            "can_participate": self.can_participate,
        }


async def _organiser_access(db: AsyncSession, actor: Actor, event_id: int) -> AccessContext:
    organiser = await find_organiser(db, actor.id)
    if organiser is None:
        raise NotFound("Organiser not found")

    res = await db.execute(
        select(Event).where(Event.id == event_id, Event.organiser_id == organiser.id)
    )
    event = res.scalar_one_or_none()
    if event is None:
        raise NotFound("Event not found")

    return AccessContext(event=event, can_moderate=True, can_announce=True, can_participate=True)


async def _participant_access(db: AsyncSession, actor: Actor, event_id: int) -> AccessContext:
    res = await db.execute(select(Event).where(Event.id == event_id, Event.status != "draft"))
    event = res.scalar_one_or_none()
    if event is None:
        raise NotFound("Event not found")

    participant = await find_participant(db, actor.id)
    if participant is None:
        raise NotFound("Participant not found")

    res = await db.execute(
        select(Registration.id).where(
            Registration.event_id == event_id,
            Registration.participant_id == participant.id,
            Registration.status.not_in(INACTIVE_REGISTRATION_STATUSES),
        )
    )
    return AccessContext(event=event, can_participate=res.first() is not None)


async def _default_access(db: AsyncSession, actor: Actor, event_id: int) -> AccessContext:
    event = await db.get(Event, event_id)
    if event is None:
        raise NotFound("Event not found")
    return AccessContext(event=event, can_participate=True)


_ACCESS_RESOLVERS = {
    "organiser": _organiser_access,
    "participant": _participant_access,
}


async def get_access_context(db: AsyncSession, actor: Actor, event_id: int) -> AccessContext:
    resolver = _ACCESS_RESOLVERS.get(actor.role, _default_access)
    return await resolver(db, actor, event_id)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def summarize_reactions(reactions: list[ForumReaction], current_user_id: int) -> list[dict]:
    summary = []
    for emoji in ALLOWED_REACTIONS:
        users = [r.user_id for r in reactions if r.emoji == emoji]
        if not users and emoji not in DEFAULT_VISIBLE_REACTIONS:
            continue
        summary.append({"emoji": emoji, "count": len(users), "reacted": current_user_id in users})
    return summary


def serialize_message(message: ForumMessage, current_user_id: int) -> dict:
    """Transport form of a message; JSON-safe so it can go straight onto a socket."""
    return {
        "id": message.id,
        "event_id": message.event_id,
        "author_user_id": message.author_user_id,
        "author_role": message.author_role,
        "author_name": message.author_name,
        "content": DELETED_PLACEHOLDER if message.is_deleted else message.content,
        "is_pinned": bool(message.is_pinned),
        "is_announcement": bool(message.is_announcement),
        "is_deleted": bool(message.is_deleted),
        "parent_message_id": message.parent_message_id,
        "created_at": _iso(message.created_at),
        "updated_at": _iso(message.updated_at),
        "reactions": summarize_reactions(message.reactions or [], current_user_id),
    }


async def _publish(
    broadcaster: Optional[Broadcaster], event_id: int, type_: str, serialized: dict
) -> None:
    if broadcaster is None:
        return
    await broadcaster.publish(forum_room(event_id), type_, {"message": serialized})


async def _get_message(db: AsyncSession, event_id: int, message_id: int) -> ForumMessage:
    res = await db.execute(
        select(ForumMessage).where(
            ForumMessage.id == message_id, ForumMessage.event_id == event_id
        )
    )
    message = res.scalar_one_or_none()
    if message is None:
        raise NotFound("Message not found")
    return message


async def list_messages(db: AsyncSession, actor: Actor, event_id: int) -> dict:
    access = await get_access_context(db, actor, event_id)

    res = await db.execute(
        select(ForumMessage)
        .where(ForumMessage.event_id == event_id)
        .order_by(
            ForumMessage.is_pinned.desc(),
            ForumMessage.created_at.asc(),
            ForumMessage.id.asc(),
        )
    )
    messages = res.scalars().all()

    return {
        "messages": [serialize_message(m, actor.id) for m in messages],
        "permissions": access.permissions(),
        "allowed_reactions": list(ALLOWED_REACTIONS),
    }


def _clean_content(content: Optional[str]) -> str:
    text = (content or "").strip()
    if not text or len(text) > MAX_CONTENT_LENGTH:
        raise ValidationFailed(f"Message must be 1-{MAX_CONTENT_LENGTH} characters")
    return text


async def post_message(
    db: AsyncSession,
    actor: Actor,
    event_id: int,
    content: str,
    *,
    parent_message_id: Optional[int] = None,
    is_announcement: bool = False,
    broadcaster: Optional[Broadcaster] = None,
) -> dict:
    text = _clean_content(content)

    access = await get_access_context(db, actor, event_id)
    if not access.can_participate:
        raise Forbidden("Only registered participants can post in this forum")

    if parent_message_id is not None:
        await _get_message(db, event_id, parent_message_id)

    if is_announcement and not access.can_announce:
        raise Forbidden("Only event organizers can post announcements")

    author_name = await display_name_for(db, actor.id, actor.role)

    try:
        message = ForumMessage(
            event_id=event_id,
            author_user_id=actor.id,
            author_role=actor.role,
            author_name=author_name,
            content=text,
            parent_message_id=parent_message_id,
            is_announcement=bool(is_announcement),
        )
        db.add(message)
        await db.commit()
        await db.refresh(message, attribute_names=["reactions"])
    except Exception:
        await db.rollback()
        raise

    serialized = serialize_message(message, actor.id)
    await _publish(broadcaster, event_id, "message_created", serialized)
    return serialized


async def toggle_pin(
    db: AsyncSession,
    actor: Actor,
    event_id: int,
    message_id: int,
    *,
    broadcaster: Optional[Broadcaster] = None,
) -> dict:
    access = await get_access_context(db, actor, event_id)
    if not access.can_moderate:
        raise Forbidden("Only event organizers can pin messages")

    try:
        message = await _get_message(db, event_id, message_id)
        message.is_pinned = not message.is_pinned
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    serialized = serialize_message(message, actor.id)
    await _publish(broadcaster, event_id, "message_updated", serialized)
    return serialized


async def delete_message(
    db: AsyncSession,
    actor: Actor,
    event_id: int,
    message_id: int,
    *,
    broadcaster: Optional[Broadcaster] = None,
) -> dict:
    """Soft delete: the node stays in the tree so replies keep their parent."""
    access = await get_access_context(db, actor, event_id)
    if not access.can_moderate:
        raise Forbidden("Only event organizers can delete messages")

    try:
        message = await _get_message(db, event_id, message_id)
        message.is_deleted = True
        message.deleted_at = utcnow()
        message.deleted_by_user_id = actor.id
        message.content = ""
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info("event=%s forum message=%s removed by user=%s", event_id, message_id, actor.id)

    serialized = serialize_message(message, actor.id)
    await _publish(broadcaster, event_id, "message_updated", serialized)
    return serialized


async def react_to_message(
    db: AsyncSession,
    actor: Actor,
    event_id: int,
    message_id: int,
    emoji: str,
    *,
    broadcaster: Optional[Broadcaster] = None,
) -> dict:
    """Toggle one emoji for the caller; other emojis by the same user are left alone."""
    if emoji not in ALLOWED_REACTIONS:
        raise ValidationFailed("Invalid reaction")

    access = await get_access_context(db, actor, event_id)
    if not access.can_participate:
        raise Forbidden("Only registered participants can react in this forum")

    message = await _get_message(db, event_id, message_id)
    if message.is_deleted:
        raise BusinessRuleError("Cannot react to removed message")

    try:
        res = await db.execute(
            delete(ForumReaction)
            .where(
                ForumReaction.message_id == message.id,
                ForumReaction.user_id == actor.id,
                ForumReaction.emoji == emoji,
            )
            .execution_options(synchronize_session=False)
        )
        if res.rowcount == 0:
            db.add(ForumReaction(message_id=message.id, user_id=actor.id, emoji=emoji))
        await db.commit()
    except IntegrityError:
        # Same user, same emoji, inserted by a concurrent request: the reaction is already there
        await db.rollback()
    except Exception:
        await db.rollback()
        raise

    # Also reloads the columns expired by a rollback
    await db.refresh(message)

    serialized = serialize_message(message, actor.id)
    await _publish(broadcaster, event_id, "message_updated", serialized)
    return serialized


async def get_thread(db: AsyncSession, actor: Actor, event_id: int, message_id: int) -> list[dict]:
    """The message and all of its descendants, breadth first."""
    await get_access_context(db, actor, event_id)
    root = await _get_message(db, event_id, message_id)

    res = await db.execute(
        select(ForumMessage)
        .where(ForumMessage.event_id == event_id, ForumMessage.parent_message_id.is_not(None))
        .order_by(ForumMessage.created_at.asc(), ForumMessage.id.asc())
    )
    children: dict[int, list[ForumMessage]] = {}
    for message in res.scalars().all():
        children.setdefault(message.parent_message_id, []).append(message)

    ordered: list[dict] = []
    queue = deque([root])
    while queue:
        current = queue.popleft()
        ordered.append(serialize_message(current, actor.id))
        queue.extend(children.get(current.id, ()))

    return ordered
