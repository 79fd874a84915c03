from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from felicity.core.errors import NotFound
from felicity.models.profiles import Organiser, Participant
from felicity.models.user import User


async def find_organiser(db: AsyncSession, user_id: int) -> Organiser | None:
    res = await db.execute(select(Organiser).where(Organiser.user_id == user_id))
    return res.scalar_one_or_none()


async def find_participant(db: AsyncSession, user_id: int) -> Participant | None:
    res = await db.execute(select(Participant).where(Participant.user_id == user_id))
    return res.scalar_one_or_none()


async def get_organiser(db: AsyncSession, user_id: int) -> Organiser:
    organiser = await find_organiser(db, user_id)
    if organiser is None:
        raise NotFound("Organiser not found")
    return organiser


async def get_participant(db: AsyncSession, user_id: int) -> Participant:
    participant = await find_participant(db, user_id)
    if participant is None:
        raise NotFound("Participant not found")
    return participant


async def display_name_for(db: AsyncSession, user_id: int, role: str) -> str:
    """Name shown next to a forum post, resolved once at post time."""
    if role == "participant":
        participant = await find_participant(db, user_id)
        if participant is not None:
            return participant.full_name or "Participant"
        return "Participant"

    if role == "organiser":
        organiser = await find_organiser(db, user_id)
        return (organiser.name if organiser else None) or "Organiser"

    res = await db.execute(select(User.email).where(User.id == user_id))
    return res.scalar_one_or_none() or "Admin"
