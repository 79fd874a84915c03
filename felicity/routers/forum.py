from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from felicity.core.db import get_db
from felicity.core.deps import get_current_actor
from felicity.core.errors import FelicityError
from felicity.core.security import Actor
from felicity.realtime.broadcaster import Broadcaster, get_broadcaster
from felicity.schemas.forum import (
    ForumListOut,
    ForumMessageEnvelope,
    ForumMessageIn,
    ForumThreadOut,
    ReactIn,
)
from felicity.services import forum

router = APIRouter(prefix="/events/{event_id}/forum", tags=["Forum"])


@router.get("/messages", response_model=ForumListOut)
async def list_messages(
    event_id: int,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    try:
        return await forum.list_messages(db, actor, event_id)
    except FelicityError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


@router.post("/messages", response_model=ForumMessageEnvelope, status_code=201)
async def create_message(
    event_id: int,
    body: ForumMessageIn,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    try:
        message = await forum.post_message(
            db,
            actor,
            event_id,
            body.content,
            parent_message_id=body.parent_message_id,
            is_announcement=body.is_announcement,
            broadcaster=broadcaster,
        )
    except FelicityError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return {"message": message}


@router.get("/messages/{message_id}/thread", response_model=ForumThreadOut)
async def thread(
    event_id: int,
    message_id: int,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    try:
        messages = await forum.get_thread(db, actor, event_id, message_id)
    except FelicityError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return {"messages": messages}


@router.post("/messages/{message_id}/pin", response_model=ForumMessageEnvelope)
async def pin(
    event_id: int,
    message_id: int,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    try:
        message = await forum.toggle_pin(db, actor, event_id, message_id, broadcaster=broadcaster)
    except FelicityError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return {"message": message}


@router.delete("/messages/{message_id}", response_model=ForumMessageEnvelope)
async def remove(
    event_id: int,
    message_id: int,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    try:
        message = await forum.delete_message(
            db, actor, event_id, message_id, broadcaster=broadcaster
        )
    except FelicityError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return {"message": message}


@router.post("/messages/{message_id}/react", response_model=ForumMessageEnvelope)
async def react(
    event_id: int,
    message_id: int,
    body: ReactIn,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    try:
        message = await forum.react_to_message(
            db, actor, event_id, message_id, body.emoji, broadcaster=broadcaster
        )
    except FelicityError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return {"message": message}
