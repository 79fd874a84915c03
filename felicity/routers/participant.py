from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from felicity.core.db import get_db
from felicity.core.deps import require_participant
from felicity.core.errors import FelicityError
from felicity.core.security import Actor
from felicity.schemas.registrations import RegistrationOut, TicketOut
from felicity.services.admission import cancel_registration, get_my_ticket, list_my_registrations

router = APIRouter(prefix="/participant", tags=["Participant"])


@router.get("/registrations", response_model=list[RegistrationOut])
async def my_registrations(
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_participant),
):
    try:
        return await list_my_registrations(db, actor.id)
    except FelicityError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


@router.post("/registrations/{registration_id}/cancel", response_model=RegistrationOut)
async def cancel(
    registration_id: int,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_participant),
):
    try:
        return await cancel_registration(db, actor.id, registration_id)
    except FelicityError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


@router.get("/tickets/{ticket_id}", response_model=TicketOut)
async def ticket(
    ticket_id: int,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_participant),
):
    try:
        return await get_my_ticket(db, actor.id, ticket_id)
    except FelicityError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
