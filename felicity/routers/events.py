from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from felicity.core.db import get_db
from felicity.core.deps import get_current_actor, require_participant
from felicity.core.errors import FelicityError
from felicity.core.security import Actor
from felicity.models.profiles import Organiser
from felicity.schemas.events import EventOut, PublicEventOut
from felicity.schemas.registrations import PurchaseIn, RegisterIn, RegistrationOut
from felicity.services.admission import OrderLine, purchase_merchandise, register_for_event
from felicity.services.events import browse_events, get_public_event

router = APIRouter(prefix="/events", tags=["Events"])


@router.get("", response_model=list[EventOut])
async def browse(
    search: str | None = Query(default=None),
    event_type: str | None = Query(default=None),
    eligibility: str | None = Query(default=None),
    category: str | None = Query(default=None),
    date_from: datetime | None = Query(default=None),
    date_to: datetime | None = Query(default=None),
    organiser_ids: list[int] | None = Query(default=None),
    trending: bool = Query(default=False),
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    events = await browse_events(
        db,
        search=search,
        event_type=event_type,
        eligibility=eligibility,
        category=category,
        date_from=date_from,
        date_to=date_to,
        organiser_ids=organiser_ids,
        trending=trending,
    )
    return [EventOut.from_event(e) for e in events]


@router.get("/{event_id}", response_model=PublicEventOut)
async def get_event(
    event_id: int,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    try:
        event, registration_count, remaining = await get_public_event(db, event_id)
    except FelicityError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))

    organiser = await db.get(Organiser, event.organiser_id)
    return PublicEventOut.from_event(
        event,
        organiser_name=organiser.name if organiser else None,
        registration_count=registration_count,
        remaining_spots=remaining,
    )


@router.post("/{event_id}/register", response_model=RegistrationOut, status_code=201)
async def register(
    event_id: int,
    body: RegisterIn,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_participant),
):
    try:
        return await register_for_event(db, actor.id, event_id, form_data=body.form_data)
    except FelicityError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


@router.post("/{event_id}/purchase", response_model=RegistrationOut, status_code=201)
async def purchase(
    event_id: int,
    body: PurchaseIn,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_participant),
):
    lines = [
        OrderLine(item_name=i.item_name, variant_label=i.variant_label, quantity=i.quantity)
        for i in body.items
    ]
    try:
        return await purchase_merchandise(db, actor.id, event_id, lines)
    except FelicityError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
