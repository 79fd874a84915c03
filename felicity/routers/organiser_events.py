from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from felicity.core.db import get_db
from felicity.core.deps import get_current_organiser
from felicity.core.errors import FelicityError
from felicity.integrations.announce_client import PublishAnnouncer, get_announcer
from felicity.models.profiles import Organiser
from felicity.schemas.events import (
    EventDraftIn,
    EventOut,
    EventStatusIn,
    EventUpdateIn,
    OrganiserDashboardOut,
    OrganiserEventOut,
    ParticipantRowOut,
)
from felicity.schemas.registrations import (
    AttendanceScanIn,
    AttendanceScanOut,
    AttendanceSummaryOut,
    ManualAttendanceIn,
    RegistrationOut,
)
from felicity.services.attendance import attendance_summary, manual_attendance, scan_attendance
from felicity.services.events import (
    build_analytics,
    create_event_draft,
    get_owned_event,
    list_organiser_events,
    organiser_dashboard,
    participant_rows,
    publish_event,
    update_event,
    update_event_status,
)

router = APIRouter(prefix="/organiser", tags=["Organiser - Events"])


@router.get("/dashboard", response_model=OrganiserDashboardOut)
async def dashboard(
    db: AsyncSession = Depends(get_db),
    organiser: Organiser = Depends(get_current_organiser),
):
    data = await organiser_dashboard(db, organiser)
    return OrganiserDashboardOut(
        events=[EventOut.from_event(e) for e in data["events"]],
        analytics=data["analytics"],
    )


@router.post("/events", response_model=EventOut, status_code=201)
async def create_event(
    body: EventDraftIn,
    db: AsyncSession = Depends(get_db),
    organiser: Organiser = Depends(get_current_organiser),
):
    try:
        event = await create_event_draft(db, organiser, body.model_dump())
    except FelicityError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return EventOut.from_event(event)


@router.get("/events", response_model=list[EventOut])
async def list_events(
    db: AsyncSession = Depends(get_db),
    organiser: Organiser = Depends(get_current_organiser),
):
    events = await list_organiser_events(db, organiser)
    return [EventOut.from_event(e) for e in events]


@router.get("/events/{event_id}", response_model=OrganiserEventOut)
async def get_event(
    event_id: int,
    db: AsyncSession = Depends(get_db),
    organiser: Organiser = Depends(get_current_organiser),
):
    try:
        event = await get_owned_event(db, organiser, event_id)
    except FelicityError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))

    analytics = await build_analytics(db, event)
    return OrganiserEventOut.from_event(event, analytics=analytics)


@router.patch("/events/{event_id}", response_model=EventOut)
async def patch_event(
    event_id: int,
    body: EventUpdateIn,
    db: AsyncSession = Depends(get_db),
    organiser: Organiser = Depends(get_current_organiser),
):
    updates = body.model_dump(exclude_unset=True)
    if not updates:
        raise HTTPException(status_code=400, detail="No fields to update")

    try:
        event = await update_event(db, organiser, event_id, updates)
    except FelicityError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return EventOut.from_event(event)


@router.post("/events/{event_id}/publish", response_model=EventOut)
async def publish(
    event_id: int,
    db: AsyncSession = Depends(get_db),
    organiser: Organiser = Depends(get_current_organiser),
    announcer: PublishAnnouncer = Depends(get_announcer),
):
    try:
        event = await publish_event(db, organiser, event_id, announcer=announcer)
    except FelicityError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return EventOut.from_event(event)


@router.patch("/events/{event_id}/status", response_model=EventOut)
async def change_status(
    event_id: int,
    body: EventStatusIn,
    db: AsyncSession = Depends(get_db),
    organiser: Organiser = Depends(get_current_organiser),
):
    try:
        event = await update_event_status(
            db,
            organiser,
            event_id,
            status=body.status,
            registration_status=body.registration_status,
        )
    except FelicityError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return EventOut.from_event(event)


@router.get("/events/{event_id}/participants", response_model=list[ParticipantRowOut])
async def list_participants(
    event_id: int,
    search: str | None = Query(default=None),
    status: str | None = Query(default=None),
    type: str | None = Query(default=None),
    db: AsyncSession = Depends(get_db),
    organiser: Organiser = Depends(get_current_organiser),
):
    try:
        event = await get_owned_event(db, organiser, event_id)
    except FelicityError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))

    return await participant_rows(db, event, search=search, status=status, type_=type)


@router.post("/events/{event_id}/attendance/scan", response_model=AttendanceScanOut)
async def scan(
    event_id: int,
    body: AttendanceScanIn,
    db: AsyncSession = Depends(get_db),
    organiser: Organiser = Depends(get_current_organiser),
):
    try:
        event = await get_owned_event(db, organiser, event_id)
        return await scan_attendance(db, organiser, event, body.payload)
    except FelicityError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


@router.post("/events/{event_id}/attendance/manual", response_model=RegistrationOut)
async def manual_override(
    event_id: int,
    body: ManualAttendanceIn,
    db: AsyncSession = Depends(get_db),
    organiser: Organiser = Depends(get_current_organiser),
):
    try:
        event = await get_owned_event(db, organiser, event_id)
        return await manual_attendance(
            db, organiser, event, body.registration_id, body.attendance, note=body.note
        )
    except FelicityError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


@router.get("/events/{event_id}/attendance", response_model=AttendanceSummaryOut)
async def attendance(
    event_id: int,
    db: AsyncSession = Depends(get_db),
    organiser: Organiser = Depends(get_current_organiser),
):
    try:
        event = await get_owned_event(db, organiser, event_id)
    except FelicityError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))

    return await attendance_summary(db, event)
