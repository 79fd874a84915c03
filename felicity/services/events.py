from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from felicity.core.errors import BusinessRuleError, NotFound, ValidationFailed
from felicity.core.timeutil import to_naive_utc, utcnow
from felicity.integrations.announce_client import PublishAnnouncer
from felicity.models.event import REQUIRED_WHEN_PUBLISHED, Event, MerchItem, MerchVariant
from felicity.models.profiles import Organiser, Participant
from felicity.models.registration import Registration
from felicity.models.user import User
from felicity.services.event_status import compute_display_status

logger = logging.getLogger(__name__)

_DATETIME_FIELDS = ("registration_deadline", "start_time", "end_time")

# Fields an organiser may still change on a published, not-yet-running event
_PUBLISHED_EDITABLE = ("description", "registration_deadline", "reg_limit")

# Columns that can never be cleared once the event exists
_NOT_NULLABLE = ("name", "event_type", "fee")

# Window and size of the trending list
TRENDING_WINDOW = timedelta(hours=24)
TRENDING_LIMIT = 5

# Forward order for manual status transitions
_STATUS_RANK = {"published": 1, "ongoing": 2, "completed": 3, "closed": 4}


def validate_event_timeline(
    registration_deadline: Optional[datetime],
    start_time: Optional[datetime],
    end_time: Optional[datetime],
) -> None:
    if end_time is None:
        return
    if start_time is not None and start_time >= end_time:
        raise ValidationFailed("Start time must be before end time")
    if registration_deadline is not None and registration_deadline >= end_time:
        raise ValidationFailed("Registration deadline must be before end time")


def missing_required_fields(event: Event) -> list[str]:
    missing = []
    for field in REQUIRED_WHEN_PUBLISHED:
        value = getattr(event, field)
        if value is None or (isinstance(value, str) and not value.strip()):
            missing.append(field)
    return missing


def _build_merch_items(items: Iterable[dict]) -> list[MerchItem]:
    built: list[MerchItem] = []
    for pos, item in enumerate(items):
        variants = [
            MerchVariant(position=vpos, label=v["label"], stock=int(v["stock"]))
            for vpos, v in enumerate(item.get("variants") or [])
        ]
        built.append(
            MerchItem(
                position=pos,
                name=item["name"],
                purchase_limit=int(item.get("purchase_limit") or 1),
                variants=variants,
            )
        )
    return built


def _normalize(updates: dict[str, Any]) -> dict[str, Any]:
    out = dict(updates)
    for key in _DATETIME_FIELDS:
        if key in out:
            out[key] = to_naive_utc(out[key])
    return out


def _apply_fields(event: Event, values: dict[str, Any]) -> None:
    for key, value in values.items():
        if key == "merch_items":
            event.merch_items = _build_merch_items(value or [])
        elif key in ("tags", "custom_form"):
            # JSON columns: always assign a fresh list so the change is flushed
            setattr(event, key, list(value or []))
        else:
            setattr(event, key, value)


async def count_registrations(db: AsyncSession, event_id: int) -> int:
    res = await db.execute(
        select(func.count()).select_from(Registration).where(Registration.event_id == event_id)
    )
    return int(res.scalar_one())


async def get_owned_event(
    db: AsyncSession,
    organiser: Organiser,
    event_id: int,
    *,
    for_update: bool = False,
) -> Event:
    stmt = select(Event).where(Event.id == event_id, Event.organiser_id == organiser.id)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    res = await db.execute(stmt)
    event = res.scalar_one_or_none()
    if event is None:
        raise NotFound("Event not found")
    return event


async def create_event_draft(db: AsyncSession, organiser: Organiser, data: dict[str, Any]) -> Event:
    values = _normalize(data)
    validate_event_timeline(
        values.get("registration_deadline"),
        values.get("start_time"),
        values.get("end_time"),
    )

    event = Event(
        organiser_id=organiser.id,
        status="draft",
        name=values.pop("name"),
        event_type=values.pop("event_type"),
    )
    _apply_fields(event, values)

    try:
        db.add(event)
        await db.commit()
        await db.refresh(event)
    except Exception:
        await db.rollback()
        raise

    logger.info("organiser=%s created draft event=%s", organiser.id, event.id)
    return event


async def update_event(
    db: AsyncSession,
    organiser: Organiser,
    event_id: int,
    updates: dict[str, Any],
    now: Optional[datetime] = None,
) -> Event:
    """Apply a partial update under the status-dependent edit rules.

    Drafts accept any field. A published event that is not running accepts
    only description, an extended deadline and a raised registration limit.
    Everything else is locked. The custom form is locked by the first
    registration whatever the status.
    """
    now = now or utcnow()
    updates = _normalize(updates)

    cleared = sorted(k for k in _NOT_NULLABLE if k in updates and updates[k] is None)
    if cleared:
        raise ValidationFailed(f"Fields cannot be null: {', '.join(cleared)}")

    try:
        event = await get_owned_event(db, organiser, event_id, for_update=True)

        if "custom_form" in updates or "event_type" in updates:
            if await count_registrations(db, event.id) > 0:
                if "custom_form" in updates:
                    raise BusinessRuleError(
                        "Form is locked after the first registration. "
                        "You cannot modify custom form fields."
                    )
                if updates["event_type"] != event.event_type:
                    raise BusinessRuleError("Event type cannot change once registrations exist")

        if event.status == "draft":
            _apply_fields(event, updates)

        elif event.status == "published" and compute_display_status(event, now) != "ongoing":
            locked = sorted(k for k in updates if k not in _PUBLISHED_EDITABLE)
            if locked:
                raise BusinessRuleError(
                    "Only description, registration deadline and registration limit "
                    f"can change after publishing (rejected: {', '.join(locked)})"
                )

            allowed: dict[str, Any] = {}
            if "description" in updates:
                if not (updates["description"] or "").strip():
                    raise ValidationFailed("Description cannot be empty once published")
                allowed["description"] = updates["description"]

            if updates.get("registration_deadline") is not None:
                new_deadline = updates["registration_deadline"]
                if event.registration_deadline and new_deadline < event.registration_deadline:
                    raise ValidationFailed("Registration deadline can only be extended")
                allowed["registration_deadline"] = new_deadline

            if updates.get("reg_limit") is not None:
                new_limit = int(updates["reg_limit"])
                if event.reg_limit is not None and new_limit < event.reg_limit:
                    raise ValidationFailed("Registration limit can only be increased")
                allowed["reg_limit"] = new_limit

            _apply_fields(event, allowed)

        else:
            raise BusinessRuleError("Event is not editable in the current status")

        if event.status != "draft":
            missing = missing_required_fields(event)
            if missing:
                raise ValidationFailed(f"Missing required fields: {', '.join(missing)}")
        validate_event_timeline(event.registration_deadline, event.start_time, event.end_time)

        await db.commit()
        await db.refresh(event)
        return event

    except Exception:
        await db.rollback()
        raise


def build_publish_summary(event: Event) -> str:
    def fmt(value: Optional[datetime]) -> str:
        return value.strftime("%Y-%m-%d %H:%M UTC") if value else "TBD"

    return "\n".join(
        [
            f"New event published: {event.name}",
            f"Type: {event.event_type}",
            f"Category: {event.category or 'Uncategorized'}",
            f"Eligibility: {event.eligibility or 'TBD'}",
            f"Starts: {fmt(event.start_time)}",
            f"Ends: {fmt(event.end_time)}",
            f"Registration deadline: {fmt(event.registration_deadline)}",
        ]
    )


async def publish_event(
    db: AsyncSession,
    organiser: Organiser,
    event_id: int,
    *,
    announcer: Optional[PublishAnnouncer] = None,
    now: Optional[datetime] = None,
) -> Event:
    try:
        event = await get_owned_event(db, organiser, event_id, for_update=True)

        if event.status != "draft":
            raise BusinessRuleError("Only draft events can be published")

        missing = missing_required_fields(event)
        if missing:
            raise ValidationFailed(f"Missing required fields: {', '.join(missing)}")
        validate_event_timeline(event.registration_deadline, event.start_time, event.end_time)

        event.status = "published"
        event.published_at = now or utcnow()

        await db.commit()
        await db.refresh(event)

    except Exception:
        await db.rollback()
        raise

    logger.info("organiser=%s published event=%s", organiser.id, event.id)

    if announcer is not None:
        announcer.dispatch(organiser.discord_webhook, build_publish_summary(event))

    return event


async def update_event_status(
    db: AsyncSession,
    organiser: Organiser,
    event_id: int,
    *,
    status: Optional[str] = None,
    registration_status: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Event:
    if status is None and registration_status is None:
        raise ValidationFailed("At least one status field is required")

    now = now or utcnow()

    try:
        event = await get_owned_event(db, organiser, event_id, for_update=True)

        if status is not None:
            if status not in _STATUS_RANK:
                raise ValidationFailed("Invalid status")
            if event.status == "draft":
                raise BusinessRuleError("Draft events must be published first")
            if _STATUS_RANK[status] < _STATUS_RANK[event.status]:
                raise BusinessRuleError(
                    f"Cannot move event back from {event.status} to {status}"
                )
            previous = event.status
            event.status = status
            logger.info("event=%s status %s -> %s", event.id, previous, status)

        if registration_status is not None:
            if event.status == "draft":
                raise BusinessRuleError("Publish the event before changing registration status")

            if registration_status == "closed":
                event.registration_manually_closed = True
            elif registration_status == "open":
                if event.registration_deadline and event.registration_deadline < now:
                    raise BusinessRuleError("Cannot reopen registrations after the deadline")
                if event.status in ("closed", "completed"):
                    raise BusinessRuleError("Cannot open registrations for a closed event")
                event.registration_manually_closed = False
            else:
                raise ValidationFailed("Invalid registration status")

        await db.commit()
        await db.refresh(event)
        return event

    except Exception:
        await db.rollback()
        raise


async def list_organiser_events(db: AsyncSession, organiser: Organiser) -> list[Event]:
    res = await db.execute(
        select(Event)
        .where(Event.organiser_id == organiser.id)
        .order_by(Event.updated_at.desc(), Event.id.desc())
    )
    return list(res.scalars().all())


async def build_analytics(db: AsyncSession, event: Event) -> dict:
    """Registration/sales/revenue counters for one event.

    Revenue multiplies the event-level fee by merchandise quantity; items carry
    no price of their own.
    """
    res = await db.execute(select(Registration).where(Registration.event_id == event.id))
    registrations = res.scalars().all()

    normal = [r for r in registrations if r.type == "normal" and r.status == "registered"]
    purchases = [r for r in registrations if r.type == "merchandise" and r.status == "purchased"]

    merch_quantity = sum(
        int(line.get("quantity") or 0) for r in purchases for line in (r.order_items or [])
    )
    fee = event.fee or 0

    return {
        "registrations": len(normal),
        "sales": len(purchases),
        "revenue": fee * len(normal) + fee * merch_quantity,
        "attendance": sum(1 for r in registrations if r.attendance),
        "team_completion": sum(1 for r in registrations if r.team_completed),
    }


async def organiser_dashboard(db: AsyncSession, organiser: Organiser) -> dict:
    res = await db.execute(
        select(Event)
        .where(Event.organiser_id == organiser.id)
        .order_by(Event.created_at.desc(), Event.id.desc())
    )
    events = list(res.scalars().all())

    analytics = []
    for event in events:
        if event.status not in ("completed", "closed"):
            continue
        stats = await build_analytics(db, event)
        analytics.append({"event_id": event.id, "name": event.name, "status": event.status, **stats})

    return {"events": events, "analytics": analytics}


def _team_name(form_data: Optional[dict]) -> str:
    if not form_data:
        return ""
    return str(form_data.get("teamName") or form_data.get("team") or "")


async def participant_rows(
    db: AsyncSession,
    event: Event,
    *,
    search: Optional[str] = None,
    status: Optional[str] = None,
    type_: Optional[str] = None,
) -> list[dict]:
    """Flat participant rows for the organiser list and CSV export."""
    stmt = (
        select(Registration, Participant, User.email)
        .join(Participant, Participant.id == Registration.participant_id)
        .join(User, User.id == Participant.user_id)
        .where(Registration.event_id == event.id)
        .order_by(Registration.created_at.desc(), Registration.id.desc())
    )
    if status:
        stmt = stmt.where(Registration.status == status)
    if type_:
        stmt = stmt.where(Registration.type == type_)

    res = await db.execute(stmt)

    needle = (search or "").strip().lower()
    payment = "Paid" if (event.fee or 0) > 0 else "Free"

    rows: list[dict] = []
    for registration, participant, email in res.all():
        name = participant.full_name
        if needle and needle not in name.lower() and needle not in (email or "").lower():
            continue
        rows.append(
            {
                "id": registration.id,
                "name": name,
                "email": email or "",
                "registered_at": registration.created_at,
                "payment": payment,
                "team": _team_name(registration.form_data),
                "attendance": registration.attendance,
                "attendance_marked_at": registration.attendance_marked_at,
                "status": registration.status,
                "type": registration.type,
            }
        )
    return rows


async def trending_event_ids(db: AsyncSession, now: Optional[datetime] = None) -> list[int]:
    """Event ids with the most registrations in the last day, busiest first."""
    since = (now or utcnow()) - TRENDING_WINDOW
    count = func.count(Registration.id)
    res = await db.execute(
        select(Registration.event_id, count)
        .where(Registration.created_at >= since)
        .group_by(Registration.event_id)
        .order_by(count.desc(), Registration.event_id.asc())
        .limit(TRENDING_LIMIT)
    )
    return [event_id for event_id, _ in res.all()]


async def browse_events(
    db: AsyncSession,
    *,
    search: Optional[str] = None,
    event_type: Optional[str] = None,
    eligibility: Optional[str] = None,
    category: Optional[str] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    organiser_ids: Optional[list[int]] = None,
    trending: bool = False,
    now: Optional[datetime] = None,
) -> list[Event]:
    stmt = select(Event).where(Event.status != "draft")

    if event_type:
        stmt = stmt.where(Event.event_type == event_type)
    if eligibility:
        stmt = stmt.where(Event.eligibility == eligibility)
    if category:
        stmt = stmt.where(Event.category == category)
    if date_from is not None:
        stmt = stmt.where(Event.start_time >= to_naive_utc(date_from))
    if date_to is not None:
        stmt = stmt.where(Event.start_time <= to_naive_utc(date_to))
    if organiser_ids:
        stmt = stmt.where(Event.organiser_id.in_(organiser_ids))

    res = await db.execute(stmt.order_by(Event.start_time.asc(), Event.id.asc()))
    events = list(res.scalars().all())

    # Name, tag or organiser-name match; tags live in a JSON list so this stays in Python
    if search and search.strip():
        needle = search.strip().lower()
        res_org = await db.execute(
            select(Organiser.id).where(func.lower(Organiser.name).contains(needle))
        )
        organiser_match = set(res_org.scalars().all())
        events = [
            e
            for e in events
            if needle in e.name.lower()
            or e.organiser_id in organiser_match
            or any(needle in str(tag).lower() for tag in (e.tags or []))
        ]

    if trending:
        ranked = await trending_event_ids(db, now=now)
        position = {event_id: i for i, event_id in enumerate(ranked)}
        events = sorted((e for e in events if e.id in position), key=lambda e: position[e.id])

    return events


async def get_public_event(db: AsyncSession, event_id: int) -> tuple[Event, int, Optional[int]]:
    res = await db.execute(select(Event).where(Event.id == event_id, Event.status != "draft"))
    event = res.scalar_one_or_none()
    if event is None:
        raise NotFound("Event not found")

    registration_count = await count_registrations(db, event.id)
    remaining = None
    if event.reg_limit is not None:
        remaining = max(event.reg_limit - registration_count, 0)
    return event, registration_count, remaining
