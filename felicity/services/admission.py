"""Registration and merchandise purchase admission.

Every admission for one event runs inside that event's lock and inside one
transaction: all checks happen first, then stock is decremented with a
conditional update and the ticket and registration are written together.
Any failure rolls the whole transaction back.
"""

from __future__ import annotations

import asyncio
import json
import logging
import secrets
import weakref
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from felicity.core.errors import (
    BusinessRuleError,
    FelicityError,
    Forbidden,
    NotFound,
    ValidationFailed,
)
from felicity.core.timeutil import utcnow
from felicity.models.event import Event, MerchItem, MerchVariant
from felicity.models.profiles import Participant
from felicity.models.registration import Registration, Ticket
from felicity.services.profiles import get_participant

logger = logging.getLogger(__name__)


class EventLocks:
    """Process-local lock per event id, released for collection when unused."""

    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[int, asyncio.Lock] = weakref.WeakValueDictionary()

    def for_event(self, event_id: int) -> asyncio.Lock:
        lock = self._locks.get(event_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[event_id] = lock
        return lock


event_locks = EventLocks()


@dataclass(frozen=True)
class OrderLine:
    item_name: str
    variant_label: str
    quantity: int = 1

    def as_dict(self) -> dict:
        return {
            "item_name": self.item_name,
            "variant_label": self.variant_label,
            "quantity": self.quantity,
        }


def _generate_ticket_code() -> str:
    return f"TKT-{secrets.token_hex(6).upper()}"


async def _new_ticket(db: AsyncSession, event_id: int, participant_id: int) -> Ticket:
    code: Optional[str] = None

    # Pre-check for collisions instead of relying on a mid-transaction IntegrityError
    for _attempt in range(20):
        candidate = _generate_ticket_code()
        exists = await db.execute(select(Ticket.id).where(Ticket.ticket_code == candidate))
        if exists.scalar_one_or_none() is None:
            code = candidate
            break

    if code is None:
        raise RuntimeError("Failed to generate unique ticket code.")

    qr_data = json.dumps(
        {"eventId": str(event_id), "participantId": str(participant_id), "ticketCode": code}
    )
    ticket = Ticket(
        event_id=event_id,
        participant_id=participant_id,
        ticket_code=code,
        qr_data=qr_data,
        status="active",
    )
    db.add(ticket)
    await db.flush()
    return ticket


async def _load_event_locked(db: AsyncSession, event_id: int) -> Event:
    res = await db.execute(
        select(Event)
        .where(Event.id == event_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    event = res.scalar_one_or_none()
    if event is None:
        raise NotFound("Event not found")
    return event


def _ensure_open(event: Event, now: datetime, noun: str) -> None:
    if event.status in ("draft", "closed", "completed"):
        raise BusinessRuleError(f"{noun} is closed for this event")
    if event.registration_manually_closed:
        raise BusinessRuleError(f"{noun} is closed for this event")
    if event.registration_deadline is not None and now > event.registration_deadline:
        raise BusinessRuleError("Registration deadline has passed")


def _ensure_eligible(event: Event, participant: Participant) -> None:
    if event.eligibility != "both" and participant.participant_type != event.eligibility:
        raise Forbidden("Not eligible for this event")


def validate_form_submission(custom_form: list, form_data: dict) -> None:
    """Required custom-form fields must be present and non-blank."""
    for field in custom_form or []:
        if not field.get("required"):
            continue
        label = field.get("label")
        value = form_data.get(label)
        if value is None or str(value).strip() == "":
            raise ValidationFailed(f"{label} is required")


async def register_for_event(
    db: AsyncSession,
    user_id: int,
    event_id: int,
    form_data: Optional[dict] = None,
    now: Optional[datetime] = None,
) -> Registration:
    now = now or utcnow()
    form_data = dict(form_data or {})

    async with event_locks.for_event(event_id):
        try:
            event = await _load_event_locked(db, event_id)
            if event.event_type != "normal":
                raise BusinessRuleError("Not a normal event")
            _ensure_open(event, now, "Registration")

            participant = await get_participant(db, user_id)
            _ensure_eligible(event, participant)

            # Counts every registration ever made, cancelled ones included
            res = await db.execute(
                select(func.count())
                .select_from(Registration)
                .where(Registration.event_id == event.id)
            )
            if event.reg_limit is not None and int(res.scalar_one()) >= event.reg_limit:
                raise BusinessRuleError("Registration limit reached")

            res = await db.execute(
                select(Registration.id).where(
                    Registration.event_id == event.id,
                    Registration.participant_id == participant.id,
                    Registration.type == "normal",
                    Registration.status != "cancelled",
                )
            )
            if res.first() is not None:
                raise BusinessRuleError("Already registered")

            validate_form_submission(event.custom_form, form_data)

            ticket = await _new_ticket(db, event.id, participant.id)
            registration = Registration(
                event_id=event.id,
                participant_id=participant.id,
                ticket_id=ticket.id,
                type="normal",
                status="registered",
                form_data=form_data,
                order_items=[],
            )
            db.add(registration)

            await db.commit()
            await db.refresh(registration)

        except FelicityError as e:
            await db.rollback()
            logger.info("event=%s registration rejected user=%s: %s", event_id, user_id, e)
            raise
        except Exception:
            await db.rollback()
            raise

    logger.info(
        "participant=%s registered for event=%s ticket=%s",
        participant.id, event.id, ticket.ticket_code,
    )
    return registration


def _resolve_lines(event: Event, lines: Iterable[OrderLine]) -> dict[int, tuple[MerchVariant, int, str]]:
    """Validate every line against the catalog before anything is written.

    Returns requested quantity per variant id. Lines naming the same variant
    are summed so stock is checked against the combined request.
    """
    items: dict[str, MerchItem] = {item.name: item for item in event.merch_items}
    per_variant: dict[int, tuple[MerchVariant, int, str]] = {}
    per_item: dict[str, int] = {}

    for line in lines:
        if line.quantity < 1:
            raise ValidationFailed("Quantity must be at least 1")

        item = items.get(line.item_name)
        if item is None:
            raise ValidationFailed(f"Item not found: {line.item_name}")

        variant = next((v for v in item.variants if v.label == line.variant_label), None)
        if variant is None:
            raise ValidationFailed(f"Variant not found: {line.variant_label}")

        per_item[item.name] = per_item.get(item.name, 0) + line.quantity
        if per_item[item.name] > (item.purchase_limit or 1):
            raise BusinessRuleError(f"Purchase limit exceeded for {item.name}")

        _, already, _ = per_variant.get(variant.id, (variant, 0, item.name))
        wanted = already + line.quantity
        if variant.stock < wanted:
            raise BusinessRuleError(f"Out of stock: {item.name}")
        per_variant[variant.id] = (variant, wanted, item.name)

    return per_variant


async def purchase_merchandise(
    db: AsyncSession,
    user_id: int,
    event_id: int,
    lines: list[OrderLine],
    now: Optional[datetime] = None,
) -> Registration:
    if not lines:
        raise ValidationFailed("At least one item is required")

    now = now or utcnow()

    async with event_locks.for_event(event_id):
        try:
            event = await _load_event_locked(db, event_id)
            if event.event_type != "merchandise":
                raise BusinessRuleError("Not a merchandise event")
            _ensure_open(event, now, "Purchasing")

            participant = await get_participant(db, user_id)
            _ensure_eligible(event, participant)

            requested = _resolve_lines(event, lines)

            # Decrement-with-floor: a concurrent writer that got there first makes this match nothing
            for variant_id, (variant, qty, item_name) in requested.items():
                res = await db.execute(
                    update(MerchVariant)
                    .where(MerchVariant.id == variant_id, MerchVariant.stock >= qty)
                    .values(stock=MerchVariant.stock - qty)
                    .execution_options(synchronize_session=False)
                )
                if res.rowcount != 1:
                    raise BusinessRuleError(f"Out of stock: {item_name}")
                await db.refresh(variant, attribute_names=["stock"])

            ticket = await _new_ticket(db, event.id, participant.id)
            registration = Registration(
                event_id=event.id,
                participant_id=participant.id,
                ticket_id=ticket.id,
                type="merchandise",
                status="purchased",
                form_data=None,
                order_items=[line.as_dict() for line in lines],
            )
            db.add(registration)

            await db.commit()
            await db.refresh(registration)

        except FelicityError as e:
            await db.rollback()
            logger.info("event=%s purchase rejected user=%s: %s", event_id, user_id, e)
            raise
        except Exception:
            await db.rollback()
            raise

    logger.info(
        "participant=%s purchased %s line(s) for event=%s ticket=%s",
        participant.id, len(lines), event.id, ticket.ticket_code,
    )
    return registration


async def cancel_registration(
    db: AsyncSession,
    user_id: int,
    registration_id: int,
    now: Optional[datetime] = None,
) -> Registration:
    now = now or utcnow()

    try:
        participant = await get_participant(db, user_id)

        res = await db.execute(
            select(Registration)
            .where(
                Registration.id == registration_id,
                Registration.participant_id == participant.id,
            )
            .with_for_update()
        )
        registration = res.scalar_one_or_none()
        if registration is None:
            raise NotFound("Registration not found")

        if registration.type != "normal":
            raise BusinessRuleError("Only event registrations can be cancelled here")
        if registration.status == "cancelled":
            raise BusinessRuleError("Registration is already cancelled")
        if registration.status != "registered":
            raise BusinessRuleError("Only active registrations can be cancelled")

        event = await db.get(Event, registration.event_id)
        if event is None:
            raise NotFound("Event not found for this registration")
        if event.start_time is not None and event.start_time <= now:
            raise BusinessRuleError("Cannot cancel after the event has started")

        registration.status = "cancelled"
        ticket = await db.get(Ticket, registration.ticket_id)
        if ticket is not None:
            ticket.status = "cancelled"

        await db.commit()
        await db.refresh(registration)

    except Exception:
        await db.rollback()
        raise

    logger.info("participant=%s cancelled registration=%s", participant.id, registration.id)
    return registration


async def list_my_registrations(db: AsyncSession, user_id: int) -> list[Registration]:
    participant = await get_participant(db, user_id)
    res = await db.execute(
        select(Registration)
        .where(Registration.participant_id == participant.id)
        .order_by(Registration.created_at.desc(), Registration.id.desc())
    )
    return list(res.scalars().all())


async def get_my_ticket(db: AsyncSession, user_id: int, ticket_id: int) -> Ticket:
    participant = await get_participant(db, user_id)
    res = await db.execute(
        select(Ticket).where(Ticket.id == ticket_id, Ticket.participant_id == participant.id)
    )
    ticket = res.scalar_one_or_none()
    if ticket is None:
        raise NotFound("Ticket not found")
    return ticket
