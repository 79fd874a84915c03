from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from felicity.core.errors import BusinessRuleError, NotFound, ValidationFailed
from felicity.core.timeutil import utcnow
from felicity.models.event import Event
from felicity.models.profiles import Organiser, Participant
from felicity.models.registration import Registration, Ticket
from felicity.models.user import User

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = ("registered", "purchased")


def parse_qr_payload(payload: str) -> dict:
    """Accept the JSON payload encoded in the QR code or a bare ticket code."""
    try:
        parsed = json.loads(payload)
    except (TypeError, ValueError):
        parsed = None

    if not isinstance(parsed, dict):
        return {"event_id": None, "participant_id": None, "ticket_code": str(payload).strip() or None}

    def _s(key: str) -> Optional[str]:
        value = parsed.get(key)
        return str(value) if value else None

    return {
        "event_id": _s("eventId"),
        "participant_id": _s("participantId"),
        "ticket_code": _s("ticketCode"),
    }


def _log_entry(action: str, organiser: Organiser, method: str, note: str, at: datetime) -> dict:
    return {
        "action": action,
        "at": at.isoformat(),
        "by": organiser.id,
        "method": method,
        "note": note,
    }


async def scan_attendance(
    db: AsyncSession,
    organiser: Organiser,
    event: Event,
    payload: str,
    now: Optional[datetime] = None,
) -> dict:
    now = now or utcnow()
    ticket_payload = parse_qr_payload(payload)
    if not ticket_payload["ticket_code"]:
        raise ValidationFailed("Unable to parse ticket data")
    if ticket_payload["event_id"] and ticket_payload["event_id"] != str(event.id):
        raise ValidationFailed("Ticket does not belong to this event")

    try:
        res = await db.execute(
            select(Ticket).where(
                Ticket.ticket_code == ticket_payload["ticket_code"],
                Ticket.event_id == event.id,
                Ticket.status == "active",
            )
        )
        ticket = res.scalar_one_or_none()
        if ticket is None:
            raise NotFound("Ticket not found or inactive")

        res = await db.execute(
            select(Registration)
            .where(
                Registration.event_id == event.id,
                Registration.ticket_id == ticket.id,
                Registration.status.in_(ACTIVE_STATUSES),
            )
            .with_for_update()
        )
        registration = res.scalar_one_or_none()
        if registration is None:
            raise NotFound("Registration not found for ticket")

        if registration.attendance:
            registration.attendance_logs = [
                *(registration.attendance_logs or []),
                _log_entry("scan_duplicate", organiser, "scan", "Duplicate scan rejected", now),
            ]
            await db.commit()
            raise BusinessRuleError("Duplicate scan: attendance already marked")

        registration.attendance = True
        registration.attendance_marked_at = now
        registration.attendance_method = "scan"
        registration.attendance_marked_by = organiser.id
        registration.attendance_logs = [
            *(registration.attendance_logs or []),
            _log_entry("scan_success", organiser, "scan", "Attendance marked from QR scan", now),
        ]
        await db.commit()

    except BusinessRuleError:
        raise
    except Exception:
        await db.rollback()
        raise

    logger.info("event=%s attendance scanned ticket=%s", event.id, ticket.ticket_code)
    return {
        "registration_id": registration.id,
        "ticket_code": ticket.ticket_code,
        "marked_at": registration.attendance_marked_at,
    }


async def manual_attendance(
    db: AsyncSession,
    organiser: Organiser,
    event: Event,
    registration_id: int,
    attendance: bool,
    note: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Registration:
    now = now or utcnow()
    try:
        res = await db.execute(
            select(Registration)
            .where(
                Registration.id == registration_id,
                Registration.event_id == event.id,
                Registration.status.in_(ACTIVE_STATUSES),
            )
            .with_for_update()
        )
        registration = res.scalar_one_or_none()
        if registration is None:
            raise NotFound("Registration not found")

        registration.attendance = attendance
        registration.attendance_marked_at = now if attendance else None
        registration.attendance_method = "manual"
        registration.attendance_marked_by = organiser.id
        registration.attendance_logs = [
            *(registration.attendance_logs or []),
            _log_entry(
                "manual_override",
                organiser,
                "manual",
                note or ("Marked present manually" if attendance else "Marked absent manually"),
                now,
            ),
        ]
        await db.commit()
        await db.refresh(registration)
        return registration

    except Exception:
        await db.rollback()
        raise


async def attendance_summary(db: AsyncSession, event: Event) -> dict:
    res = await db.execute(
        select(Registration, Participant, User.email)
        .join(Participant, Participant.id == Registration.participant_id)
        .join(User, User.id == Participant.user_id)
        .where(Registration.event_id == event.id, Registration.status.in_(ACTIVE_STATUSES))
        .order_by(Registration.created_at.desc(), Registration.id.desc())
    )

    rows = []
    for registration, participant, email in res.all():
        rows.append(
            {
                "registration_id": registration.id,
                "participant_name": participant.full_name or "Unknown",
                "participant_email": email or "",
                "ticket_code": registration.ticket.ticket_code if registration.ticket else "",
                "attendance": registration.attendance,
                "attendance_marked_at": registration.attendance_marked_at,
                "attendance_method": registration.attendance_method,
                "status": registration.status,
            }
        )

    scanned = sum(1 for r in rows if r["attendance"])
    return {
        "total": len(rows),
        "scanned": scanned,
        "not_scanned": max(len(rows) - scanned, 0),
        "attendees": rows,
    }
