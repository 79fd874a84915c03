from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    String,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from felicity.core.db import Base, BigIntPK, JSONDoc
from felicity.core.timeutil import utcnow

REGISTRATION_STATUSES = ("registered", "purchased", "cancelled")
INACTIVE_REGISTRATION_STATUSES = ("cancelled", "rejected")


class Ticket(Base):
    __tablename__ = "tickets"
    __table_args__ = (
        CheckConstraint("status IN ('active','cancelled')", name="tickets_status_check"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    event_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True
    )
    participant_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("participants.id", ondelete="CASCADE"), nullable=False
    )

    ticket_code: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    # JSON {eventId, participantId, ticketCode}, rendered as a QR code by clients
    qr_data: Mapped[str] = mapped_column(String(512), nullable=False)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active")
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


class Registration(Base):
    __tablename__ = "registrations"
    __table_args__ = (
        CheckConstraint("type IN ('normal','merchandise')", name="registrations_type_check"),
        CheckConstraint(
            "status IN ('registered','purchased','cancelled')",
            name="registrations_status_check",
        ),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    event_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True
    )
    participant_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("participants.id", ondelete="CASCADE"), nullable=False, index=True
    )
    ticket_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("tickets.id"), unique=True, nullable=False
    )

    type: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="registered")

    # normal: answers to the custom form, keyed by field label
    form_data: Mapped[Optional[dict]] = mapped_column(JSONDoc, nullable=True)
    # merchandise: [{item_name, variant_label, quantity}] captured at purchase time
    order_items: Mapped[list] = mapped_column(JSONDoc, nullable=False, default=list)

    attendance: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    attendance_marked_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    attendance_method: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    attendance_marked_by: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("organisers.id", ondelete="SET NULL"), nullable=True
    )
    attendance_logs: Mapped[list] = mapped_column(JSONDoc, nullable=False, default=list)

    team_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    ticket = relationship("Ticket", lazy="selectin")


# At most one live normal registration per (event, participant)
Index(
    "uq_registrations_active_normal",
    Registration.event_id,
    Registration.participant_id,
    unique=True,
    postgresql_where=text("type = 'normal' AND status <> 'cancelled'"),
    sqlite_where=text("type = 'normal' AND status <> 'cancelled'"),
)
