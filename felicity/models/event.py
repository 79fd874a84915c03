from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from felicity.core.db import Base, BigIntPK, JSONDoc
from felicity.core.timeutil import utcnow

EVENT_STATUSES = ("draft", "published", "ongoing", "completed", "closed")
EVENT_TYPES = ("normal", "merchandise")
ELIGIBILITIES = ("internal", "external", "both")
CATEGORIES = ("tech", "sports", "design", "dance", "music", "quiz", "concert", "gaming", "misc")

# Must be populated once an event leaves draft
REQUIRED_WHEN_PUBLISHED = (
    "description",
    "category",
    "eligibility",
    "registration_deadline",
    "start_time",
    "end_time",
    "reg_limit",
)


class Event(Base):
    __tablename__ = "events"
    __table_args__ = (
        CheckConstraint(
            "status IN ('draft','published','ongoing','completed','closed')",
            name="events_status_check",
        ),
        CheckConstraint("event_type IN ('normal','merchandise')", name="events_type_check"),
        CheckConstraint("fee >= 0", name="events_fee_check"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)

    organiser_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("organisers.id", ondelete="CASCADE"), nullable=False, index=True
    )

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="draft")
    published_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    event_type: Mapped[str] = mapped_column(String(16), nullable=False)
    fee: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    category: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    eligibility: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)

    registration_deadline: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    start_time: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    end_time: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    reg_limit: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    registration_manually_closed: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )

    tags: Mapped[list] = mapped_column(JSONDoc, nullable=False, default=list)

    # [{label, field_type, required, options}] - locked after the first registration
    custom_form: Mapped[list] = mapped_column(JSONDoc, nullable=False, default=list)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    merch_items: Mapped[List["MerchItem"]] = relationship(
        "MerchItem",
        back_populates="event",
        cascade="all, delete-orphan",
        order_by="MerchItem.position",
        lazy="selectin",
    )


class MerchItem(Base):
    __tablename__ = "merch_items"
    __table_args__ = (
        CheckConstraint("purchase_limit >= 1", name="merch_items_limit_check"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    event_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    purchase_limit: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    event = relationship("Event", back_populates="merch_items")
    variants: Mapped[List["MerchVariant"]] = relationship(
        "MerchVariant",
        back_populates="item",
        cascade="all, delete-orphan",
        order_by="MerchVariant.position",
        lazy="selectin",
    )


class MerchVariant(Base):
    __tablename__ = "merch_variants"
    __table_args__ = (
        CheckConstraint("stock >= 0", name="merch_variants_stock_check"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    item_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("merch_items.id", ondelete="CASCADE"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    label: Mapped[str] = mapped_column(String(120), nullable=False)
    # Only ever decremented by purchases
    stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    item = relationship("MerchItem", back_populates="variants")


Index("ix_merch_variants_item_position", MerchVariant.item_id, MerchVariant.position)
