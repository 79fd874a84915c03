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
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from felicity.core.db import Base, BigIntPK
from felicity.core.timeutil import utcnow


class ForumMessage(Base):
    __tablename__ = "forum_messages"
    __table_args__ = (
        CheckConstraint(
            "author_role IN ('participant','organiser','admin')",
            name="forum_messages_role_check",
        ),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    event_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )

    author_user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    author_role: Mapped[str] = mapped_column(String(16), nullable=False)
    # Snapshot taken at post time, never re-resolved
    author_name: Mapped[str] = mapped_column(String(120), nullable=False)

    content: Mapped[str] = mapped_column(Text, nullable=False, default="")

    parent_message_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("forum_messages.id", ondelete="CASCADE"), nullable=True
    )

    is_pinned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_announcement: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    deleted_by_user_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    reactions: Mapped[List["ForumReaction"]] = relationship(
        "ForumReaction",
        cascade="all, delete-orphan",
        order_by="ForumReaction.id",
        lazy="selectin",
    )


class ForumReaction(Base):
    __tablename__ = "forum_reactions"
    __table_args__ = (
        UniqueConstraint("message_id", "user_id", "emoji", name="uq_forum_reactions_user_emoji"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    message_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("forum_messages.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    emoji: Mapped[str] = mapped_column(String(16), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


Index("ix_forum_messages_event_created", ForumMessage.event_id, ForumMessage.created_at)
Index("ix_forum_messages_event_parent", ForumMessage.event_id, ForumMessage.parent_message_id)
