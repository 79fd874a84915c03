from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class ForumMessageIn(BaseModel):
    # Length is checked after trimming, by the forum service
    content: str
    parent_message_id: Optional[int] = None
    is_announcement: bool = False


class ReactIn(BaseModel):
    emoji: str


class ReactionOut(BaseModel):
    emoji: str
    count: int
    reacted: bool


class ForumMessageOut(BaseModel):
    id: int
    event_id: int
    author_user_id: int
    author_role: str
    author_name: str
    content: str
    is_pinned: bool
    is_announcement: bool
    is_deleted: bool
    parent_message_id: Optional[int] = None
    created_at: datetime
    updated_at: datetime
    reactions: list[ReactionOut] = Field(default_factory=list)


class ForumPermissionsOut(BaseModel):
    can_moderate: bool
    can_announce: bool
    can_participate: bool


class ForumListOut(BaseModel):
    messages: list[ForumMessageOut]
    permissions: ForumPermissionsOut
    allowed_reactions: list[str]


class ForumMessageEnvelope(BaseModel):
    message: ForumMessageOut


class ForumThreadOut(BaseModel):
    messages: list[ForumMessageOut]
