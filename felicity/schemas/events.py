from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field

from felicity.services.event_status import compute_display_status, compute_registration_status

EventTypeLiteral = Literal["normal", "merchandise"]
EligibilityLiteral = Literal["internal", "external", "both"]
CategoryLiteral = Literal[
    "tech", "sports", "design", "dance", "music", "quiz", "concert", "gaming", "misc"
]


class CustomFieldIn(BaseModel):
    label: str = Field(min_length=1, max_length=120)
    field_type: Literal["text", "textarea", "number", "dropdown", "checkbox", "file"] = "text"
    required: bool = False
    options: list[str] = Field(default_factory=list)


class MerchVariantIn(BaseModel):
    label: str = Field(min_length=1, max_length=120)
    stock: int = Field(ge=0)


class MerchItemIn(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    purchase_limit: int = Field(default=1, ge=1)
    variants: list[MerchVariantIn] = Field(default_factory=list)


class EventDraftIn(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    event_type: EventTypeLiteral

    description: Optional[str] = None
    fee: int = Field(default=0, ge=0)
    category: Optional[CategoryLiteral] = None
    eligibility: Optional[EligibilityLiteral] = None

    registration_deadline: Optional[datetime] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    reg_limit: Optional[int] = Field(default=None, ge=1)
    tags: list[str] = Field(default_factory=list)
    custom_form: list[CustomFieldIn] = Field(default_factory=list)
    merch_items: list[MerchItemIn] = Field(default_factory=list)


class EventUpdateIn(BaseModel):
    """Partial update; only the fields actually sent are applied."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    event_type: Optional[EventTypeLiteral] = None
    description: Optional[str] = None
    fee: Optional[int] = Field(default=None, ge=0)
    category: Optional[CategoryLiteral] = None
    eligibility: Optional[EligibilityLiteral] = None

    registration_deadline: Optional[datetime] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    reg_limit: Optional[int] = Field(default=None, ge=1)
    tags: Optional[list[str]] = None
    custom_form: Optional[list[CustomFieldIn]] = None
    merch_items: Optional[list[MerchItemIn]] = None


class EventStatusIn(BaseModel):
    status: Optional[Literal["published", "ongoing", "completed", "closed"]] = None
    registration_status: Optional[Literal["open", "closed"]] = None


class MerchVariantOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    label: str
    stock: int


class MerchItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    purchase_limit: int
    variants: list[MerchVariantOut] = Field(default_factory=list)


class EventOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    organiser_id: int
    status: str
    published_at: Optional[datetime] = None

    name: str
    description: Optional[str] = None
    event_type: str
    fee: int = 0
    category: Optional[str] = None
    eligibility: Optional[str] = None

    registration_deadline: Optional[datetime] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    reg_limit: Optional[int] = None
    registration_manually_closed: bool = False
    tags: list[str] = Field(default_factory=list)
    custom_form: list[dict] = Field(default_factory=list)
    merch_items: list[MerchItemOut] = Field(default_factory=list)

    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_event(cls, event, **extra):
        data = EventOut.model_validate(event).model_dump()
        return cls.model_validate({**data, **extra})

    @computed_field
    @property
    def display_status(self) -> str:
        return compute_display_status(self)

    @computed_field
    @property
    def registration_status(self) -> str:
        return compute_registration_status(self)


class EventAnalyticsOut(BaseModel):
    registrations: int = 0
    sales: int = 0
    revenue: int = 0
    attendance: int = 0
    team_completion: int = 0


class OrganiserEventOut(EventOut):
    analytics: EventAnalyticsOut


class PublicEventOut(EventOut):
    organiser_name: Optional[str] = None
    registration_count: int = 0
    remaining_spots: Optional[int] = None


class DashboardAnalyticsOut(EventAnalyticsOut):
    event_id: int
    name: str
    status: str


class OrganiserDashboardOut(BaseModel):
    events: list[EventOut] = Field(default_factory=list)
    analytics: list[DashboardAnalyticsOut] = Field(default_factory=list)


class ParticipantRowOut(BaseModel):
    id: int
    name: str
    email: str
    registered_at: datetime
    payment: str
    team: str = ""
    attendance: bool = False
    attendance_marked_at: Optional[datetime] = None
    status: str
    type: str
