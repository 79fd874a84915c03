from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class RegisterIn(BaseModel):
    # Answers keyed by custom-form field label
    form_data: dict[str, Any] = Field(default_factory=dict)


class OrderLineIn(BaseModel):
    item_name: str = Field(min_length=1)
    variant_label: str = Field(min_length=1)
    quantity: int = Field(default=1, ge=1)


class PurchaseIn(BaseModel):
    items: list[OrderLineIn] = Field(min_length=1)


class TicketOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    event_id: int
    participant_id: int
    ticket_code: str
    qr_data: str
    status: str
    created_at: datetime


class RegistrationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    event_id: int
    participant_id: int
    ticket_id: int
    type: str
    status: str

    form_data: Optional[dict] = None
    order_items: list[dict] = Field(default_factory=list)

    attendance: bool = False
    attendance_marked_at: Optional[datetime] = None
    team_completed: bool = False

    created_at: datetime
    ticket: Optional[TicketOut] = None


class AttendanceScanIn(BaseModel):
    # QR JSON payload or the bare ticket code
    payload: str = Field(min_length=1)


class AttendanceScanOut(BaseModel):
    registration_id: int
    ticket_code: str
    marked_at: datetime


class ManualAttendanceIn(BaseModel):
    registration_id: int
    attendance: bool
    note: Optional[str] = Field(default=None, max_length=500)


class AttendanceRowOut(BaseModel):
    registration_id: int
    participant_name: str
    participant_email: str
    ticket_code: str
    attendance: bool
    attendance_marked_at: Optional[datetime] = None
    attendance_method: Optional[str] = None
    status: str


class AttendanceSummaryOut(BaseModel):
    total: int = 0
    scanned: int = 0
    not_scanned: int = 0
    attendees: list[AttendanceRowOut] = Field(default_factory=list)
