"""Derived event statuses.

Display status and registration status are pure functions of the stored
status, the schedule and the current time. They are recomputed on every read
and never persisted.
"""

from __future__ import annotations

from datetime import datetime

from felicity.core.timeutil import utcnow
from felicity.models.event import Event

# Stored statuses that are shown as-is regardless of the clock
_FIXED_DISPLAY_STATUSES = ("draft", "completed", "closed")


def compute_display_status(event: Event | None, now: datetime | None = None) -> str:
    if event is None:
        return "draft"

    if event.status in _FIXED_DISPLAY_STATUSES:
        return event.status

    now = now or utcnow()
    start, end = event.start_time, event.end_time

    if start is not None and end is not None and start <= now <= end:
        return "ongoing"
    if end is not None and now > end:
        return "closed"
    return "published"


def compute_registration_status(event: Event | None, now: datetime | None = None) -> str:
    if event is None:
        return "closed"

    now = now or utcnow()
    display = compute_display_status(event, now)
    if display in ("draft", "closed") or event.status == "completed":
        return "closed"

    if event.registration_manually_closed:
        return "closed"

    deadline = event.registration_deadline
    if deadline is not None and deadline < now:
        return "closed"

    return "open"


def is_registration_closed(event: Event | None, now: datetime | None = None) -> bool:
    return compute_registration_status(event, now) == "closed"
