"""
events.py
---------
Payloads for the engine's outbound events.

Each event carries business/staff/service/customer identifiers and the affected
interval so a notification collaborator can render a message and an analytics
collaborator can record it without reading the engine's tables.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class AppointmentConfirmed:
    business_id: int
    staff_id: int
    service_id: int
    customer_id: int
    appointment_id: int
    start: datetime
    end: datetime
    series_id: Optional[str] = None


@dataclass(frozen=True)
class AppointmentCancelled:
    business_id: int
    staff_id: int
    service_id: int
    customer_id: int
    appointment_id: int
    start: datetime
    end: datetime
    cancelled_by: str = ""
    rescheduled_to: Optional[int] = None
    cancellation_policy: dict = field(default_factory=dict)


@dataclass(frozen=True)
class SlotFreed:
    business_id: int
    staff_id: int
    service_id: int
    start: datetime
    end: datetime
    appointment_id: Optional[int] = None


@dataclass(frozen=True)
class WaitlistPromoted:
    business_id: int
    staff_id: int
    service_id: int
    customer_id: int
    entry_id: int
    appointment_id: int
    start: datetime
    end: datetime
