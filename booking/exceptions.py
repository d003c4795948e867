"""
exceptions.py
-------------
Error kinds raised by the scheduling engine.

- NotFoundError: unknown (or other-business) staff/service/customer/appointment.
- ConflictError: the expected failure of a booking attempt; carries a reason so
  callers can say "slot no longer available" instead of a generic error.
- InvalidStateError: status transition not allowed from the current status.
- BusyError: the per-staff serialization scope could not be entered in time.
- InvalidRequestError: bad input shape (naive datetime, inactive service, ...).
"""

from django.db import models


class ConflictReason(models.TextChoices):
    SLOT_TAKEN = "SLOT_TAKEN", "Slot taken"
    OUTSIDE_WORKING_HOURS = "OUTSIDE_WORKING_HOURS", "Outside working hours"
    TOO_FAR_IN_ADVANCE = "TOO_FAR_IN_ADVANCE", "Too far in advance"


class SchedulingError(Exception):
    """Base class for every error the engine raises on purpose."""

    default_message = "Scheduling error."

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFoundError(SchedulingError):
    default_message = "Not found."


class InvalidRequestError(SchedulingError):
    default_message = "Invalid request."


class InvalidStateError(SchedulingError):
    default_message = "Operation not allowed for the current appointment status."


class BusyError(SchedulingError):
    default_message = "Staff calendar is busy, retry shortly."


class ConflictError(SchedulingError):
    MESSAGES = {
        ConflictReason.SLOT_TAKEN: "The requested time is no longer available.",
        ConflictReason.OUTSIDE_WORKING_HOURS: "The requested time is outside working hours.",
        ConflictReason.TOO_FAR_IN_ADVANCE: "The requested time is too far in advance.",
    }

    def __init__(self, reason: ConflictReason, message: str | None = None):
        self.reason = ConflictReason(reason)
        super().__init__(message or self.MESSAGES[self.reason])

    def __repr__(self):
        return f"ConflictError(reason={self.reason.value!r})"
