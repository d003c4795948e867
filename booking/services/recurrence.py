"""
recurrence.py
-------------
Expands a recurring-appointment request into independent bookings.

RecurrenceRule:
- start: aware datetime of the first occurrence
- unit: daily | weekly | monthly, every `interval` units
- exactly one of `count` (number of occurrences) or `until` (aware, inclusive)

Expansion keeps the local wall-clock time of `start` in the given timezone
(09:00 stays 09:00 across a DST change). Monthly steps are computed from the
first occurrence with relativedelta, so Jan 31 -> Feb 28/29 -> Mar 31.
A rule that would produce more than SCHEDULING["MAX_RECURRENCE_OCCURRENCES"]
occurrences is rejected up front instead of being cut short.

book_series() submits each occurrence to BookingManager.attempt_book on its
own; one failure never aborts the rest and every outcome is reported.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterator, List, Optional

from dateutil.relativedelta import relativedelta
from django.db import models
from django.utils import timezone

from booking.models import Staff

from ..conf import engine_setting
from ..exceptions import BusyError, ConflictError, InvalidRequestError, SchedulingError

logger = logging.getLogger(__name__)


class RecurrenceUnit(models.TextChoices):
    DAILY = "daily", "Daily"
    WEEKLY = "weekly", "Weekly"
    MONTHLY = "monthly", "Monthly"


_STEP = {
    RecurrenceUnit.DAILY: lambda n: relativedelta(days=n),
    RecurrenceUnit.WEEKLY: lambda n: relativedelta(weeks=n),
    RecurrenceUnit.MONTHLY: lambda n: relativedelta(months=n),
}


@dataclass(frozen=True)
class RecurrenceRule:
    start: datetime
    unit: RecurrenceUnit
    interval: int = 1
    count: Optional[int] = None
    until: Optional[datetime] = None

    def __post_init__(self):
        if timezone.is_naive(self.start):
            raise InvalidRequestError("Recurrence start must be timezone-aware.")
        try:
            object.__setattr__(self, "unit", RecurrenceUnit(self.unit))
        except ValueError:
            raise InvalidRequestError(f"Unknown recurrence unit: {self.unit!r}") from None
        if self.interval < 1:
            raise InvalidRequestError("Recurrence interval must be at least 1.")
        if (self.count is None) == (self.until is None):
            raise InvalidRequestError("Provide exactly one of count or until.")
        if self.count is not None and self.count < 1:
            raise InvalidRequestError("Recurrence count must be at least 1.")
        if self.until is not None:
            if timezone.is_naive(self.until):
                raise InvalidRequestError("Recurrence until must be timezone-aware.")
            if self.until < self.start:
                raise InvalidRequestError("Recurrence until must not be before start.")


class RecurrenceExpander:
    def expand(self, rule: RecurrenceRule, tz=None) -> Iterator[datetime]:
        """
        Lazily yield occurrence start times (aware, in `tz` or the rule's own zone).

        Raises InvalidRequestError immediately, before anything is yielded,
        when the rule has more occurrences than the configured cap.
        """
        local = rule.start.astimezone(tz) if tz is not None else rule.start
        tzinfo = local.tzinfo
        wall_clock = local.replace(tzinfo=None)
        step = _STEP[rule.unit]
        cap = int(engine_setting("MAX_RECURRENCE_OCCURRENCES"))

        if rule.count is not None:
            if rule.count > cap:
                raise InvalidRequestError(f"A series may have at most {cap} occurrences; {rule.count} requested.")
            limit = rule.count
        else:
            beyond_cap = (wall_clock + step(cap * rule.interval)).replace(tzinfo=tzinfo)
            if beyond_cap <= rule.until:
                raise InvalidRequestError(f"A series may have at most {cap} occurrences; shorten 'until'.")
            limit = cap
        return self._occurrences(wall_clock, tzinfo, step, rule, limit)

    @staticmethod
    def _occurrences(wall_clock, tzinfo, step, rule, limit):
        for i in range(limit):
            occurrence = (wall_clock + step(i * rule.interval)).replace(tzinfo=tzinfo)
            if rule.until is not None and occurrence > rule.until:
                return
            yield occurrence


@dataclass
class OccurrenceResult:
    start: datetime
    appointment: Optional[object] = None
    error: Optional[SchedulingError] = None

    @property
    def ok(self) -> bool:
        return self.appointment is not None

    @property
    def reason(self) -> Optional[str]:
        if isinstance(self.error, ConflictError):
            return self.error.reason.value
        if self.error is not None:
            return type(self.error).__name__
        return None


@dataclass
class SeriesResult:
    series_id: uuid.UUID
    occurrences: List[OccurrenceResult] = field(default_factory=list)

    @property
    def succeeded(self) -> List[OccurrenceResult]:
        return [o for o in self.occurrences if o.ok]

    @property
    def failed(self) -> List[OccurrenceResult]:
        return [o for o in self.occurrences if not o.ok]

    @property
    def partial(self) -> bool:
        return bool(self.succeeded) and bool(self.failed)


def book_series(manager, business, staff, service, customer, rule: RecurrenceRule, *, notes: str = "") -> SeriesResult:
    """
    Book every occurrence of `rule` independently through `manager`.

    Conflict, busy and per-occurrence validation errors are captured on the
    occurrence; NotFoundError (bad references) is raised before anything is booked.
    """
    business_id = manager.resolve_business(business)
    staff = manager.resolve_owned(Staff, staff, business_id)
    result = SeriesResult(series_id=uuid.uuid4())

    for start in RecurrenceExpander().expand(rule, tz=staff.tz):
        try:
            appointment = manager.attempt_book(
                business_id, staff, service, customer, start,
                notes=notes, series_id=result.series_id,
            )
        except (ConflictError, BusyError, InvalidRequestError) as exc:
            logger.info("Series %s: occurrence %s not booked (%r)", result.series_id, start.isoformat(), exc)
            result.occurrences.append(OccurrenceResult(start=start, error=exc))
        else:
            result.occurrences.append(OccurrenceResult(start=start, appointment=appointment))

    logger.info(
        "Series %s: %d booked, %d failed",
        result.series_id, len(result.succeeded), len(result.failed),
    )
    return result
