"""
slot_generator.py
-----------------
Derives candidate appointment slots for one staff member and one service.

Algorithm (per date, per open interval):
    cursor = interval.start
    while cursor + duration <= interval.end:
        emit [cursor, cursor + duration)
        cursor += duration + buffer

- Slots never span interval boundaries; a lunch break is two intervals.
- Dates after today + service.max_advance_days (staff-local "today") are
  excluded entirely.
- Slots that start before "now" are skipped.
- Arithmetic happens on aware datetimes in the staff member's timezone.

Example: Mon 09:00–12:00, 30 min service, 10 min buffer
    -> 09:00, 09:40, 10:20, 11:00   (11:40 would end 12:10, past close)
"""

from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from typing import Callable, Iterable, Iterator, Optional

from booking.models import Service, Staff
from staff.working_hours import OpenInterval, WorkingHoursRegistry

from .clock import SystemClock


@dataclass(frozen=True)
class AvailabilitySlot:
    staff_id: int
    service_id: int
    start: datetime
    end: datetime
    occupied: bool = False

    def mark(self, occupied: bool) -> "AvailabilitySlot":
        return replace(self, occupied=occupied)


class SlotSequence:
    """Lazy, finite and restartable: every iteration re-runs the factory."""

    def __init__(self, factory: Callable[[], Iterator[AvailabilitySlot]]):
        self._factory = factory

    def __iter__(self) -> Iterator[AvailabilitySlot]:
        return self._factory()


def slots_in_intervals(
    staff_id: int,
    service: Service,
    intervals: Iterable[OpenInterval],
    not_before: Optional[datetime] = None,
) -> Iterator[AvailabilitySlot]:
    duration = service.duration
    step = duration + service.buffer
    for interval in intervals:
        cursor = interval.start
        while cursor + duration <= interval.end:
            if not_before is None or cursor >= not_before:
                yield AvailabilitySlot(staff_id, service.pk, cursor, cursor + duration)
            cursor += step


class SlotGenerator:
    def __init__(self, registry: Optional[WorkingHoursRegistry] = None, clock=None):
        self.registry = registry or WorkingHoursRegistry()
        self.clock = clock or SystemClock()

    def horizon(self, staff: Staff, service: Service) -> date:
        """Last local date on which the service may be booked with this staff member."""
        return self.clock.today(staff.tz) + timedelta(days=service.max_advance_days)

    def generate(self, staff: Staff, service: Service, start_date: date, end_date: date) -> SlotSequence:
        return SlotSequence(lambda: self._iter_slots(staff, service, start_date, end_date))

    def _iter_slots(self, staff, service, start_date, end_date) -> Iterator[AvailabilitySlot]:
        now = self.clock.now()
        last = min(end_date, self.horizon(staff, service))
        if last < start_date:
            return
        for _day, intervals in self.registry.intervals_between(staff, start_date, last):
            yield from slots_in_intervals(staff.pk, service, intervals, not_before=now)
