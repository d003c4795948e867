"""
working_hours.py
----------------
WorkingHoursRegistry: resolves a staff member's open intervals for a date.

Resolution order for one date:
1) weekly template rows for that weekday (staff.WorkingHours)
2) if any exception rows exist for that exact date (staff.WorkingHoursException),
   they replace the template entirely; a closed marker yields no intervals.

Intervals are returned as timezone-aware datetimes in the staff member's own
timezone, ordered by start. The registry never writes.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone as dt_timezone
from typing import Dict, Iterator, List, Tuple, Union

from booking.exceptions import NotFoundError
from booking.models import Staff

from .models import WorkingHours, WorkingHoursException


@dataclass(frozen=True)
class OpenInterval:
    start: datetime
    end: datetime

    def contains(self, start: datetime, end: datetime) -> bool:
        # Same-zone comparisons ignore fold; compare instants instead.
        utc = dt_timezone.utc
        return (
            self.start.astimezone(utc) <= start.astimezone(utc)
            and end.astimezone(utc) <= self.end.astimezone(utc)
        )


def _combine(day: date, wall_clock, tz) -> datetime:
    # fold=0: ambiguous/non-existent local times resolve to the pre-transition offset
    return datetime.combine(day, wall_clock, tzinfo=tz)


class WorkingHoursRegistry:
    def get_staff(self, staff: Union[Staff, int]) -> Staff:
        if isinstance(staff, Staff):
            return staff
        try:
            return Staff.objects.get(pk=staff)
        except Staff.DoesNotExist:
            raise NotFoundError(f"Staff {staff} not found.") from None

    def intervals_for(self, staff: Union[Staff, int], day: date) -> List[OpenInterval]:
        """Open intervals for one local date."""
        for _day, intervals in self.intervals_between(staff, day, day):
            return intervals
        return []

    def intervals_between(
        self,
        staff: Union[Staff, int],
        start_date: date,
        end_date: date,
    ) -> Iterator[Tuple[date, List[OpenInterval]]]:
        """
        Yield (date, intervals) for every date in [start_date, end_date].
        Loads the template and the exceptions in the range once.
        """
        staff = self.get_staff(staff)
        tz = staff.tz

        template: Dict[int, List[WorkingHours]] = {}
        for row in WorkingHours.objects.filter(staff=staff).order_by("weekday", "start_time"):
            template.setdefault(row.weekday, []).append(row)

        overrides: Dict[date, List[WorkingHoursException]] = {}
        exceptions = WorkingHoursException.objects.filter(
            staff=staff,
            date__gte=start_date,
            date__lte=end_date,
        ).order_by("date", "start_time")
        for row in exceptions:
            overrides.setdefault(row.date, []).append(row)

        day = start_date
        while day <= end_date:
            if day in overrides:
                rows = [r for r in overrides[day] if not r.is_closed]
            else:
                rows = template.get(day.weekday(), [])

            intervals = [
                OpenInterval(_combine(day, r.start_time, tz), _combine(day, r.end_time, tz))
                for r in rows
            ]
            intervals.sort(key=lambda iv: iv.start)
            yield day, intervals
            day += timedelta(days=1)

    def is_within_hours(self, staff: Union[Staff, int], start: datetime, end: datetime) -> bool:
        """True when [start, end] lies inside a single open interval of start's local date."""
        staff = self.get_staff(staff)
        local_start = start.astimezone(staff.tz)
        local_end = end.astimezone(staff.tz)
        return any(
            iv.contains(local_start, local_end)
            for iv in self.intervals_for(staff, local_start.date())
        )
