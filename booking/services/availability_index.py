"""
availability_index.py
---------------------
Read-optimized "slot -> free/occupied" projection per staff member.

A slot is occupied when its buffer-inclusive span
    [slot.start, slot.end + service.buffer)
intersects the buffer-inclusive span of a SCHEDULED appointment
    [appointment.start_time, appointment.blocked_until)
which is the same test BookingManager applies before committing.

Caching:
- One cache entry per (staff, service, local date), in the cache alias named by
  SCHEDULING["AVAILABILITY_CACHE_ALIAS"].
- Keys carry a per-staff epoch. invalidate() deletes the entries for every
  service of the staff member on each local date the interval touches, then
  bumps the epoch so a projection computed concurrently with the write can
  never be read back.
- Past slots and dates beyond the booking horizon are filtered on every read,
  so a cached day never leaks stale "now"-dependent results.

This is a projection: BookingManager never consults it to decide a commit.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Union

from django.core.cache import caches

from booking.models import Appointment, Business, Service, Staff
from staff.working_hours import WorkingHoursRegistry

from ..conf import engine_setting
from ..exceptions import InvalidRequestError, NotFoundError
from .clock import SystemClock
from .slot_generator import AvailabilitySlot, SlotGenerator, slots_in_intervals

logger = logging.getLogger(__name__)


def _cache():
    return caches[engine_setting("AVAILABILITY_CACHE_ALIAS")]


def _epoch_key(staff_id: int) -> str:
    return f"availability:epoch:{staff_id}"


def _day_key(staff_id: int, epoch: int, service_id: int, day: date) -> str:
    return f"availability:{staff_id}:{epoch}:{service_id}:{day.isoformat()}"


def _overlaps(start: datetime, block_end: datetime, appointments: List[Appointment]) -> bool:
    for appt in appointments:
        if appt.start_time < block_end and appt.blocked_until > start:
            return True
    return False


class AvailabilityIndex:
    def __init__(self, registry: Optional[WorkingHoursRegistry] = None, clock=None):
        self.registry = registry or WorkingHoursRegistry()
        self.clock = clock or SystemClock()
        self.generator = SlotGenerator(registry=self.registry, clock=self.clock)

    # -------------------- reads --------------------
    def query(
        self,
        staff: Union[Staff, int],
        service: Union[Service, int],
        start_date: date,
        end_date: date,
        business: Union[Business, int, None] = None,
    ) -> List[AvailabilitySlot]:
        staff, service = self._resolve(staff, service, business)
        if end_date < start_date:
            raise InvalidRequestError("end date must not be before start date.")
        max_days = int(engine_setting("MAX_QUERY_DAYS"))
        if (end_date - start_date).days + 1 > max_days:
            raise InvalidRequestError(f"Date range may cover at most {max_days} days.")

        now = self.clock.now()
        last = min(end_date, self.generator.horizon(staff, service))
        if last < start_date:
            return []

        days = self._load_days(staff, service, start_date, last)
        result = []
        for day in sorted(days):
            result.extend(slot for slot in days[day] if slot.start >= now)
        return result

    def free_slots(self, staff, service, start_date, end_date, business=None) -> List[AvailabilitySlot]:
        return [s for s in self.query(staff, service, start_date, end_date, business) if not s.occupied]

    def _load_days(self, staff: Staff, service: Service, start_date: date, end_date: date) -> Dict[date, List[AvailabilitySlot]]:
        cache = _cache()
        epoch = self._epoch(staff.pk)
        keys = {}
        day = start_date
        while day <= end_date:
            keys[day] = _day_key(staff.pk, epoch, service.pk, day)
            day += timedelta(days=1)

        cached = cache.get_many(list(keys.values()))
        days = {d: cached[k] for d, k in keys.items() if k in cached}
        missing = [d for d in keys if d not in days]
        if not missing:
            return days

        computed = self._project(staff, service, min(missing), max(missing))
        to_store = {}
        for d in missing:
            days[d] = computed.get(d, [])
            to_store[keys[d]] = days[d]
        cache.set_many(to_store, timeout=int(engine_setting("AVAILABILITY_CACHE_TTL")))
        logger.debug("Availability projected for staff %s service %s: %d day(s)", staff.pk, service.pk, len(missing))
        return days

    def _project(self, staff: Staff, service: Service, start_date: date, end_date: date) -> Dict[date, List[AvailabilitySlot]]:
        tz = staff.tz
        window_start = datetime.combine(start_date, datetime.min.time(), tzinfo=tz)
        window_end = datetime.combine(end_date + timedelta(days=1), datetime.min.time(), tzinfo=tz)
        appointments = list(
            Appointment.objects.filter(
                staff=staff,
                status=Appointment.SCHEDULED,
                start_time__lt=window_end + service.duration + service.buffer,
                blocked_until__gt=window_start,
            ).only("start_time", "blocked_until")
        )

        projection = {}
        for day, intervals in self.registry.intervals_between(staff, start_date, end_date):
            projection[day] = [
                slot.mark(_overlaps(slot.start, slot.end + service.buffer, appointments))
                for slot in slots_in_intervals(staff.pk, service, intervals)
            ]
        return projection

    # -------------------- invalidation --------------------
    def invalidate(self, staff: Union[Staff, int], start: datetime, end: datetime) -> None:
        """Drop every cached day touched by [start, end] for all of the staff member's services."""
        staff = self.registry.get_staff(staff)
        tz = staff.tz
        first = start.astimezone(tz).date() - timedelta(days=1)
        last = end.astimezone(tz).date()
        service_ids = list(staff.services.values_list("pk", flat=True))

        cache = _cache()
        epoch = self._epoch(staff.pk)
        keys = []
        day = first
        while day <= last:
            keys.extend(_day_key(staff.pk, epoch, sid, day) for sid in service_ids)
            day += timedelta(days=1)
        if keys:
            cache.delete_many(keys)
        self._bump_epoch(staff.pk)
        logger.debug("Availability invalidated for staff %s, %s..%s", staff.pk, first, last)

    def invalidate_staff(self, staff_id: int) -> None:
        """Drop every cached day for one staff member (working hours or service edits)."""
        self._bump_epoch(staff_id)

    def _epoch(self, staff_id: int) -> int:
        cache = _cache()
        key = _epoch_key(staff_id)
        epoch = cache.get(key)
        if epoch is None:
            cache.add(key, 1, timeout=None)
            epoch = cache.get(key, 1)
        return epoch

    def _bump_epoch(self, staff_id: int) -> None:
        cache = _cache()
        key = _epoch_key(staff_id)
        try:
            cache.incr(key)
        except ValueError:
            cache.add(key, 2, timeout=None)

    # -------------------- helpers --------------------
    def _resolve(self, staff, service, business):
        staff = self.registry.get_staff(staff)
        if not isinstance(service, Service):
            try:
                service = Service.objects.get(pk=service)
            except Service.DoesNotExist:
                raise NotFoundError(f"Service {service} not found.") from None

        business_id = business.pk if isinstance(business, Business) else business
        if business_id is not None and staff.business_id != business_id:
            raise NotFoundError(f"Staff {staff.pk} not found.")
        if service.business_id != staff.business_id:
            raise NotFoundError(f"Service {service.pk} not found.")
        if not staff.services.filter(pk=service.pk).exists():
            raise InvalidRequestError("This staff member does not perform the requested service.")
        return staff, service
