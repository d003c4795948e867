# staff/tests.py

from datetime import datetime, time, timedelta
from zoneinfo import ZoneInfo

from django.core.exceptions import ValidationError
from django.test import SimpleTestCase, TestCase

from booking.exceptions import NotFoundError
from booking.services.availability_index import AvailabilityIndex
from booking.tests.base import MONDAY, UTC, SchedulingFixtures, at
from staff.models import WorkingHours, WorkingHoursException
from staff.working_hours import OpenInterval, WorkingHoursRegistry


class WorkingHoursRegistryTests(SchedulingFixtures, TestCase):
    def setUp(self):
        super().setUp()
        self.registry = WorkingHoursRegistry()

    def spans(self, day=MONDAY):
        return [(iv.start, iv.end) for iv in self.registry.intervals_for(self.staff, day)]

    def test_weekly_template(self):
        self.assertEqual(self.spans(), [(at(MONDAY, 9), at(MONDAY, 12))])

    def test_several_intervals_are_ordered(self):
        WorkingHours.objects.create(staff=self.staff, weekday=0, start_time=time(14), end_time=time(16))
        WorkingHours.objects.create(staff=self.staff, weekday=0, start_time=time(7), end_time=time(8))

        self.assertEqual(
            self.spans(),
            [(at(MONDAY, 7), at(MONDAY, 8)), (at(MONDAY, 9), at(MONDAY, 12)), (at(MONDAY, 14), at(MONDAY, 16))],
        )

    def test_exception_replaces_whole_day(self):
        WorkingHoursException.objects.create(staff=self.staff, date=MONDAY, start_time=time(13), end_time=time(14))
        WorkingHoursException.objects.create(staff=self.staff, date=MONDAY, start_time=time(10), end_time=time(11))

        self.assertEqual(self.spans(), [(at(MONDAY, 10), at(MONDAY, 11)), (at(MONDAY, 13), at(MONDAY, 14))])
        # Other days keep the template
        tuesday = MONDAY + timedelta(days=1)
        self.assertEqual(self.spans(tuesday), [(at(tuesday, 9), at(tuesday, 12))])

    def test_closed_marker(self):
        WorkingHoursException.objects.create(staff=self.staff, date=MONDAY, reason="Public holiday")
        self.assertEqual(self.spans(), [])

    def test_intervals_are_in_staff_timezone(self):
        self.staff.timezone = "Asia/Tokyo"
        self.staff.save()

        [(start, end)] = self.spans()

        # 09:00 JST is 00:00 UTC
        self.assertEqual(start, at(MONDAY, 0))
        self.assertEqual(str(start.tzinfo), "Asia/Tokyo")

    def test_is_within_hours(self):
        self.assertTrue(self.registry.is_within_hours(self.staff, at(MONDAY, 9), at(MONDAY, 12)))
        self.assertFalse(self.registry.is_within_hours(self.staff, at(MONDAY, 11, 45), at(MONDAY, 12, 15)))
        self.assertFalse(self.registry.is_within_hours(self.staff, at(MONDAY, 8, 45), at(MONDAY, 9, 15)))

    def test_unknown_staff(self):
        with self.assertRaises(NotFoundError):
            self.registry.intervals_for(987654, MONDAY)

    def test_between_yields_every_date(self):
        days = [day for day, _ in self.registry.intervals_between(self.staff, MONDAY, MONDAY + timedelta(days=6))]
        self.assertEqual(len(days), 7)



class OpenIntervalTests(SimpleTestCase):
    # 2030-11-03: New York repeats 01:00-02:00, first EDT (fold=0) then EST (fold=1)
    NEW_YORK = ZoneInfo("America/New_York")

    def setUp(self):
        self.interval = OpenInterval(
            datetime(2030, 11, 3, 0, 0, tzinfo=self.NEW_YORK),
            datetime(2030, 11, 3, 1, 30, tzinfo=self.NEW_YORK),
        )

    def span(self, start):
        return start, (start.astimezone(UTC) + timedelta(minutes=30)).astimezone(self.NEW_YORK)

    def test_first_pass_through_repeated_hour_is_inside(self):
        self.assertTrue(self.interval.contains(*self.span(datetime(2030, 11, 3, 1, 0, tzinfo=self.NEW_YORK))))

    def test_second_pass_through_repeated_hour_is_outside(self):
        start = datetime(2030, 11, 3, 1, 0, fold=1, tzinfo=self.NEW_YORK)
        self.assertFalse(self.interval.contains(*self.span(start)))

class WorkingHoursModelTests(SchedulingFixtures, TestCase):
    def test_overlapping_rows_are_invalid(self):
        row = WorkingHours(staff=self.staff, weekday=0, start_time=time(11), end_time=time(13))
        with self.assertRaises(ValidationError):
            row.full_clean()

    def test_end_must_follow_start(self):
        row = WorkingHours(staff=self.staff, weekday=0, start_time=time(18), end_time=time(17))
        with self.assertRaises(ValidationError):
            row.full_clean()

    def test_exception_needs_both_times_or_none(self):
        row = WorkingHoursException(staff=self.staff, date=MONDAY, start_time=time(9))
        with self.assertRaises(ValidationError):
            row.full_clean()

    def test_editing_hours_refreshes_cached_availability(self):
        index = AvailabilityIndex(clock=self.clock)
        self.assertEqual(len(index.query(self.staff, self.service, MONDAY, MONDAY)), 4)

        WorkingHoursException.objects.create(staff=self.staff, date=MONDAY, reason="Training")

        self.assertEqual(index.query(self.staff, self.service, MONDAY, MONDAY), [])
