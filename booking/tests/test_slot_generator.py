# booking/tests/test_slot_generator.py

from datetime import time, timedelta
from zoneinfo import ZoneInfo

from django.test import TestCase

from booking.services.clock import FixedClock
from booking.services.slot_generator import SlotGenerator
from staff.models import WorkingHours, WorkingHoursException

from .base import MONDAY, SchedulingFixtures, at


class SlotGeneratorTests(SchedulingFixtures, TestCase):
    def setUp(self):
        super().setUp()
        self.generator = SlotGenerator(clock=self.clock)

    def starts(self, sequence):
        return [slot.start.astimezone(ZoneInfo(self.staff.timezone)).strftime("%H:%M") for slot in sequence]

    def test_buffer_spacing_within_one_interval(self):
        # Mon 09:00-12:00, 30 min service + 10 min buffer
        slots = list(self.generator.generate(self.staff, self.service, MONDAY, MONDAY))

        self.assertEqual(self.starts(slots), ["09:00", "09:40", "10:20", "11:00"])
        self.assertTrue(all(s.end - s.start == timedelta(minutes=30) for s in slots))
        self.assertTrue(all(not s.occupied for s in slots))
        self.assertEqual({s.staff_id for s in slots}, {self.staff.pk})

    def test_slots_never_span_a_break(self):
        WorkingHours.objects.filter(staff=self.staff, weekday=MONDAY.weekday()).delete()
        WorkingHours.objects.create(staff=self.staff, weekday=0, start_time=time(9), end_time=time(10))
        WorkingHours.objects.create(staff=self.staff, weekday=0, start_time=time(11), end_time=time(12))

        slots = list(self.generator.generate(self.staff, self.service, MONDAY, MONDAY))

        # 09:40 would end 10:10, past the first interval
        self.assertEqual(self.starts(slots), ["09:00", "11:00"])

    def test_sequence_can_be_iterated_twice(self):
        sequence = self.generator.generate(self.staff, self.service, MONDAY, MONDAY + timedelta(days=1))
        self.assertEqual(list(sequence), list(sequence))
        self.assertEqual(len(list(sequence)), 8)

    def test_exception_replaces_template(self):
        WorkingHoursException.objects.create(staff=self.staff, date=MONDAY, start_time=time(14), end_time=time(15))

        slots = list(self.generator.generate(self.staff, self.service, MONDAY, MONDAY))

        self.assertEqual(self.starts(slots), ["14:00"])

    def test_closed_exception_yields_nothing(self):
        WorkingHoursException.objects.create(staff=self.staff, date=MONDAY, reason="Holiday")

        self.assertEqual(list(self.generator.generate(self.staff, self.service, MONDAY, MONDAY)), [])

    def test_slots_before_now_are_skipped(self):
        generator = SlotGenerator(clock=FixedClock(at(MONDAY, 10)))

        slots = list(generator.generate(self.staff, self.service, MONDAY, MONDAY))

        self.assertEqual(self.starts(slots), ["10:20", "11:00"])

    def test_dates_past_horizon_are_excluded(self):
        self.service.max_advance_days = 3
        self.service.save()
        friday = self.clock.today(ZoneInfo("UTC"))

        slots = list(self.generator.generate(self.staff, self.service, friday, friday + timedelta(days=10)))

        days = sorted({s.start.date() for s in slots})
        self.assertEqual(days[-1], friday + timedelta(days=3))
        self.assertEqual(self.generator.horizon(self.staff, self.service), friday + timedelta(days=3))

    def test_staff_timezone_is_used_for_wall_clock(self):
        self.staff.timezone = "America/New_York"
        self.staff.save()

        slots = list(self.generator.generate(self.staff, self.service, MONDAY, MONDAY))

        # 09:00 EST is 14:00 UTC
        self.assertEqual(slots[0].start, at(MONDAY, 14))
        self.assertEqual(self.starts(slots), ["09:00", "09:40", "10:20", "11:00"])

    def test_wall_clock_holds_across_dst_change(self):
        self.staff.timezone = "America/New_York"
        self.staff.save()
        # DST starts Sunday 2030-03-10
        next_monday = MONDAY + timedelta(days=7)

        before = list(self.generator.generate(self.staff, self.service, MONDAY, MONDAY))[0]
        after = list(self.generator.generate(self.staff, self.service, next_monday, next_monday))[0]

        self.assertEqual(before.start, at(MONDAY, 14))
        self.assertEqual(after.start, at(next_monday, 13))
