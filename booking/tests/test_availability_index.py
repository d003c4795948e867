# booking/tests/test_availability_index.py

from datetime import timedelta

from django.test import TestCase

from booking.exceptions import InvalidRequestError, NotFoundError
from booking.models import Appointment, Business
from booking.services.availability_index import AvailabilityIndex
from booking.services.booking_manager import BookingManager
from booking.services.clock import FixedClock

from .base import MONDAY, SchedulingFixtures, at, engine_settings


class AvailabilityIndexTests(SchedulingFixtures, TestCase):
    def setUp(self):
        super().setUp()
        self.index = AvailabilityIndex(clock=self.clock)
        self.manager = BookingManager(clock=self.clock, index=self.index)

    def occupancy(self, day=MONDAY):
        return [(s.start.strftime("%H:%M"), s.occupied) for s in self.index.query(self.staff, self.service, day, day)]

    def test_booking_marks_slot_occupied(self):
        self.manager.attempt_book(self.business, self.staff, self.service, self.customer, at(MONDAY, 9, 40))

        self.assertEqual(
            self.occupancy(),
            [("09:00", False), ("09:40", True), ("10:20", False), ("11:00", False)],
        )
        free = self.index.free_slots(self.staff, self.service, MONDAY, MONDAY)
        self.assertEqual([s.start for s in free], [at(MONDAY, 9), at(MONDAY, 10, 20), at(MONDAY, 11)])

    def test_buffer_of_existing_appointment_blocks_neighbouring_slot(self):
        # 60 min service at 10:00 blocks until 11:10 with its buffer
        long_service = self.make_service(self.business, name="Colour", duration=60, buffer=10)
        self.staff.services.add(long_service)
        self.manager.attempt_book(self.business, self.staff, long_service, self.customer, at(MONDAY, 10))

        self.assertEqual(
            self.occupancy(),
            [("09:00", False), ("09:40", True), ("10:20", True), ("11:00", True)],
        )

    def test_cancel_frees_the_slot(self):
        appointment = self.manager.attempt_book(self.business, self.staff, self.service, self.customer, at(MONDAY, 9))
        self.assertTrue(self.occupancy()[0][1])

        self.manager.cancel(self.business, appointment.pk)

        self.assertFalse(self.occupancy()[0][1])

    def test_projection_is_cached_until_invalidated(self):
        self.assertFalse(self.occupancy()[0][1])
        # Written behind the engine's back: the cached projection does not see it
        Appointment.objects.create(
            business=self.business,
            service=self.service,
            staff=self.staff,
            customer=self.customer,
            start_time=at(MONDAY, 9),
            end_time=at(MONDAY, 9, 30),
            blocked_until=at(MONDAY, 9, 40),
        )
        self.assertFalse(self.occupancy()[0][1])

        self.index.invalidate(self.staff, at(MONDAY, 9), at(MONDAY, 9, 40))

        self.assertTrue(self.occupancy()[0][1])

    def test_completed_and_no_show_do_not_occupy(self):
        first = self.manager.attempt_book(self.business, self.staff, self.service, self.customer, at(MONDAY, 9))
        second = self.manager.attempt_book(self.business, self.staff, self.service, self.customer, at(MONDAY, 9, 40))

        self.manager.mark_completed(self.business, first.pk)
        self.manager.mark_no_show(self.business, second.pk)

        self.assertEqual([occupied for _, occupied in self.occupancy()], [False, False, False, False])

    def test_past_slots_filtered_on_every_read(self):
        clock = FixedClock(at(MONDAY, 8))
        index = AvailabilityIndex(clock=clock)
        self.assertEqual(len(index.query(self.staff, self.service, MONDAY, MONDAY)), 4)

        clock.advance(hours=2)

        # Same cached day, fewer slots
        starts = [s.start for s in index.query(self.staff, self.service, MONDAY, MONDAY)]
        self.assertEqual(starts, [at(MONDAY, 10, 20), at(MONDAY, 11)])

    def test_range_beyond_horizon_is_empty(self):
        far = self.clock.today(self.staff.tz) + timedelta(days=self.service.max_advance_days + 1)
        self.assertEqual(self.index.query(self.staff, self.service, far, far + timedelta(days=2)), [])

    def test_range_limits(self):
        with self.assertRaises(InvalidRequestError):
            self.index.query(self.staff, self.service, MONDAY, MONDAY - timedelta(days=1))

        with self.settings(SCHEDULING=engine_settings(MAX_QUERY_DAYS=7)):
            with self.assertRaises(InvalidRequestError):
                self.index.query(self.staff, self.service, MONDAY, MONDAY + timedelta(days=7))

    def test_other_business_is_not_found(self):
        other = Business.objects.create(name="Elsewhere")
        with self.assertRaises(NotFoundError):
            self.index.query(self.staff, self.service, MONDAY, MONDAY, business=other)

    def test_service_not_performed_is_rejected(self):
        massage = self.make_service(self.business, name="Massage")
        with self.assertRaises(InvalidRequestError):
            self.index.query(self.staff, massage, MONDAY, MONDAY)
