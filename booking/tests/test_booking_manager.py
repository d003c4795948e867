# booking/tests/test_booking_manager.py

from datetime import datetime, timedelta
from unittest import mock

from django.db import DatabaseError
from django.test import TestCase

from booking import signals
from booking.exceptions import (
    BusyError,
    ConflictError,
    ConflictReason,
    InvalidRequestError,
    InvalidStateError,
    NotFoundError,
)
from booking.models import Appointment, Business, Customer
from booking.services.booking_manager import BookingManager
from booking.services.locks import StaffLockArena

from .base import FIXED_NOW, MONDAY, SchedulingFixtures, at, engine_settings


class EventRecorder:
    def __init__(self, *watched):
        self.events = []
        self._watched = watched

    def __call__(self, sender, event, **kwargs):
        self.events.append(event)

    def __enter__(self):
        for signal in self._watched:
            signal.connect(self, weak=False)
        return self

    def __exit__(self, *exc):
        for signal in self._watched:
            signal.disconnect(self)

    def of(self, kind):
        return [e for e in self.events if type(e).__name__ == kind]


class BookingManagerTests(SchedulingFixtures, TestCase):
    def setUp(self):
        super().setUp()
        self.locks = StaffLockArena()
        self.manager = BookingManager(clock=self.clock, locks=self.locks)

    def book(self, start, customer=None, **kwargs):
        return self.manager.attempt_book(
            self.business, self.staff, self.service, customer or self.customer, start, **kwargs
        )

    def assertConflict(self, reason, start):
        with self.assertRaises(ConflictError) as ctx:
            self.book(start)
        self.assertEqual(ctx.exception.reason, reason)

    # -------------------- attempt_book --------------------
    def test_book_records_interval_and_buffer(self):
        with EventRecorder(signals.appointment_confirmed) as recorder:
            appointment = self.book(at(MONDAY, 9), notes="first visit")

        self.assertEqual(appointment.status, Appointment.SCHEDULED)
        self.assertEqual(appointment.start_time, at(MONDAY, 9))
        self.assertEqual(appointment.end_time, at(MONDAY, 9, 30))
        self.assertEqual(appointment.blocked_until, at(MONDAY, 9, 40))
        self.assertEqual(appointment.notes, "first visit")

        [event] = recorder.events
        self.assertEqual(event.appointment_id, appointment.pk)
        self.assertEqual((event.start, event.end), (at(MONDAY, 9), at(MONDAY, 9, 30)))
        self.assertEqual(event.customer_id, self.customer.pk)

    def test_overlap_is_slot_taken(self):
        self.book(at(MONDAY, 9))

        self.assertConflict(ConflictReason.SLOT_TAKEN, at(MONDAY, 9, 15))
        self.assertEqual(Appointment.objects.filter(status=Appointment.SCHEDULED).count(), 1)

    def test_buffer_counts_as_overlap(self):
        self.book(at(MONDAY, 9))

        # 09:30-09:40 is the first appointment's buffer
        self.assertConflict(ConflictReason.SLOT_TAKEN, at(MONDAY, 9, 35))
        # Ending right where the next one starts is fine
        self.assertIsNotNone(self.book(at(MONDAY, 9, 40)))

    def test_new_buffer_may_not_run_into_next_appointment(self):
        self.book(at(MONDAY, 10))

        # 09:25-09:55 + 10 min buffer reaches 10:05
        self.assertConflict(ConflictReason.SLOT_TAKEN, at(MONDAY, 9, 25))
        self.assertIsNotNone(self.book(at(MONDAY, 9, 20)))

    def test_too_far_in_advance(self):
        start = FIXED_NOW + timedelta(days=100)
        self.assertConflict(ConflictReason.TOO_FAR_IN_ADVANCE, start.replace(hour=9))
        self.assertFalse(Appointment.objects.exists())

    def test_last_day_of_horizon_is_bookable(self):
        last_day = self.clock.today(self.staff.tz) + timedelta(days=self.service.max_advance_days)
        self.assertIsNotNone(self.book(at(last_day, 9)))

    def test_outside_working_hours(self):
        self.assertConflict(ConflictReason.OUTSIDE_WORKING_HOURS, at(MONDAY, 8))
        self.assertConflict(ConflictReason.OUTSIDE_WORKING_HOURS, at(MONDAY, 12))
        # would end 12:10
        self.assertConflict(ConflictReason.OUTSIDE_WORKING_HOURS, at(MONDAY, 11, 40))

    def test_start_need_not_align_to_slot_grid(self):
        self.assertEqual(self.book(at(MONDAY, 9, 7)).start_time, at(MONDAY, 9, 7))

    def test_invalid_requests(self):
        with self.assertRaises(InvalidRequestError):
            self.book(datetime(2030, 3, 4, 9, 0))  # naive
        with self.assertRaises(InvalidRequestError):
            self.book(FIXED_NOW - timedelta(hours=1))

        massage = self.make_service(self.business, name="Massage")
        with self.assertRaises(InvalidRequestError):
            self.manager.attempt_book(self.business, self.staff, massage, self.customer, at(MONDAY, 9))

        self.service.active = False
        self.service.save()
        with self.assertRaises(InvalidRequestError):
            self.book(at(MONDAY, 9))

    def test_unknown_references_are_not_found(self):
        with self.assertRaises(NotFoundError):
            self.manager.attempt_book(self.business, 999999, self.service, self.customer, at(MONDAY, 9))
        with self.assertRaises(NotFoundError):
            self.manager.attempt_book(999999, self.staff, self.service, self.customer, at(MONDAY, 9))
        with self.assertRaises(NotFoundError):
            self.manager.attempt_book("abc", self.staff, self.service, self.customer, at(MONDAY, 9))

    def test_tenant_isolation(self):
        other = Business.objects.create(name="Elsewhere")
        stranger = Customer.objects.create(business=other, name="Eve", email="eve@example.com")

        with self.assertRaises(NotFoundError):
            self.manager.attempt_book(self.business, self.staff, self.service, stranger, at(MONDAY, 9))
        with self.assertRaises(NotFoundError):
            self.manager.attempt_book(other.pk, self.staff.pk, self.service.pk, stranger.pk, at(MONDAY, 9))

        appointment = self.book(at(MONDAY, 9))
        with self.assertRaises(NotFoundError):
            self.manager.cancel(other, appointment.pk)
        appointment.refresh_from_db()
        self.assertEqual(appointment.status, Appointment.SCHEDULED)

    def test_different_staff_do_not_conflict(self):
        colleague = self.make_staff(self.business, [self.service], name="Sam")
        self.open_every_day(colleague, at(MONDAY, 9).time(), at(MONDAY, 12).time())

        self.book(at(MONDAY, 9))
        other = self.manager.attempt_book(self.business, colleague, self.service, self.other_customer, at(MONDAY, 9))

        self.assertEqual(other.staff_id, colleague.pk)

    # -------------------- serialization scope --------------------
    def test_busy_when_scope_is_held(self):
        with self.settings(SCHEDULING=engine_settings(LOCK_TIMEOUT_SECONDS=0.05)):
            with self.locks.hold(self.staff.pk):
                with self.assertRaises(BusyError):
                    self.book(at(MONDAY, 9))
            self.assertFalse(Appointment.objects.exists())

            # Retrying once the scope is free books exactly once
            self.book(at(MONDAY, 9))
            self.assertConflict(ConflictReason.SLOT_TAKEN, at(MONDAY, 9))
        self.assertEqual(Appointment.objects.count(), 1)

    def test_validation_errors_do_not_need_the_scope(self):
        with self.settings(SCHEDULING=engine_settings(LOCK_TIMEOUT_SECONDS=0.05)):
            with self.locks.hold(self.staff.pk):
                self.assertConflict(ConflictReason.OUTSIDE_WORKING_HOURS, at(MONDAY, 13))

    # -------------------- cancel --------------------
    def test_cancel_then_rebook_same_time(self):
        appointment = self.book(at(MONDAY, 9))

        with EventRecorder(signals.appointment_cancelled, signals.slot_freed) as recorder:
            cancelled = self.manager.cancel(self.business, appointment.pk, actor="customer")

        self.assertEqual(cancelled.status, Appointment.CANCELLED)
        self.assertEqual(cancelled.cancelled_by, "customer")
        self.assertEqual(cancelled.cancellation_time, FIXED_NOW)
        [freed] = recorder.of("SlotFreed")
        self.assertEqual((freed.start, freed.end), (at(MONDAY, 9), at(MONDAY, 9, 30)))
        [cancel_event] = recorder.of("AppointmentCancelled")
        self.assertEqual(cancel_event.cancellation_policy["refund_policy"], "full")

        rebooked = self.book(at(MONDAY, 9), customer=self.other_customer)
        self.assertEqual(rebooked.status, Appointment.SCHEDULED)

    def test_cancel_is_only_allowed_from_scheduled(self):
        appointment = self.book(at(MONDAY, 9))
        self.manager.cancel(self.business, appointment.pk)

        with self.assertRaises(InvalidStateError):
            self.manager.cancel(self.business, appointment.pk)

    def test_cancel_unknown_appointment(self):
        with self.assertRaises(NotFoundError):
            self.manager.cancel(self.business, 424242)

    # -------------------- complete / no-show --------------------
    def test_terminal_statuses(self):
        first = self.book(at(MONDAY, 9))
        second = self.book(at(MONDAY, 10))

        self.assertEqual(self.manager.mark_completed(self.business, first.pk).status, Appointment.COMPLETED)
        self.assertEqual(self.manager.mark_no_show(self.business, second.pk).status, Appointment.NO_SHOW)

        with self.assertRaises(InvalidStateError):
            self.manager.cancel(self.business, first.pk)
        with self.assertRaises(InvalidStateError):
            self.manager.mark_no_show(self.business, first.pk)

    def test_closing_releases_only_time_still_ahead(self):
        upcoming = self.book(at(MONDAY, 9))
        started = self.book(at(MONDAY, 10))

        with EventRecorder(signals.slot_freed) as recorder:
            self.manager.mark_completed(self.business, upcoming.pk)
            self.clock.advance(days=2, hours=22, minutes=15)
            self.manager.mark_no_show(self.business, started.pk)

        [freed] = recorder.events
        self.assertEqual(freed.appointment_id, upcoming.pk)
        self.assertEqual((freed.start, freed.end), (at(MONDAY, 9), at(MONDAY, 9, 30)))

    # -------------------- reschedule --------------------
    def test_reschedule_moves_appointment(self):
        original = self.book(at(MONDAY, 9), notes="keep me")

        with EventRecorder(signals.appointment_cancelled, signals.slot_freed, signals.appointment_confirmed) as recorder:
            replacement = self.manager.reschedule(self.business, original.pk, at(MONDAY, 11), actor="staff")

        original.refresh_from_db()
        self.assertEqual(original.status, Appointment.CANCELLED)
        self.assertEqual(replacement.status, Appointment.SCHEDULED)
        self.assertEqual(replacement.start_time, at(MONDAY, 11))
        self.assertEqual(replacement.customer_id, original.customer_id)
        self.assertEqual(replacement.notes, "keep me")
        self.assertEqual(recorder.of("AppointmentCancelled")[0].rescheduled_to, replacement.pk)
        self.assertEqual(recorder.of("SlotFreed")[0].start, at(MONDAY, 9))
        self.assertEqual(recorder.of("AppointmentConfirmed")[0].appointment_id, replacement.pk)

    def test_reschedule_into_own_buffer_is_allowed(self):
        original = self.book(at(MONDAY, 9))

        # Overlaps the original, which is released in the same step
        replacement = self.manager.reschedule(self.business, original.pk, at(MONDAY, 9, 20))

        self.assertEqual(replacement.start_time, at(MONDAY, 9, 20))

    def test_failed_reschedule_leaves_original_untouched(self):
        original = self.book(at(MONDAY, 9))
        self.book(at(MONDAY, 11), customer=self.other_customer)

        with self.assertRaises(ConflictError):
            self.manager.reschedule(self.business, original.pk, at(MONDAY, 11))

        original.refresh_from_db()
        self.assertEqual(original.status, Appointment.SCHEDULED)
        self.assertEqual(original.start_time, at(MONDAY, 9))
        self.assertIsNone(original.cancellation_time)

    def test_reschedule_rolls_back_when_write_fails(self):
        original = self.book(at(MONDAY, 9))

        with mock.patch.object(Appointment.objects, "create", side_effect=DatabaseError("disk full")):
            with self.assertRaises(DatabaseError):
                self.manager.reschedule(self.business, original.pk, at(MONDAY, 11))

        original.refresh_from_db()
        self.assertEqual(original.status, Appointment.SCHEDULED)
        self.assertEqual(Appointment.objects.count(), 1)

    def test_reschedule_validation_before_any_change(self):
        original = self.book(at(MONDAY, 9))

        with self.assertRaises(ConflictError) as ctx:
            self.manager.reschedule(self.business, original.pk, at(MONDAY, 18))
        self.assertEqual(ctx.exception.reason, ConflictReason.OUTSIDE_WORKING_HOURS)

        self.manager.cancel(self.business, original.pk)
        with self.assertRaises(InvalidStateError):
            self.manager.reschedule(self.business, original.pk, at(MONDAY, 11))
