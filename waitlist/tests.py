# waitlist/tests.py

import io
from datetime import date, datetime, timedelta

from django.core.management import call_command
from django.test import TestCase, TransactionTestCase
from rest_framework.test import APIClient

from booking.events import SlotFreed
from booking.exceptions import InvalidRequestError, InvalidStateError, NotFoundError
from booking.models import Appointment, Business, Customer
from booking.services.booking_manager import BookingManager
from booking.services.locks import StaffLockArena
from booking.tests.base import SchedulingFixtures, at, engine_settings, live_day
from notifications.models import Notification
from waitlist.models import WaitlistEntry
from waitlist.services import WaitlistManager, get_waitlist_manager


class WaitlistPromotionTests(SchedulingFixtures, TestCase):
    """Promotion through the real slot_freed signal path (inline)."""

    def setUp(self):
        super().setUp()
        self.day = live_day()
        self.manager = BookingManager()
        self.waitlist = get_waitlist_manager()
        self.third_customer = Customer.objects.create(business=self.business, name="Linus", email="linus@example.com")

    def wait_for(self, customer, start_hour=9, end_hour=12):
        return self.waitlist.register(
            self.business, self.staff, self.service, customer,
            at(self.day, start_hour), at(self.day, end_hour),
        )

    def test_cancel_promotes_earliest_waiting_entry(self):
        booked = self.manager.attempt_book(self.business, self.staff, self.service, self.customer, at(self.day, 9))
        first = self.wait_for(self.other_customer)
        second = self.wait_for(self.third_customer)

        self.manager.cancel(self.business, booked.pk)

        first.refresh_from_db()
        second.refresh_from_db()
        self.assertEqual(first.status, WaitlistEntry.PROMOTED)
        self.assertEqual(first.appointment.start_time, at(self.day, 9))
        self.assertEqual(first.appointment.customer_id, self.other_customer.pk)
        self.assertEqual(first.appointment.status, Appointment.SCHEDULED)
        self.assertEqual(second.status, WaitlistEntry.WAITING)
        self.assertTrue(
            Notification.objects.filter(
                customer=self.other_customer, kind=Notification.WAITLIST_PROMOTED
            ).exists()
        )

    def test_entries_for_other_ranges_are_not_promoted(self):
        booked = self.manager.attempt_book(self.business, self.staff, self.service, self.customer, at(self.day, 9))
        afternoon = self.waitlist.register(
            self.business, self.staff, self.service, self.other_customer,
            at(self.day, 10), at(self.day, 12),
        )

        self.manager.cancel(self.business, booked.pk)

        afternoon.refresh_from_db()
        self.assertEqual(afternoon.status, WaitlistEntry.WAITING)

    def test_reschedule_frees_old_slot_for_waitlist(self):
        booked = self.manager.attempt_book(self.business, self.staff, self.service, self.customer, at(self.day, 9))
        entry = self.wait_for(self.other_customer)

        self.manager.reschedule(self.business, booked.pk, at(self.day, 11))

        entry.refresh_from_db()
        self.assertEqual(entry.status, WaitlistEntry.PROMOTED)
        self.assertEqual(entry.appointment.start_time, at(self.day, 9))

    def test_early_no_show_frees_slot_for_waitlist(self):
        booked = self.manager.attempt_book(self.business, self.staff, self.service, self.customer, at(self.day, 9))
        entry = self.wait_for(self.other_customer)

        self.manager.mark_no_show(self.business, booked.pk)

        entry.refresh_from_db()
        self.assertEqual(entry.status, WaitlistEntry.PROMOTED)
        self.assertEqual(entry.appointment.start_time, at(self.day, 9))

    def test_stale_entries_expire_on_promotion_pass(self):
        stale = WaitlistEntry.objects.create(
            business=self.business, staff=self.staff, service=self.service, customer=self.third_customer,
            desired_start=at(self.day - timedelta(days=30), 9),
            desired_end=at(self.day - timedelta(days=30), 12),
            registered_at=at(self.day - timedelta(days=31), 9),
        )
        booked = self.manager.attempt_book(self.business, self.staff, self.service, self.customer, at(self.day, 9))

        self.manager.cancel(self.business, booked.pk)

        stale.refresh_from_db()
        self.assertEqual(stale.status, WaitlistEntry.EXPIRED)


class WaitlistManagerTests(SchedulingFixtures, TestCase):
    """Direct calls with a pinned clock."""

    def setUp(self):
        super().setUp()
        self.locks = StaffLockArena()
        self.bookings = BookingManager(clock=self.clock, locks=self.locks)
        self.waitlist = WaitlistManager(booking_manager=self.bookings)
        self.day = self.clock.today(self.staff.tz) + timedelta(days=3)

    def freed(self, hour=9, minute=0):
        start = at(self.day, hour, minute)
        return SlotFreed(
            business_id=self.business.pk,
            staff_id=self.staff.pk,
            service_id=self.service.pk,
            start=start,
            end=start + self.service.duration,
        )

    def register(self, customer, start_hour=9, end_hour=12):
        return self.waitlist.register(
            self.business.pk, self.staff.pk, self.service.pk, customer.pk,
            at(self.day, start_hour), at(self.day, end_hour),
        )

    def test_register_validates(self):
        with self.assertRaises(InvalidRequestError):
            self.waitlist.register(self.business, self.staff, self.service, self.customer,
                                   datetime(2030, 3, 4, 9), at(self.day, 12))
        with self.assertRaises(InvalidRequestError):
            self.waitlist.register(self.business, self.staff, self.service, self.customer,
                                   at(self.day, 12), at(self.day, 9))
        with self.assertRaises(InvalidRequestError):
            past = self.clock.today(self.staff.tz) - timedelta(days=1)
            self.waitlist.register(self.business, self.staff, self.service, self.customer, at(past, 9), at(past, 12))

        other = Business.objects.create(name="Elsewhere")
        with self.assertRaises(NotFoundError):
            self.waitlist.register(other, self.staff, self.service, self.customer, at(self.day, 9), at(self.day, 12))

    def test_register_uses_clock_for_order(self):
        entry = self.register(self.customer)
        self.assertEqual(entry.registered_at, self.clock.now())
        self.assertEqual(entry.status, WaitlistEntry.WAITING)

    def test_slot_taken_leaves_every_entry_waiting(self):
        # Slot is still held, so every promotion attempt conflicts
        self.bookings.attempt_book(self.business, self.staff, self.service, self.third_party(), at(self.day, 9))
        first = self.register(self.customer)
        second = self.register(self.other_customer)

        self.assertIsNone(self.waitlist.handle_slot_freed(self.freed()))

        first.refresh_from_db()
        second.refresh_from_db()
        self.assertEqual((first.status, second.status), (WaitlistEntry.WAITING, WaitlistEntry.WAITING))
        self.assertEqual(Appointment.objects.count(), 1)

    def test_promotion_order_is_registration_order(self):
        late = self.register(self.other_customer)
        early = self.register(self.customer)
        WaitlistEntry.objects.filter(pk=early.pk).update(registered_at=self.clock.now() - timedelta(hours=1))

        promoted = self.waitlist.handle_slot_freed(self.freed())

        self.assertEqual(promoted.pk, early.pk)
        late.refresh_from_db()
        self.assertEqual(late.status, WaitlistEntry.WAITING)

    def test_busy_stops_the_pass(self):
        entry = self.register(self.customer)

        with self.settings(SCHEDULING=engine_settings(LOCK_TIMEOUT_SECONDS=0.05)):
            with self.locks.hold(self.staff.pk):
                self.assertIsNone(self.waitlist.handle_slot_freed(self.freed()))

        entry.refresh_from_db()
        self.assertEqual(entry.status, WaitlistEntry.WAITING)
        self.assertFalse(Appointment.objects.exists())

    def test_entry_cancelled_mid_promotion_releases_booking(self):
        entry = self.register(self.customer)
        bookings = self.bookings

        class CancellingBookings(BookingManager):
            def attempt_book(self, *args, **kwargs):
                appointment = bookings.attempt_book(*args, **kwargs)
                WaitlistEntry.objects.filter(pk=entry.pk).update(status=WaitlistEntry.CANCELLED)
                return appointment

            def cancel(self, *args, **kwargs):
                return bookings.cancel(*args, **kwargs)

        waitlist = WaitlistManager(booking_manager=CancellingBookings(clock=self.clock, locks=self.locks))

        self.assertIsNone(waitlist.handle_slot_freed(self.freed()))

        entry.refresh_from_db()
        self.assertEqual(entry.status, WaitlistEntry.CANCELLED)
        self.assertIsNone(entry.appointment)
        self.assertFalse(Appointment.objects.filter(status=Appointment.SCHEDULED).exists())

    def test_cancel_entry(self):
        entry = self.register(self.customer)

        self.assertEqual(self.waitlist.cancel_entry(self.business, entry.pk).status, WaitlistEntry.CANCELLED)
        with self.assertRaises(InvalidStateError):
            self.waitlist.cancel_entry(self.business, entry.pk)
        with self.assertRaises(NotFoundError):
            self.waitlist.cancel_entry(self.business, 987654)

    def test_expire_stale_and_command(self):
        entry = self.register(self.customer)

        self.assertEqual(self.waitlist.expire_stale(now=at(self.day, 11)), 0)
        self.assertEqual(self.waitlist.expire_stale(now=at(self.day, 12)), 1)
        entry.refresh_from_db()
        self.assertEqual(entry.status, WaitlistEntry.EXPIRED)

        WaitlistEntry.objects.filter(pk=entry.pk).update(
            status=WaitlistEntry.WAITING,
            desired_start=at(date(2020, 1, 6), 9),
            desired_end=at(date(2020, 1, 6), 12),
        )
        out = io.StringIO()
        call_command("expire_waitlist", stdout=out)
        self.assertIn("Expired 1", out.getvalue())
        entry.refresh_from_db()
        self.assertEqual(entry.status, WaitlistEntry.EXPIRED)

    def third_party(self):
        return Customer.objects.create(business=self.business, name="Walk-in", email="walkin@example.com")


class WaitlistApiTests(SchedulingFixtures, TestCase):
    def setUp(self):
        super().setUp()
        self.client = APIClient()
        self.day = live_day()

    def payload(self, **extra):
        data = {
            "business": self.business.pk,
            "staff": self.staff.pk,
            "service": self.service.pk,
            "customer": self.customer.pk,
            "desired_start": at(self.day, 9).isoformat(),
            "desired_end": at(self.day, 12).isoformat(),
        }
        data.update(extra)
        return data

    def test_register_list_cancel(self):
        created = self.client.post("/api/waitlist/", self.payload(), format="json")
        self.assertEqual(created.status_code, 201)
        entry_id = created.json()["id"]
        self.assertEqual(created.json()["status"], WaitlistEntry.WAITING)

        listed = self.client.get("/api/waitlist/", {"business": self.business.pk, "status": "waiting"})
        self.assertEqual([e["id"] for e in listed.json()], [entry_id])

        cancelled = self.client.post(f"/api/waitlist/{entry_id}/cancel/", {"business": self.business.pk}, format="json")
        self.assertEqual(cancelled.status_code, 200)
        self.assertEqual(cancelled.json()["status"], WaitlistEntry.CANCELLED)

        again = self.client.post(f"/api/waitlist/{entry_id}/cancel/", {"business": self.business.pk}, format="json")
        self.assertEqual(again.status_code, 409)

    def test_register_rejects_bad_ranges(self):
        naive = self.client.post("/api/waitlist/", self.payload(desired_start=f"{self.day.isoformat()}T09:00:00"), format="json")
        reversed_range = self.client.post(
            "/api/waitlist/",
            self.payload(desired_start=at(self.day, 12).isoformat(), desired_end=at(self.day, 9).isoformat()),
            format="json",
        )
        self.assertEqual(naive.status_code, 400)
        self.assertEqual(reversed_range.status_code, 400)
        self.assertFalse(WaitlistEntry.objects.exists())


class AsyncPromotionTests(SchedulingFixtures, TransactionTestCase):
    """Promotion on the worker pool: the cancelling caller does not wait for it."""

    scheduling_overrides = {"ASYNC_EVENTS": True}

    def test_promotion_happens_in_background(self):
        day = live_day()
        manager = BookingManager()
        waitlist = get_waitlist_manager()
        booked = manager.attempt_book(self.business, self.staff, self.service, self.customer, at(day, 9))
        entry = waitlist.register(self.business, self.staff, self.service, self.other_customer, at(day, 9), at(day, 12))

        manager.cancel(self.business, booked.pk)
        waitlist.wait_for_pending(timeout=30)

        entry.refresh_from_db()
        self.assertEqual(entry.status, WaitlistEntry.PROMOTED)
        self.assertEqual(entry.appointment.start_time, at(day, 9))
