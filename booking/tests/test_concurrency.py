# booking/tests/test_concurrency.py
#
# Racing bookings from real threads. TransactionTestCase so each thread's
# commits are visible to the others (file-backed SQLite test database).

import sqlite3
import threading
import time
from itertools import combinations

from django.db import connection
from django.test import TransactionTestCase

from booking.exceptions import BusyError, ConflictError, ConflictReason
from booking.models import Appointment
from booking.services.booking_manager import BookingManager
from booking.services.locks import StaffLockArena

from .base import MONDAY, SchedulingFixtures, at, engine_settings


def run_concurrently(calls):
    """Start every call at the same moment; return one (result, error) per call."""
    barrier = threading.Barrier(len(calls))
    outcomes = [None] * len(calls)

    def worker(i, call):
        try:
            barrier.wait()
            outcomes[i] = (call(), None)
        except Exception as e:
            outcomes[i] = (None, e)
        finally:
            connection.close()

    threads = [threading.Thread(target=worker, args=(i, c)) for i, c in enumerate(calls)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)
    return outcomes


class ConcurrentBookingTests(SchedulingFixtures, TransactionTestCase):
    def setUp(self):
        super().setUp()
        self.manager = BookingManager(clock=self.clock, locks=StaffLockArena())

    def attempt(self, start, customer):
        return lambda: self.manager.attempt_book(self.business.pk, self.staff.pk, self.service.pk, customer.pk, start)

    def test_two_clients_same_slot_exactly_one_wins(self):
        outcomes = run_concurrently([
            self.attempt(at(MONDAY, 10), self.customer),
            self.attempt(at(MONDAY, 10), self.other_customer),
        ])

        winners = [r for r, e in outcomes if r is not None]
        losers = [e for r, e in outcomes if e is not None]
        self.assertEqual(len(winners), 1)
        self.assertEqual(len(losers), 1)
        self.assertIsInstance(losers[0], ConflictError)
        self.assertEqual(losers[0].reason, ConflictReason.SLOT_TAKEN)
        self.assertEqual(Appointment.objects.filter(status=Appointment.SCHEDULED).count(), 1)

    def test_many_overlapping_requests_never_double_book(self):
        # Every 10 minutes from 09:00 to 11:30, each one overlapping its neighbours
        starts = [at(MONDAY, 9, 0)] + [at(MONDAY, 9 + m // 60, m % 60) for m in range(10, 151, 10)]
        customers = [self.customer, self.other_customer]
        outcomes = run_concurrently([self.attempt(s, customers[i % 2]) for i, s in enumerate(starts)])

        for result, error in outcomes:
            self.assertTrue(result is not None or isinstance(error, (ConflictError, BusyError)), error)

        scheduled = list(Appointment.objects.filter(staff=self.staff, status=Appointment.SCHEDULED))
        self.assertGreaterEqual(len(scheduled), 1)
        for a, b in combinations(scheduled, 2):
            overlap = a.start_time < b.blocked_until and b.start_time < a.blocked_until
            self.assertFalse(overlap, f"{a.start_time}-{a.blocked_until} overlaps {b.start_time}-{b.blocked_until}")

    def test_cancel_and_rebook_race(self):
        appointment = self.manager.attempt_book(self.business, self.staff, self.service, self.customer, at(MONDAY, 9))

        outcomes = run_concurrently([
            lambda: self.manager.cancel(self.business.pk, appointment.pk),
            self.attempt(at(MONDAY, 9), self.other_customer),
        ])

        cancel_result, cancel_error = outcomes[0]
        self.assertIsNone(cancel_error)
        self.assertEqual(cancel_result.status, Appointment.CANCELLED)
        # The rebook either ran first (slot taken) or after the cancel (booked)
        rebook_result, rebook_error = outcomes[1]
        self.assertTrue(rebook_result is not None or isinstance(rebook_error, ConflictError))
        self.assertLessEqual(Appointment.objects.filter(status=Appointment.SCHEDULED).count(), 1)


class DatabaseLockTests(SchedulingFixtures, TransactionTestCase):
    """Another process holding the database write lock must not stall a booking."""

    def setUp(self):
        super().setUp()
        if connection.vendor != "sqlite":
            self.skipTest("holds the SQLite write lock from a second connection")
        self.manager = BookingManager(clock=self.clock, locks=StaffLockArena())

    def book(self):
        return self.manager.attempt_book(self.business, self.staff, self.service, self.customer, at(MONDAY, 9))

    def test_held_write_lock_gives_busy_within_timeout(self):
        other_process = sqlite3.connect(connection.settings_dict["NAME"], isolation_level=None)
        other_process.execute("BEGIN IMMEDIATE")
        try:
            with self.settings(SCHEDULING=engine_settings(ASYNC_EVENTS=False, LOCK_TIMEOUT_SECONDS=0.05)):
                started = time.monotonic()
                with self.assertRaises(BusyError):
                    self.book()
                self.assertLess(time.monotonic() - started, 2)
        finally:
            other_process.execute("ROLLBACK")
            other_process.close()

        self.assertFalse(Appointment.objects.exists())
        self.assertEqual(self.book().status, Appointment.SCHEDULED)
