import io
from datetime import timedelta
from smtplib import SMTPException
from unittest import mock

from django.core import mail
from django.core.management import call_command
from django.test import TestCase
from django.utils import timezone

from booking.models import Appointment
from booking.services.booking_manager import BookingManager
from booking.tests.base import SchedulingFixtures, at, live_day
from notifications.models import Notification


class NotificationTests(SchedulingFixtures, TestCase):
    def setUp(self):
        super().setUp()
        self.manager = BookingManager()
        self.day = live_day()

    def book(self, hour=9):
        return self.manager.attempt_book(self.business, self.staff, self.service, self.customer, at(self.day, hour))

    def test_email_sent_when_appointment_confirmed(self):
        appointment = self.book()

        self.assertEqual(len(mail.outbox), 1)
        self.assertIn("confirmed", mail.outbox[0].body)
        self.assertEqual(mail.outbox[0].to, [self.customer.email])
        note = Notification.objects.get()
        self.assertEqual(note.kind, Notification.APPOINTMENT_CONFIRMED)
        self.assertEqual(note.appointment_id, appointment.pk)
        self.assertTrue(note.sent)

    def test_cancellation_mentions_refund_policy(self):
        self.service.refund_policy = "partial"
        self.service.refund_percentage = 50
        self.service.save()
        appointment = self.book()

        self.manager.cancel(self.business, appointment.pk)

        note = Notification.objects.get(kind=Notification.APPOINTMENT_CANCELLED)
        self.assertIn("cancelled", note.message)
        self.assertIn("50% refund", note.message)
        self.assertEqual(len(mail.outbox), 2)

    def test_reschedule_sends_moved_and_confirmed(self):
        appointment = self.book()

        replacement = self.manager.reschedule(self.business, appointment.pk, at(self.day, 11))

        moved = Notification.objects.get(kind=Notification.APPOINTMENT_CANCELLED)
        self.assertIn("moved", moved.message)
        self.assertIn(f"#{replacement.pk}", moved.message)
        self.assertEqual(
            Notification.objects.filter(kind=Notification.APPOINTMENT_CONFIRMED, appointment=replacement).count(), 1
        )

    def test_times_are_written_in_staff_timezone(self):
        self.staff.timezone = "America/New_York"
        self.staff.save()
        self.book(hour=14)  # 09:00 or 10:00 in New York depending on DST

        body = mail.outbox[0].body
        local = at(self.day, 14).astimezone(self.staff.tz)
        self.assertIn(local.strftime("%I:%M %p"), body)

    def test_email_failure_is_recorded_not_raised(self):
        with mock.patch("notifications.services.send_mail", side_effect=SMTPException("relay down")):
            appointment = self.book()

        note = Notification.objects.get(appointment=appointment)
        self.assertFalse(note.sent)

    def test_send_reminders_once_per_appointment(self):
        soon = timezone.now() + timedelta(hours=24, minutes=10)
        # Inserted directly: the command only reads SCHEDULED rows in its window
        Appointment.objects.create(
            business=self.business,
            service=self.service,
            staff=self.staff,
            customer=self.customer,
            start_time=soon,
            end_time=soon + self.service.duration,
            blocked_until=soon + self.service.duration + self.service.buffer,
        )
        Appointment.objects.create(
            business=self.business,
            service=self.service,
            staff=self.staff,
            customer=self.customer,
            start_time=soon + timedelta(hours=5),
            end_time=soon + timedelta(hours=5, minutes=30),
            blocked_until=soon + timedelta(hours=5, minutes=40),
        )

        out = io.StringIO()
        call_command("send_reminders", "--when", "24", stdout=out)
        call_command("send_reminders", "--when", "24", stdout=out)

        self.assertEqual(Notification.objects.filter(kind=Notification.APPOINTMENT_REMINDER).count(), 1)
        self.assertIn("Sent 1 reminder(s)", out.getvalue())
        self.assertIn("Sent 0 reminder(s)", out.getvalue())
