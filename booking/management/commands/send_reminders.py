"""
send_reminders.py
-----------------
Django management command to remind customers of upcoming appointments.

Usage:
    python manage.py send_reminders --when 24
    python manage.py send_reminders --when 48 --window 60

Behavior:
- Finds SCHEDULED appointments starting between N hours from now and
  N hours + window minutes from now.
- Skips appointments that already have a reminder Notification, so the
  command can run on a schedule (cron) with overlapping windows.
- Sends through notifications.NotificationService (Notification row + email).
"""

from datetime import timedelta

from django.core.management.base import BaseCommand

from booking.models import Appointment
from booking.services.clock import SystemClock
from notifications.models import Notification
from notifications.services import NotificationService


class Command(BaseCommand):
    help = "Send appointment reminders N hours before start_time."

    def add_arguments(self, parser):
        parser.add_argument(
            "--when",
            type=int,
            default=24,
            help="Reminder lead time in hours (default 24).",
        )
        parser.add_argument(
            "--window",
            type=int,
            default=60,
            help="Width of the start-time window in minutes (default 60).",
        )

    def handle(self, *args, **options):
        hours = options["when"]
        now = SystemClock().now()
        window_start = now + timedelta(hours=hours)
        window_end = window_start + timedelta(minutes=options["window"])

        already_reminded = Notification.objects.filter(
            kind=Notification.APPOINTMENT_REMINDER,
        ).values("appointment_id")
        qs = (
            Appointment.objects.filter(
                status=Appointment.SCHEDULED,
                start_time__gte=window_start,
                start_time__lt=window_end,
            )
            .exclude(pk__in=already_reminded)
            .select_related("business", "customer", "service", "staff")
        )

        notifier = NotificationService()
        count = 0
        for appointment in qs:
            notifier.appointment_reminder(appointment, hours_before=hours)
            count += 1

        self.stdout.write(self.style.SUCCESS(f"Sent {count} reminder(s) for {hours}h window."))
