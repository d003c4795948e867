"""
NotificationService
-------------------
Turns engine events into customer messages:
- a Notification row per message (kind + text + whether delivery worked)
- one email per message through Django's configured EMAIL_BACKEND
  (console in development, SMTP when EMAIL_HOST is set)

Times are written in the staff member's timezone, which is the wall clock the
customer booked against.

Delivery failures are logged and recorded as sent=False; they never propagate
back into the booking path.
"""

import logging
from datetime import datetime

from django.conf import settings
from django.core.mail import send_mail

from booking.models import Appointment, Customer

from .models import Notification

logger = logging.getLogger(__name__)

TIME_FORMAT = "%A, %B %d, %Y at %I:%M %p %Z"


def _local(appointment: Appointment, value: datetime) -> str:
    return value.astimezone(appointment.staff.tz).strftime(TIME_FORMAT)


class NotificationService:
    def appointment_confirmed(self, appointment: Appointment) -> Notification:
        body = (
            f"Hi {appointment.customer.name},\n\n"
            f"Your appointment is confirmed.\n\n"
            f"Appointment ID: {appointment.pk}\n"
            f"Service: {appointment.service.name}\n"
            f"With: {appointment.staff.name}\n"
            f"Date & Time: {_local(appointment, appointment.start_time)}\n\n"
            f"We look forward to seeing you!\n"
            f"- {appointment.business.name}"
        )
        return self._deliver(
            appointment.customer,
            Notification.APPOINTMENT_CONFIRMED,
            f"Appointment #{appointment.pk} confirmed",
            body,
            appointment=appointment,
        )

    def appointment_cancelled(self, appointment: Appointment, rescheduled_to=None, policy=None) -> Notification:
        when = _local(appointment, appointment.start_time)
        if rescheduled_to is not None:
            subject = f"Appointment #{appointment.pk} rescheduled"
            body = (
                f"Dear {appointment.customer.name},\n\n"
                f"Your appointment for {appointment.service.name} on {when} has been moved.\n"
                f"A separate confirmation for appointment #{rescheduled_to} follows.\n"
            )
        else:
            subject = f"Appointment #{appointment.pk} cancelled"
            body = (
                f"Dear {appointment.customer.name},\n\n"
                f"Your appointment for {appointment.service.name} on {when} has been cancelled.\n"
            )
            policy = policy or {}
            refund = policy.get("refund_policy")
            if refund == "full":
                body += "You will receive a full refund.\n"
            elif refund == "partial":
                body += f"You will receive a {policy.get('refund_percentage') or 0}% refund.\n"
            body += "If this was unexpected, please reply to this email.\n"

        return self._deliver(
            appointment.customer,
            Notification.APPOINTMENT_CANCELLED,
            subject,
            body,
            appointment=appointment,
        )

    def waitlist_promoted(self, appointment: Appointment) -> Notification:
        body = (
            f"Good news {appointment.customer.name}!\n\n"
            f"A spot opened up and you have been moved off the waitlist.\n\n"
            f"Appointment ID: {appointment.pk}\n"
            f"Service: {appointment.service.name}\n"
            f"With: {appointment.staff.name}\n"
            f"Date & Time: {_local(appointment, appointment.start_time)}\n\n"
            f"If you can no longer make it, please cancel so the next person can have it."
        )
        return self._deliver(
            appointment.customer,
            Notification.WAITLIST_PROMOTED,
            "You're booked from the waitlist",
            body,
            appointment=appointment,
        )

    def appointment_reminder(self, appointment: Appointment, hours_before: int) -> Notification:
        body = (
            f"Hi {appointment.customer.name},\n\n"
            f"This is a reminder of your appointment in about {hours_before} hours.\n"
            f"Service: {appointment.service.name}\n"
            f"With: {appointment.staff.name}\n"
            f"Date & Time: {_local(appointment, appointment.start_time)}\n"
        )
        return self._deliver(
            appointment.customer,
            Notification.APPOINTMENT_REMINDER,
            f"Reminder: appointment #{appointment.pk}",
            body,
            appointment=appointment,
        )

    # -------------------- transport --------------------
    def _deliver(self, customer: Customer, kind: str, subject: str, body: str, appointment=None) -> Notification:
        sent = self._send(subject, body, customer.email)
        return Notification.objects.create(
            customer=customer,
            appointment=appointment,
            kind=kind,
            message=body,
            sent=sent,
        )

    def _send(self, subject: str, body: str, to_email: str) -> bool:
        if not to_email:
            return False
        try:
            send_mail(
                subject=subject,
                message=body,
                from_email=settings.DEFAULT_FROM_EMAIL,
                recipient_list=[to_email],
                fail_silently=False,  # raise so we can log; caught below
            )
        except Exception:
            logger.exception("Email send failed to %s (%s)", to_email, subject)
            return False
        return True
