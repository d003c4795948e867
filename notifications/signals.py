# notifications/signals.py
#
# Purpose:
# - Turn engine events (booking.signals) into customer notifications.
#   * appointment_confirmed -> confirmation
#   * appointment_cancelled -> cancellation (or "moved" when rescheduled)
#   * waitlist_promoted     -> "you're booked from the waitlist"
#
# Notes:
# - Events arrive after commit, so the appointment row is already visible.
# - Uses DEFAULT_FROM_EMAIL from settings.
# - Email failures are logged by NotificationService, never raised.
#
import logging

from django.dispatch import receiver

from booking.models import Appointment
from booking.signals import appointment_cancelled, appointment_confirmed, waitlist_promoted
from notifications.services import NotificationService

logger = logging.getLogger(__name__)


def _load(appointment_id):
    try:
        return Appointment.objects.select_related("business", "customer", "service", "staff").get(pk=appointment_id)
    except Appointment.DoesNotExist:
        logger.warning("Notification skipped: appointment %s no longer exists", appointment_id)
        return None


@receiver(appointment_confirmed, dispatch_uid="notifications.appointment_confirmed")
def notify_confirmed(sender, event, **kwargs):
    appointment = _load(event.appointment_id)
    if appointment is not None:
        NotificationService().appointment_confirmed(appointment)


@receiver(appointment_cancelled, dispatch_uid="notifications.appointment_cancelled")
def notify_cancelled(sender, event, **kwargs):
    appointment = _load(event.appointment_id)
    if appointment is not None:
        NotificationService().appointment_cancelled(
            appointment,
            rescheduled_to=event.rescheduled_to,
            policy=event.cancellation_policy,
        )


@receiver(waitlist_promoted, dispatch_uid="notifications.waitlist_promoted")
def notify_promoted(sender, event, **kwargs):
    appointment = _load(event.appointment_id)
    if appointment is not None:
        NotificationService().waitlist_promoted(appointment)
