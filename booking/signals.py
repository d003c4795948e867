# booking/signals.py
#
# Purpose:
# - Domain events emitted by the scheduling engine, as Django signals.
#
# Contract:
# - Sent only after the database transaction that produced them has committed
#   and after the per-staff lock is released, so slow receivers never hold up
#   a booking commit.
# - Always sent with send_robust(): a failing receiver is logged and never
#   turns a committed booking/cancellation into an error for the caller.
# - Keyword argument: event=<booking.events dataclass>.
#
# Receivers:
# - notifications.signals: records Notification rows and emails the customer.
# - waitlist.signals: promotes the next waiting customer on slot_freed.
#
import logging

from django.dispatch import Signal

logger = logging.getLogger(__name__)

appointment_confirmed = Signal()
appointment_cancelled = Signal()
slot_freed = Signal()
waitlist_promoted = Signal()


def emit(signal: Signal, sender, event) -> None:
    """Send a domain event; log (never raise) receiver failures."""
    for receiver, result in signal.send_robust(sender=sender, event=event):
        if isinstance(result, Exception):
            logger.error(
                "Receiver %r failed for %s: %s",
                receiver,
                type(event).__name__,
                result,
                exc_info=(type(result), result, result.__traceback__),
            )
