# waitlist/signals.py
#
# Purpose:
# - Hand every freed slot to the waitlist so the oldest matching waiting
#   customer gets the first chance at it.
#
# Notes:
# - booking.signals emits slot_freed after commit and after the staff lock is
#   released, so promotion is free to call BookingManager.attempt_book.
# - WaitlistManager.submit() runs inline or on its worker pool depending on
#   SCHEDULING["ASYNC_EVENTS"].
#
from django.dispatch import receiver

from booking.signals import slot_freed

from .services import get_waitlist_manager


@receiver(slot_freed, dispatch_uid="waitlist.promote_on_slot_freed")
def promote_on_slot_freed(sender, event, **kwargs):
    get_waitlist_manager().submit(event)
