"""
services.py
-----------
WaitlistManager: registers waiting customers and promotes them when a
matching slot frees up.

Promotion pass for one SlotFreed{staff, service, [start, end)}:
1) expire WAITING entries whose desired range has already ended
2) walk WAITING entries for that staff/service whose desired range intersects
   the freed interval, oldest registration first
3) attempt_book at the freed start on the entry's behalf
   - success   -> PROMOTED (appointment linked), waitlist_promoted emitted, stop
   - conflict  -> entry stays WAITING, try the next one
   - busy      -> stop; the slot stays bookable directly
4) if the entry was cancelled while its booking was being made, the booking
   is released again so the slot goes to the next customer

submit() is what the slot_freed receiver calls: it runs the pass on a small
background pool when SCHEDULING["ASYNC_EVENTS"] is true, so the cancelling
caller never waits on promotion.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from datetime import datetime
from typing import List, Optional

from django.db import close_old_connections, connection
from django.utils import timezone

from booking import signals
from booking.conf import engine_setting
from booking.events import SlotFreed, WaitlistPromoted
from booking.exceptions import (
    BusyError,
    ConflictError,
    InvalidRequestError,
    InvalidStateError,
    NotFoundError,
)
from booking.models import Customer, Service, Staff
from booking.services.booking_manager import BookingManager
from booking.services.clock import SystemClock

from .models import WaitlistEntry

logger = logging.getLogger(__name__)

PROMOTION_ACTOR = "waitlist"


class WaitlistManager:
    def __init__(self, booking_manager: Optional[BookingManager] = None, clock=None):
        self.clock = clock or (booking_manager.clock if booking_manager else SystemClock())
        self.booking_manager = booking_manager or BookingManager(clock=self.clock)
        self._executor: Optional[ThreadPoolExecutor] = None
        self._pending: List[Future] = []
        self._guard = threading.Lock()

    # -------------------- registration --------------------
    def register(self, business, staff, service, customer, desired_start: datetime, desired_end: datetime) -> WaitlistEntry:
        bm = self.booking_manager
        business_id = bm.resolve_business(business)
        staff = bm.resolve_owned(Staff, staff, business_id)
        service = bm.resolve_owned(Service, service, business_id)
        customer = bm.resolve_owned(Customer, customer, business_id)

        for value in (desired_start, desired_end):
            if not isinstance(value, datetime) or timezone.is_naive(value):
                raise InvalidRequestError("Desired range must use timezone-aware datetimes.")
        if desired_end <= desired_start:
            raise InvalidRequestError("desired_end must be after desired_start.")
        if desired_end <= self.clock.now():
            raise InvalidRequestError("Desired range is already in the past.")
        if not staff.services.filter(pk=service.pk).exists():
            raise InvalidRequestError("This staff member does not perform the requested service.")

        entry = WaitlistEntry.objects.create(
            business_id=business_id,
            staff=staff,
            service=service,
            customer=customer,
            desired_start=desired_start,
            desired_end=desired_end,
            registered_at=self.clock.now(),
        )
        logger.info("Waitlist entry %s registered for staff %s service %s", entry.pk, staff.pk, service.pk)
        return entry

    def cancel_entry(self, business, entry_id) -> WaitlistEntry:
        business_id = self.booking_manager.resolve_business(business)
        try:
            entry = WaitlistEntry.objects.get(pk=entry_id, business_id=business_id)
        except (WaitlistEntry.DoesNotExist, ValueError, TypeError):
            raise NotFoundError(f"Waitlist entry {entry_id} not found.") from None

        updated = WaitlistEntry.objects.filter(pk=entry.pk, status=WaitlistEntry.WAITING).update(
            status=WaitlistEntry.CANCELLED, updated_at=self.clock.now()
        )
        entry.refresh_from_db()
        if not updated:
            raise InvalidStateError(f"Cannot cancel a waitlist entry that is {entry.status}.")
        return entry

    def expire_stale(self, now: Optional[datetime] = None, **filters) -> int:
        now = now or self.clock.now()
        count = WaitlistEntry.objects.filter(
            status=WaitlistEntry.WAITING,
            desired_end__lte=now,
            **filters,
        ).update(status=WaitlistEntry.EXPIRED, updated_at=now)
        if count:
            logger.info("Expired %d waitlist entr%s", count, "y" if count == 1 else "ies")
        return count

    # -------------------- promotion --------------------
    def submit(self, event: SlotFreed):
        """Run a promotion pass for `event`, in the background when configured to."""
        if not engine_setting("ASYNC_EVENTS"):
            return self.handle_slot_freed(event)

        future = self._pool().submit(self._promote_in_worker, event)
        with self._guard:
            self._pending = [f for f in self._pending if not f.done()]
            self._pending.append(future)
        return future

    def wait_for_pending(self, timeout: Optional[float] = None) -> None:
        with self._guard:
            pending = list(self._pending)
        wait(pending, timeout=timeout)

    def handle_slot_freed(self, event: SlotFreed) -> Optional[WaitlistEntry]:
        self.expire_stale(staff_id=event.staff_id, service_id=event.service_id)

        candidates = WaitlistEntry.objects.filter(
            business_id=event.business_id,
            staff_id=event.staff_id,
            service_id=event.service_id,
            status=WaitlistEntry.WAITING,
            desired_start__lt=event.end,
            desired_end__gt=event.start,
        ).order_by("registered_at", "id")

        for entry in candidates:
            try:
                appointment = self.booking_manager.attempt_book(
                    entry.business_id,
                    entry.staff_id,
                    entry.service_id,
                    entry.customer_id,
                    event.start,
                    notes=f"Promoted from waitlist entry #{entry.pk}",
                )
            except ConflictError as exc:
                logger.info("Waitlist entry %s not promoted (%s); trying next", entry.pk, exc.reason.value)
                continue
            except (InvalidRequestError, NotFoundError) as exc:
                logger.info("Waitlist entry %s not promoted: %s", entry.pk, exc)
                continue
            except BusyError:
                logger.warning("Waitlist promotion for staff %s stopped: calendar busy", event.staff_id)
                return None

            promoted = WaitlistEntry.objects.filter(pk=entry.pk, status=WaitlistEntry.WAITING).update(
                status=WaitlistEntry.PROMOTED,
                appointment=appointment,
                updated_at=self.clock.now(),
            )
            if not promoted:
                # Entry left WAITING while we were booking for it: give the slot back.
                logger.info("Waitlist entry %s changed during promotion; releasing %s", entry.pk, appointment.pk)
                self.booking_manager.cancel(entry.business_id, appointment.pk, actor=PROMOTION_ACTOR)
                return None

            entry.refresh_from_db()
            logger.info("Waitlist entry %s promoted to appointment %s", entry.pk, appointment.pk)
            signals.emit(
                signals.waitlist_promoted,
                type(self),
                WaitlistPromoted(
                    business_id=entry.business_id,
                    staff_id=entry.staff_id,
                    service_id=entry.service_id,
                    customer_id=entry.customer_id,
                    entry_id=entry.pk,
                    appointment_id=appointment.pk,
                    start=appointment.start_time,
                    end=appointment.end_time,
                ),
            )
            return entry
        return None

    def _promote_in_worker(self, event: SlotFreed):
        close_old_connections()
        try:
            return self.handle_slot_freed(event)
        except Exception:
            logger.exception("Waitlist promotion failed for staff %s", event.staff_id)
            raise
        finally:
            connection.close()

    def _pool(self) -> ThreadPoolExecutor:
        with self._guard:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=int(engine_setting("WAITLIST_WORKERS")),
                    thread_name_prefix="waitlist",
                )
            return self._executor


_default_manager: Optional[WaitlistManager] = None
_default_guard = threading.Lock()


def get_waitlist_manager() -> WaitlistManager:
    global _default_manager
    with _default_guard:
        if _default_manager is None:
            _default_manager = WaitlistManager()
        return _default_manager
