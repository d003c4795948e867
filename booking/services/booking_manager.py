"""
booking_manager.py
------------------
Coordinates appointment creation, cancellation, rescheduling and status
changes. This is the only code path that writes Appointment rows.

Guarantee:
- For one staff member, no two SCHEDULED appointments overlap, buffer included:
  [a.start_time, a.blocked_until) ∩ [b.start_time, b.blocked_until) = ∅.

How:
- Cheap validation first (ownership, shape, horizon, working hours); these
  never touch the lock and have no side effects.
- Then the per-staff serialization scope: an in-process lock keyed by staff id
  (bounded wait -> BusyError) and, inside transaction.atomic(), a
  select_for_update() on the staff row so separate processes serialize too on
  databases that support row locks. The database wait is bounded by the same
  timeout (SQLite busy_timeout, PostgreSQL lock_timeout) and also ends in
  BusyError.
- Overlap check and write happen inside that scope; the first caller to commit
  wins, the other sees ConflictError(SLOT_TAKEN).
- Events are emitted after commit and after the lock is released.

Reschedule cancels and rebooks in one scope and one transaction: if the new
booking fails for any reason, the cancellation is rolled back with it.
"""

import logging
from contextlib import ExitStack, contextmanager
from datetime import datetime, timedelta, timezone as dt_timezone
from typing import Optional, Union

from django.db import OperationalError, connection, transaction
from django.utils import timezone

from booking import signals
from booking.events import AppointmentCancelled, AppointmentConfirmed, SlotFreed
from booking.models import Appointment, Business, Customer, Service, Staff
from staff.working_hours import WorkingHoursRegistry

from ..conf import engine_setting
from ..exceptions import (
    BusyError,
    ConflictError,
    ConflictReason,
    InvalidRequestError,
    InvalidStateError,
    NotFoundError,
)
from .availability_index import AvailabilityIndex
from .clock import SystemClock
from .locks import StaffLockArena, staff_locks

logger = logging.getLogger(__name__)


class BookingManager:
    def __init__(
        self,
        clock=None,
        registry: Optional[WorkingHoursRegistry] = None,
        index: Optional[AvailabilityIndex] = None,
        locks: Optional[StaffLockArena] = None,
    ):
        self.clock = clock or SystemClock()
        self.registry = registry or WorkingHoursRegistry()
        self.index = index or AvailabilityIndex(registry=self.registry, clock=self.clock)
        self.locks = locks or staff_locks

    # =========================
    # Booking
    # =========================
    def attempt_book(
        self,
        business: Union[Business, int],
        staff: Union[Staff, int],
        service: Union[Service, int],
        customer: Union[Customer, int],
        start_time: datetime,
        *,
        notes: str = "",
        series_id=None,
    ) -> Appointment:
        """
        Book `service` with `staff` for `customer` at `start_time`.

        Raises:
            NotFoundError: unknown reference or one belonging to another business.
            InvalidRequestError: naive/past start, inactive service, or a
                service the staff member does not perform.
            ConflictError: TOO_FAR_IN_ADVANCE, OUTSIDE_WORKING_HOURS or SLOT_TAKEN.
            BusyError: the staff member's scope could not be entered in time.
        """
        business_id = self.resolve_business(business)
        staff = self.resolve_owned(Staff, staff, business_id)
        service = self.resolve_owned(Service, service, business_id)
        customer = self.resolve_owned(Customer, customer, business_id)
        self._validate_request(staff, service, start_time)

        start, end, blocked_until = self._span(staff, service, start_time)

        with self._staff_scope(staff.pk):
            self._ensure_free(staff.pk, start, blocked_until)
            appointment = Appointment.objects.create(
                business_id=business_id,
                service=service,
                staff=staff,
                customer=customer,
                start_time=start,
                end_time=end,
                blocked_until=blocked_until,
                notes=notes,
                series_id=series_id,
            )

        logger.info(
            "Booked appointment %s: staff=%s service=%s %s-%s",
            appointment.pk, staff.pk, service.pk, start.isoformat(), end.isoformat(),
        )
        self.index.invalidate(staff, start, blocked_until)
        signals.emit(signals.appointment_confirmed, type(self), self._confirmed_event(appointment))
        return appointment

    # =========================
    # Cancellation
    # =========================
    def cancel(self, business: Union[Business, int], appointment_id: int, actor: str = "") -> Appointment:
        """
        SCHEDULED -> CANCELLED. Frees the slot and emits slot_freed.

        Raises:
            NotFoundError, InvalidStateError, BusyError
        """
        business_id = self.resolve_business(business)
        appointment = self._get_appointment(business_id, appointment_id)

        with self._staff_scope(appointment.staff_id):
            appointment = self._fresh_scheduled(appointment.pk, "cancel")
            self._mark_cancelled(appointment, actor)

        logger.info("Cancelled appointment %s (actor=%s)", appointment.pk, actor or "-")
        self.index.invalidate(appointment.staff_id, appointment.start_time, appointment.blocked_until)
        self._emit_cancelled(appointment)
        return appointment

    # =========================
    # Reschedule
    # =========================
    def reschedule(
        self,
        business: Union[Business, int],
        appointment_id: int,
        new_start: datetime,
        actor: str = "",
    ) -> Appointment:
        """
        Move an appointment to `new_start` (same staff, service and customer).

        All-or-nothing: on any failure the original stays SCHEDULED and unchanged.
        Returns the new appointment; the original ends up CANCELLED.
        """
        business_id = self.resolve_business(business)
        original = self._get_appointment(business_id, appointment_id)
        if not original.is_scheduled:
            raise InvalidStateError(f"Cannot reschedule an appointment that is {original.status}.")

        staff = original.staff
        service = original.service
        self._validate_request(staff, service, new_start)

        start, end, blocked_until = self._span(staff, service, new_start)

        with self._staff_scope(staff.pk):
            original = self._fresh_scheduled(original.pk, "reschedule")
            self._mark_cancelled(original, actor)
            self._ensure_free(staff.pk, start, blocked_until)
            replacement = Appointment.objects.create(
                business_id=business_id,
                service=service,
                staff=staff,
                customer_id=original.customer_id,
                start_time=start,
                end_time=end,
                blocked_until=blocked_until,
                notes=original.notes,
                series_id=original.series_id,
            )

        logger.info(
            "Rescheduled appointment %s -> %s (%s)",
            original.pk, replacement.pk, start.isoformat(),
        )
        self.index.invalidate(staff, original.start_time, original.blocked_until)
        self.index.invalidate(staff, start, blocked_until)
        self._emit_cancelled(original, rescheduled_to=replacement.pk)
        signals.emit(signals.appointment_confirmed, type(self), self._confirmed_event(replacement))
        return replacement

    # =========================
    # Terminal status changes
    # =========================
    def mark_completed(self, business, appointment_id: int) -> Appointment:
        return self._close(business, appointment_id, Appointment.COMPLETED)

    def mark_no_show(self, business, appointment_id: int) -> Appointment:
        return self._close(business, appointment_id, Appointment.NO_SHOW)

    def _close(self, business, appointment_id: int, status: str) -> Appointment:
        """
        SCHEDULED -> COMPLETED / NO_SHOW. When the appointment has not started
        yet its time is released to the waitlist through slot_freed.
        """
        business_id = self.resolve_business(business)
        appointment = self._get_appointment(business_id, appointment_id)
        with self._staff_scope(appointment.staff_id):
            appointment = self._fresh_scheduled(appointment.pk, status.lower())
            appointment.status = status
            appointment.save(update_fields=["status", "updated_at"])
        logger.info("Appointment %s marked %s", appointment.pk, status)
        self.index.invalidate(appointment.staff_id, appointment.start_time, appointment.blocked_until)
        if appointment.start_time > self.clock.now():
            self._emit_slot_freed(appointment)
        return appointment

    # =========================
    # Checks
    # =========================
    def _validate_request(self, staff: Staff, service: Service, start_time: datetime) -> None:
        if not isinstance(start_time, datetime) or timezone.is_naive(start_time):
            raise InvalidRequestError("start_time must be a timezone-aware datetime.")
        if not service.active:
            raise InvalidRequestError("This service is not currently available.")
        if not staff.active:
            raise InvalidRequestError("This staff member is not currently bookable.")
        if not staff.services.filter(pk=service.pk).exists():
            raise InvalidRequestError("This staff member does not perform the requested service.")
        if start_time < self.clock.now():
            raise InvalidRequestError("start_time must be in the future.")

        local_start = start_time.astimezone(staff.tz)
        horizon = self.clock.today(staff.tz) + timedelta(days=service.max_advance_days)
        if local_start.date() > horizon:
            logger.info("Rejected booking for staff %s: beyond %s", staff.pk, horizon)
            raise ConflictError(ConflictReason.TOO_FAR_IN_ADVANCE)

        local_end = self._span(staff, service, start_time)[1]
        if not self.registry.is_within_hours(staff, local_start, local_end):
            logger.info("Rejected booking for staff %s at %s: outside working hours", staff.pk, local_start)
            raise ConflictError(ConflictReason.OUTSIDE_WORKING_HOURS)

    def _ensure_free(self, staff_id: int, start: datetime, blocked_until: datetime) -> None:
        clash = (
            Appointment.objects.filter(
                staff_id=staff_id,
                status=Appointment.SCHEDULED,
                start_time__lt=blocked_until,
                blocked_until__gt=start,
            )
            .values_list("pk", flat=True)
            .first()
        )
        if clash is not None:
            logger.info("Slot taken for staff %s at %s (clashes with %s)", staff_id, start, clash)
            raise ConflictError(ConflictReason.SLOT_TAKEN)

    @staticmethod
    def _span(staff: Staff, service: Service, start_time: datetime):
        """(start, end, blocked_until) in the staff timezone, added as elapsed time."""
        start = start_time.astimezone(dt_timezone.utc)
        end = start + service.duration
        blocked_until = end + service.buffer
        return start.astimezone(staff.tz), end.astimezone(staff.tz), blocked_until.astimezone(staff.tz)

    @contextmanager
    def _staff_scope(self, staff_id: int):
        """
        In-process lock, then a transaction holding the staff row. Both waits
        are bounded by LOCK_TIMEOUT_SECONDS; running out raises BusyError.
        """
        timeout = float(engine_setting("LOCK_TIMEOUT_SECONDS"))
        with self.locks.hold(staff_id, timeout=timeout), ExitStack() as scope:
            try:
                self._bound_database_wait(timeout, scope)
                scope.enter_context(transaction.atomic())
                if connection.vendor == "postgresql":
                    with connection.cursor() as cursor:
                        cursor.execute(f"SET LOCAL lock_timeout = '{max(1, int(timeout * 1000))}ms'")
                self._lock_staff_row(staff_id)
            except OperationalError as exc:
                logger.warning("Database lock for staff %s not granted within %.2fs: %s", staff_id, timeout, exc)
                raise BusyError() from exc
            yield

    @staticmethod
    def _bound_database_wait(timeout: float, scope: ExitStack) -> None:
        # SQLite takes its write lock at BEGIN IMMEDIATE; cap the busy handler
        # for this scope and put the connection default back afterwards.
        if connection.vendor != "sqlite":
            return
        default_ms = int(float(connection.settings_dict["OPTIONS"].get("timeout", 5)) * 1000)
        with connection.cursor() as cursor:
            cursor.execute(f"PRAGMA busy_timeout = {max(1, int(timeout * 1000))}")

        def restore():
            with connection.cursor() as cursor:
                cursor.execute(f"PRAGMA busy_timeout = {default_ms}")

        scope.callback(restore)

    def _lock_staff_row(self, staff_id: int) -> None:
        # No-op on SQLite; a row lock on PostgreSQL/MySQL/Oracle.
        list(Staff.objects.select_for_update().filter(pk=staff_id).values_list("pk", flat=True))

    def _fresh_scheduled(self, appointment_id: int, operation: str) -> Appointment:
        appointment = (
            Appointment.objects.select_for_update()
            .select_related("staff", "service")
            .get(pk=appointment_id)
        )
        if not appointment.is_scheduled:
            raise InvalidStateError(f"Cannot {operation} an appointment that is {appointment.status}.")
        return appointment

    def _mark_cancelled(self, appointment: Appointment, actor: str) -> None:
        appointment.status = Appointment.CANCELLED
        appointment.cancellation_time = self.clock.now()
        appointment.cancelled_by = actor or ""
        appointment.save(update_fields=["status", "cancellation_time", "cancelled_by", "updated_at"])

    # =========================
    # Lookups
    # =========================
    @staticmethod
    def resolve_business(business) -> int:
        if isinstance(business, Business):
            return business.pk
        try:
            found = business is not None and Business.objects.filter(pk=business).exists()
        except (ValueError, TypeError):
            found = False
        if not found:
            raise NotFoundError(f"Business {business} not found.")
        return int(business)

    @staticmethod
    def resolve_owned(model, value, business_id: int):
        if isinstance(value, model):
            if value.business_id != business_id:
                raise NotFoundError(f"{model.__name__} {value.pk} not found.")
            return value
        try:
            return model.objects.get(pk=value, business_id=business_id)
        except (model.DoesNotExist, ValueError, TypeError):
            raise NotFoundError(f"{model.__name__} {value} not found.") from None

    @staticmethod
    def _get_appointment(business_id: int, appointment_id) -> Appointment:
        try:
            return Appointment.objects.select_related("staff", "service").get(
                pk=appointment_id, business_id=business_id
            )
        except (Appointment.DoesNotExist, ValueError, TypeError):
            raise NotFoundError(f"Appointment {appointment_id} not found.") from None

    # =========================
    # Events
    # =========================
    @staticmethod
    def _confirmed_event(appointment: Appointment) -> AppointmentConfirmed:
        return AppointmentConfirmed(
            business_id=appointment.business_id,
            staff_id=appointment.staff_id,
            service_id=appointment.service_id,
            customer_id=appointment.customer_id,
            appointment_id=appointment.pk,
            start=appointment.start_time,
            end=appointment.end_time,
            series_id=str(appointment.series_id) if appointment.series_id else None,
        )

    def _emit_cancelled(self, appointment: Appointment, rescheduled_to: Optional[int] = None) -> None:
        signals.emit(
            signals.appointment_cancelled,
            type(self),
            AppointmentCancelled(
                business_id=appointment.business_id,
                staff_id=appointment.staff_id,
                service_id=appointment.service_id,
                customer_id=appointment.customer_id,
                appointment_id=appointment.pk,
                start=appointment.start_time,
                end=appointment.end_time,
                cancelled_by=appointment.cancelled_by,
                rescheduled_to=rescheduled_to,
                cancellation_policy=appointment.service.cancellation_policy(),
            ),
        )
        self._emit_slot_freed(appointment)

    def _emit_slot_freed(self, appointment: Appointment) -> None:
        signals.emit(
            signals.slot_freed,
            type(self),
            SlotFreed(
                business_id=appointment.business_id,
                staff_id=appointment.staff_id,
                service_id=appointment.service_id,
                start=appointment.start_time,
                end=appointment.end_time,
                appointment_id=appointment.pk,
            ),
        )
