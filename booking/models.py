# booking/models.py
#
# Purpose:
# - Core domain models for the scheduling engine.
#
# Design highlights:
# - Business: the tenant. Every other row belongs to exactly one business and
#   every engine lookup is filtered by it.
# - Customer: person who books. clean() prevents duplicates inside a business
#   by (name/email case-insensitive + phone exact).
# - Service: duration, trailing buffer, advance-booking horizon and the
#   cancellation policy (carried on events, not enforced here).
# - Staff: timezone + the services they perform. Working hours live in the
#   staff app (staff.WorkingHours / staff.WorkingHoursException).
# - Appointment:
#   • end_time = start_time + service duration
#   • blocked_until = end_time + service buffer (captured at booking time), so
#     the buffer-inclusive overlap check is a single indexed range query
#   • only status SCHEDULED occupies the staff member's calendar
#
# Notes for developers:
# - Datetimes are stored aware in UTC (USE_TZ=True). Local arithmetic is done
#   by the services with the staff member's timezone.
# - The no-overlap rule is enforced by BookingManager under a per-staff lock,
#   not by a database constraint, so it stays portable to SQLite. On PostgreSQL
#   an ExclusionConstraint over (staff, tstzrange(start_time, blocked_until))
#   filtered on status='SCHEDULED' can be added as a second line of defence.
#
from datetime import timedelta
from zoneinfo import ZoneInfo, available_timezones

from django.core.exceptions import ValidationError
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models


def validate_timezone(value):
    if value not in available_timezones():
        raise ValidationError(f"Unknown timezone: {value!r}")


# -------------------------
# Tenant
# -------------------------
class Business(models.Model):
    name = models.CharField(max_length=200)
    timezone = models.CharField(max_length=64, default="UTC", validators=[validate_timezone])
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name_plural = "businesses"

    def __str__(self):
        return self.name


# -------------------------
# Customer (person who books)
# -------------------------
class Customer(models.Model):
    """
    A customer of one business.
    - Duplicate prevention: case-insensitive match on name and email, exact
      match on phone, within the same business (see clean()).
    """
    business = models.ForeignKey(Business, on_delete=models.CASCADE, related_name="customers")
    name = models.CharField(max_length=200)
    email = models.EmailField()
    phone = models.CharField(max_length=20, blank=True)

    def __str__(self):
        return self.name

    def clean(self):
        name = (self.name or "").strip()
        email = (self.email or "").strip()
        phone = (self.phone or "").strip()

        if not name or not email:
            return

        qs = Customer.objects.filter(
            business_id=self.business_id,
            name__iexact=name,
            email__iexact=email,
            phone=phone,
        )
        if self.pk:
            qs = qs.exclude(pk=self.pk)

        if qs.exists():
            raise ValidationError(
                "A customer with the same name, email, and phone already exists."
            )


# -------------------------
# Service catalog item
# -------------------------
class Service(models.Model):
    """
    A service offered by a business.

    Rules:
    - duration_minutes must be > 0
    - buffer_minutes (idle time after each instance) must be >= 0
    - max_advance_days is a hard booking horizon, counted in staff-local days
    - cancellation policy fields are consumed by collaborators, not enforced
    """
    REFUND_FULL = "full"
    REFUND_PARTIAL = "partial"
    REFUND_NONE = "none"
    REFUND_CHOICES = [
        (REFUND_FULL, "Full"),
        (REFUND_PARTIAL, "Partial"),
        (REFUND_NONE, "None"),
    ]

    business = models.ForeignKey(Business, on_delete=models.CASCADE, related_name="services")
    name = models.CharField(max_length=200)
    description = models.TextField(blank=True)
    duration_minutes = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    buffer_minutes = models.PositiveIntegerField(default=0)
    max_advance_days = models.PositiveIntegerField(default=90)
    price = models.DecimalField(
        max_digits=8,
        decimal_places=2,
        null=True,
        blank=True,
        validators=[MinValueValidator(0)],
    )
    active = models.BooleanField(default=True)

    cancellation_allowed = models.BooleanField(default=True)
    cancellation_min_notice_hours = models.PositiveIntegerField(default=0)
    refund_policy = models.CharField(max_length=10, choices=REFUND_CHOICES, default=REFUND_FULL)
    refund_percentage = models.PositiveSmallIntegerField(
        null=True,
        blank=True,
        validators=[MaxValueValidator(100)],
    )

    def __str__(self):
        return f"{self.name} ({self.duration_minutes} min)"

    @property
    def duration(self) -> timedelta:
        return timedelta(minutes=self.duration_minutes)

    @property
    def buffer(self) -> timedelta:
        return timedelta(minutes=self.buffer_minutes)

    def cancellation_policy(self) -> dict:
        return {
            "allowed": self.cancellation_allowed,
            "min_notice_hours": self.cancellation_min_notice_hours,
            "refund_policy": self.refund_policy,
            "refund_percentage": self.refund_percentage,
        }


# -------------------------
# Staff member
# -------------------------
class Staff(models.Model):
    business = models.ForeignKey(Business, on_delete=models.CASCADE, related_name="staff")
    name = models.CharField(max_length=200)
    email = models.EmailField()
    phone = models.CharField(max_length=20, blank=True)
    timezone = models.CharField(max_length=64, default="UTC", validators=[validate_timezone])
    services = models.ManyToManyField(Service, related_name="staff", blank=True)
    active = models.BooleanField(default=True)

    class Meta:
        verbose_name_plural = "staff"
        constraints = [
            models.UniqueConstraint(fields=["business", "email"], name="uniq_staff_email_per_business"),
        ]

    def __str__(self):
        return self.name

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


# -------------------------
# Appointment
# -------------------------
class Appointment(models.Model):
    """
    A reservation of one staff member for one service instance.

    Status transitions are the only mutation path after creation
    (plus start/end/blocked_until on reschedule and timestamps).
    """
    SCHEDULED = "SCHEDULED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"
    NO_SHOW = "NO_SHOW"
    STATUS_CHOICES = [
        (SCHEDULED, "Scheduled"),
        (CANCELLED, "Cancelled"),
        (COMPLETED, "Completed"),
        (NO_SHOW, "No show"),
    ]

    business = models.ForeignKey(Business, on_delete=models.CASCADE, related_name="appointments")
    service = models.ForeignKey(Service, on_delete=models.PROTECT, related_name="appointments")
    staff = models.ForeignKey(Staff, on_delete=models.PROTECT, related_name="appointments")
    customer = models.ForeignKey(Customer, on_delete=models.PROTECT, related_name="appointments")
    start_time = models.DateTimeField()
    end_time = models.DateTimeField()
    blocked_until = models.DateTimeField(
        help_text="end_time plus the service buffer at booking time.",
    )
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default=SCHEDULED)
    notes = models.TextField(blank=True)
    series_id = models.UUIDField(null=True, blank=True, db_index=True)
    cancellation_time = models.DateTimeField(null=True, blank=True)
    cancelled_by = models.CharField(max_length=200, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["start_time"]
        indexes = [
            models.Index(fields=["staff", "status", "start_time"], name="appt_staff_status_start"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(end_time__gt=models.F("start_time")),
                name="appt_end_after_start",
            ),
            models.CheckConstraint(
                condition=models.Q(blocked_until__gte=models.F("end_time")),
                name="appt_blocked_after_end",
            ),
        ]

    def __str__(self):
        return f"{self.customer.name} → {self.service.name} on {self.start_time:%Y-%m-%d %H:%M} ({self.status})"

    @property
    def is_scheduled(self) -> bool:
        return self.status == self.SCHEDULED
