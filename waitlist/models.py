# waitlist/models.py
#
# Purpose:
# - Customers waiting for a staff member/service within a desired time range.
#
# Rules:
# - registered_at defines promotion order (oldest first; id breaks ties).
# - Only WAITING entries are considered for promotion; entries whose
#   desired_end has passed become EXPIRED.
#
from django.core.exceptions import ValidationError
from django.db import models


class WaitlistEntry(models.Model):
    WAITING = "WAITING"
    PROMOTED = "PROMOTED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"
    STATUS_CHOICES = [
        (WAITING, "Waiting"),
        (PROMOTED, "Promoted"),
        (EXPIRED, "Expired"),
        (CANCELLED, "Cancelled"),
    ]

    business = models.ForeignKey("booking.Business", on_delete=models.CASCADE, related_name="waitlist_entries")
    staff = models.ForeignKey("booking.Staff", on_delete=models.CASCADE, related_name="waitlist_entries")
    service = models.ForeignKey("booking.Service", on_delete=models.CASCADE, related_name="waitlist_entries")
    customer = models.ForeignKey("booking.Customer", on_delete=models.CASCADE, related_name="waitlist_entries")
    desired_start = models.DateTimeField()
    desired_end = models.DateTimeField()
    registered_at = models.DateTimeField()
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default=WAITING)
    appointment = models.OneToOneField(
        "booking.Appointment",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="waitlist_entry",
    )
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["registered_at", "id"]
        verbose_name_plural = "waitlist entries"
        indexes = [
            models.Index(fields=["staff", "service", "status", "registered_at"], name="waitlist_promotion_order"),
        ]

    def __str__(self):
        return f"{self.customer.name} waiting for {self.service.name} with {self.staff.name} ({self.status})"

    def clean(self):
        if self.desired_start and self.desired_end and self.desired_end <= self.desired_start:
            raise ValidationError("desired_end must be after desired_start.")
