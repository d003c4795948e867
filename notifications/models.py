# notifications/models.py
#
# Purpose:
# - Record messages sent to customers (confirmation/cancellation/promotion/reminder).
#
# Design:
# - FK to booking.Customer; appointment is kept nullable so the record
#   survives if the appointment row is ever removed.
# - 'sent' indicates delivery attempt result.
#
from django.db import models


class Notification(models.Model):
    APPOINTMENT_CONFIRMED = "appointment_confirmed"
    APPOINTMENT_CANCELLED = "appointment_cancelled"
    WAITLIST_PROMOTED = "waitlist_promoted"
    APPOINTMENT_REMINDER = "appointment_reminder"
    KIND_CHOICES = [
        (APPOINTMENT_CONFIRMED, "Appointment confirmed"),
        (APPOINTMENT_CANCELLED, "Appointment cancelled"),
        (WAITLIST_PROMOTED, "Waitlist promoted"),
        (APPOINTMENT_REMINDER, "Appointment reminder"),
    ]

    customer = models.ForeignKey("booking.Customer", on_delete=models.CASCADE, related_name="notifications")
    appointment = models.ForeignKey(
        "booking.Appointment",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="notifications",
    )
    kind = models.CharField(max_length=32, choices=KIND_CHOICES)
    message = models.TextField()
    created_at = models.DateTimeField(auto_now_add=True)
    sent = models.BooleanField(default=False)

    class Meta:
        ordering = ["-created_at", "-id"]

    def __str__(self) -> str:
        label = getattr(self.customer, "name", None) or getattr(self.customer, "email", "customer")
        return f"{self.get_kind_display()} to {label} at {self.created_at:%Y-%m-%d %H:%M}"
