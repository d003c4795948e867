# staff/models.py
#
# Purpose:
# - Weekly working-hours template and one-off exceptions per staff member.
#
# Rules:
# - WorkingHours rows are local wall-clock intervals in the staff member's
#   timezone; one weekday may hold several non-overlapping rows (e.g. a lunch
#   break is two rows).
# - WorkingHoursException rows for one (staff, date) together REPLACE the
#   template for that date. A row without times means "closed that day".
#
from django.core.exceptions import ValidationError
from django.db import models


class WorkingHours(models.Model):
    """
    Recurring weekly open interval.
    Points to booking.Staff to avoid having two Staff models.
    """
    MONDAY, TUESDAY, WEDNESDAY, THURSDAY, FRIDAY, SATURDAY, SUNDAY = range(7)
    WEEKDAY_CHOICES = [
        (MONDAY, "Monday"),
        (TUESDAY, "Tuesday"),
        (WEDNESDAY, "Wednesday"),
        (THURSDAY, "Thursday"),
        (FRIDAY, "Friday"),
        (SATURDAY, "Saturday"),
        (SUNDAY, "Sunday"),
    ]

    staff = models.ForeignKey(
        "booking.Staff",
        on_delete=models.CASCADE,
        related_name="working_hours",
    )
    weekday = models.PositiveSmallIntegerField(choices=WEEKDAY_CHOICES)
    start_time = models.TimeField()
    end_time = models.TimeField()

    class Meta:
        ordering = ["staff_id", "weekday", "start_time"]
        verbose_name_plural = "working hours"

    def __str__(self):
        return f"{self.staff.name}: {self.get_weekday_display()} {self.start_time:%H:%M}-{self.end_time:%H:%M}"

    def clean(self):
        if self.start_time is None or self.end_time is None:
            return
        if self.end_time <= self.start_time:
            raise ValidationError("end_time must be after start_time.")

        clashes = WorkingHours.objects.filter(
            staff_id=self.staff_id,
            weekday=self.weekday,
            start_time__lt=self.end_time,
            end_time__gt=self.start_time,
        )
        if self.pk:
            clashes = clashes.exclude(pk=self.pk)
        if clashes.exists():
            raise ValidationError("Working hours overlap an existing interval for this weekday.")


class WorkingHoursException(models.Model):
    """
    One-off override of the weekly template for a single date
    (holiday, blockout, or special opening hours).
    """
    staff = models.ForeignKey(
        "booking.Staff",
        on_delete=models.CASCADE,
        related_name="working_hours_exceptions",
    )
    date = models.DateField()
    start_time = models.TimeField(null=True, blank=True)
    end_time = models.TimeField(null=True, blank=True)
    reason = models.CharField(max_length=200, blank=True)

    class Meta:
        ordering = ["staff_id", "date", "start_time"]

    def __str__(self):
        if self.is_closed:
            return f"{self.staff.name}: closed on {self.date}"
        return f"{self.staff.name}: {self.date} {self.start_time:%H:%M}-{self.end_time:%H:%M}"

    @property
    def is_closed(self) -> bool:
        return self.start_time is None and self.end_time is None

    def clean(self):
        if (self.start_time is None) != (self.end_time is None):
            raise ValidationError("Provide both start_time and end_time, or neither for a closed day.")
        if not self.is_closed and self.end_time <= self.start_time:
            raise ValidationError("end_time must be after start_time.")
