from datetime import datetime, timezone as dt_timezone

from django.utils import timezone
from django.utils.dateparse import parse_datetime
from rest_framework import serializers

from .models import Appointment
from .services.recurrence import RecurrenceUnit


class AwareDateTimeField(serializers.DateTimeField):
    """
    ISO-8601 datetime that must carry an offset on the way in; always rendered
    in UTC on the way out. Naive input is rejected instead of being assumed local.
    """

    default_error_messages = {
        "naive": "Datetime must include a UTC offset (e.g. 2025-03-03T09:00:00+00:00).",
    }

    def __init__(self, **kwargs):
        kwargs.setdefault("default_timezone", dt_timezone.utc)
        super().__init__(**kwargs)

    def to_internal_value(self, value):
        if isinstance(value, str):
            try:
                parsed = parse_datetime(value.strip())
            except ValueError:
                parsed = None  # well-formed but impossible; the parent reports it
            if parsed is not None and timezone.is_naive(parsed):
                self.fail("naive")
        elif isinstance(value, datetime) and timezone.is_naive(value):
            self.fail("naive")
        return super().to_internal_value(value)


class AppointmentSerializer(serializers.ModelSerializer):
    start_time = AwareDateTimeField(read_only=True)
    end_time = AwareDateTimeField(read_only=True)
    blocked_until = AwareDateTimeField(read_only=True)
    cancellation_time = AwareDateTimeField(read_only=True)

    class Meta:
        model = Appointment
        fields = [
            "id",
            "business",
            "staff",
            "service",
            "customer",
            "start_time",
            "end_time",
            "blocked_until",
            "status",
            "notes",
            "series_id",
            "cancellation_time",
            "cancelled_by",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class BookAppointmentSerializer(serializers.Serializer):
    business = serializers.IntegerField()
    staff = serializers.IntegerField()
    service = serializers.IntegerField()
    customer = serializers.IntegerField()
    start_time = AwareDateTimeField()
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class CancelSerializer(serializers.Serializer):
    business = serializers.IntegerField()
    actor = serializers.CharField(required=False, allow_blank=True, default="", max_length=100)


class RescheduleSerializer(CancelSerializer):
    start_time = AwareDateTimeField()


class StatusChangeSerializer(serializers.Serializer):
    business = serializers.IntegerField()


class RecurringBookingSerializer(BookAppointmentSerializer):
    unit = serializers.ChoiceField(choices=RecurrenceUnit.choices)
    interval = serializers.IntegerField(min_value=1, default=1)
    count = serializers.IntegerField(min_value=1, required=False)
    until = AwareDateTimeField(required=False)

    def validate(self, attrs):
        if ("count" in attrs) == ("until" in attrs):
            raise serializers.ValidationError("Provide exactly one of 'count' or 'until'.")
        return attrs


class AvailabilityQuerySerializer(serializers.Serializer):
    business = serializers.IntegerField()
    staff = serializers.IntegerField()
    service = serializers.IntegerField()
    start = serializers.DateField()
    end = serializers.DateField()

    def validate(self, attrs):
        if attrs["end"] < attrs["start"]:
            raise serializers.ValidationError("'end' must not be before 'start'.")
        return attrs


class AvailabilitySlotSerializer(serializers.Serializer):
    start = AwareDateTimeField()
    end = AwareDateTimeField()
    occupied = serializers.BooleanField()


class OccurrenceSerializer(serializers.Serializer):
    start = AwareDateTimeField()
    ok = serializers.BooleanField()
    appointment = serializers.SerializerMethodField()
    reason = serializers.CharField(allow_null=True)
    detail = serializers.SerializerMethodField()

    def get_appointment(self, occurrence):
        return occurrence.appointment.pk if occurrence.appointment is not None else None

    def get_detail(self, occurrence):
        return occurrence.error.message if occurrence.error is not None else None
