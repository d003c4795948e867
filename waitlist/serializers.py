from rest_framework import serializers

from booking.serializers import AwareDateTimeField

from .models import WaitlistEntry


class WaitlistEntrySerializer(serializers.ModelSerializer):
    desired_start = AwareDateTimeField(read_only=True)
    desired_end = AwareDateTimeField(read_only=True)
    registered_at = AwareDateTimeField(read_only=True)

    class Meta:
        model = WaitlistEntry
        fields = [
            "id",
            "business",
            "staff",
            "service",
            "customer",
            "desired_start",
            "desired_end",
            "registered_at",
            "status",
            "appointment",
            "updated_at",
        ]
        read_only_fields = fields


class WaitlistRegisterSerializer(serializers.Serializer):
    business = serializers.IntegerField()
    staff = serializers.IntegerField()
    service = serializers.IntegerField()
    customer = serializers.IntegerField()
    desired_start = AwareDateTimeField()
    desired_end = AwareDateTimeField()

    def validate(self, attrs):
        if attrs["desired_end"] <= attrs["desired_start"]:
            raise serializers.ValidationError("'desired_end' must be after 'desired_start'.")
        return attrs


class WaitlistCancelSerializer(serializers.Serializer):
    business = serializers.IntegerField()
