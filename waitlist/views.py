# waitlist/views.py
#
# Endpoints:
# - POST /api/waitlist/                 register a WAITING entry
# - GET  /api/waitlist/?business=ID     list entries (optionally ?status=WAITING)
# - GET  /api/waitlist/{id}/?business=ID
# - POST /api/waitlist/{id}/cancel/     WAITING -> CANCELLED
#
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from booking.exceptions import InvalidRequestError
from booking.services.booking_manager import BookingManager

from .models import WaitlistEntry
from .serializers import WaitlistCancelSerializer, WaitlistEntrySerializer, WaitlistRegisterSerializer
from .services import get_waitlist_manager


class WaitlistViewSet(viewsets.ReadOnlyModelViewSet):
    serializer_class = WaitlistEntrySerializer
    lookup_value_regex = r"\d+"

    def get_queryset(self):
        business = self.request.query_params.get("business")
        if not business:
            raise InvalidRequestError("Query parameter 'business' is required.")
        qs = WaitlistEntry.objects.filter(business_id=BookingManager.resolve_business(business))
        status_filter = self.request.query_params.get("status")
        if status_filter:
            qs = qs.filter(status=status_filter.upper())
        return qs.order_by("registered_at", "id")

    def create(self, request, *args, **kwargs):
        payload = WaitlistRegisterSerializer(data=request.data)
        payload.is_valid(raise_exception=True)
        data = payload.validated_data

        entry = get_waitlist_manager().register(
            data["business"],
            data["staff"],
            data["service"],
            data["customer"],
            data["desired_start"],
            data["desired_end"],
        )
        return Response(WaitlistEntrySerializer(entry).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=["post"])
    def cancel(self, request, pk=None):
        payload = WaitlistCancelSerializer(data=request.data)
        payload.is_valid(raise_exception=True)
        entry = get_waitlist_manager().cancel_entry(payload.validated_data["business"], pk)
        return Response(WaitlistEntrySerializer(entry).data)
