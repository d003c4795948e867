# booking/views.py
#
# Purpose:
# - JSON API over the scheduling engine: availability, appointments
#   (book/cancel/reschedule/complete/no-show), recurring series, health.
# - Views stay thin: parse with serializers, call BookingManager /
#   AvailabilityIndex, serialize. Engine errors are turned into HTTP
#   responses by booking.api_errors.scheduling_exception_handler.
#
# Tenancy:
# - Every request names its business (query param for GET, body for POST);
#   records of another business are reported as 404.
#
import logging

from django.core.cache import caches
from django.db import DatabaseError, connection
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response
from rest_framework.views import APIView

from .conf import engine_setting
from .exceptions import InvalidRequestError
from .models import Appointment
from .serializers import (
    AppointmentSerializer,
    AvailabilityQuerySerializer,
    AvailabilitySlotSerializer,
    BookAppointmentSerializer,
    CancelSerializer,
    OccurrenceSerializer,
    RecurringBookingSerializer,
    RescheduleSerializer,
    StatusChangeSerializer,
)
from .services.availability_index import AvailabilityIndex
from .services.booking_manager import BookingManager
from .services.recurrence import RecurrenceRule, book_series

logger = logging.getLogger(__name__)


# -------------------- Availability --------------------
class AvailabilityView(APIView):
    """
    GET /api/availability/?business=ID&staff=ID&service=ID&start=YYYY-MM-DD&end=YYYY-MM-DD

    Returns every generated slot in the range with an `occupied` flag.
    Times are rendered in UTC.
    """
    index = AvailabilityIndex()

    def get(self, request):
        query = AvailabilityQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        params = query.validated_data

        slots = self.index.query(
            params["staff"],
            params["service"],
            params["start"],
            params["end"],
            business=BookingManager.resolve_business(params["business"]),
        )
        return Response({
            "business": params["business"],
            "staff": params["staff"],
            "service": params["service"],
            "start": params["start"],
            "end": params["end"],
            "slots": AvailabilitySlotSerializer(slots, many=True).data,
        })


# -------------------- Appointments --------------------
class AppointmentViewSet(viewsets.ReadOnlyModelViewSet):
    """
    Endpoints:
    - GET    /api/appointments/?business=ID                 list
    - GET    /api/appointments/{id}/?business=ID            detail
    - POST   /api/appointments/                             book
    - POST   /api/appointments/{id}/cancel/                 cancel
    - POST   /api/appointments/{id}/reschedule/             move to a new start
    - POST   /api/appointments/{id}/complete/               mark completed
    - POST   /api/appointments/{id}/no-show/                mark no-show
    - POST   /api/appointments/recurring/                   book a series
    """
    serializer_class = AppointmentSerializer
    lookup_value_regex = r"\d+"
    manager = BookingManager()

    def get_queryset(self):
        business = self.request.query_params.get("business")
        if not business:
            raise InvalidRequestError("Query parameter 'business' is required.")
        business_id = BookingManager.resolve_business(business)
        qs = Appointment.objects.filter(business_id=business_id)
        for param in ("staff", "customer"):
            value = self.request.query_params.get(param)
            if value:
                if not value.isdigit():
                    raise InvalidRequestError(f"Query parameter '{param}' must be an id.")
                qs = qs.filter(**{f"{param}_id": int(value)})
        status_filter = self.request.query_params.get("status")
        if status_filter:
            qs = qs.filter(status=status_filter.upper())
        return qs.order_by("start_time", "id")

    def create(self, request, *args, **kwargs):
        payload = BookAppointmentSerializer(data=request.data)
        payload.is_valid(raise_exception=True)
        data = payload.validated_data

        appointment = self.manager.attempt_book(
            data["business"],
            data["staff"],
            data["service"],
            data["customer"],
            data["start_time"],
            notes=data["notes"],
        )
        return Response(AppointmentSerializer(appointment).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=["post"])
    def cancel(self, request, pk=None):
        payload = CancelSerializer(data=request.data)
        payload.is_valid(raise_exception=True)
        data = payload.validated_data

        appointment = self.manager.cancel(data["business"], pk, actor=data["actor"])
        return Response(AppointmentSerializer(appointment).data)

    @action(detail=True, methods=["post"])
    def reschedule(self, request, pk=None):
        """Returns the replacement appointment; the original is left CANCELLED."""
        payload = RescheduleSerializer(data=request.data)
        payload.is_valid(raise_exception=True)
        data = payload.validated_data

        replacement = self.manager.reschedule(data["business"], pk, data["start_time"], actor=data["actor"])
        return Response(AppointmentSerializer(replacement).data)

    @action(detail=True, methods=["post"])
    def complete(self, request, pk=None):
        payload = StatusChangeSerializer(data=request.data)
        payload.is_valid(raise_exception=True)
        appointment = self.manager.mark_completed(payload.validated_data["business"], pk)
        return Response(AppointmentSerializer(appointment).data)

    @action(detail=True, methods=["post"], url_path="no-show")
    def no_show(self, request, pk=None):
        payload = StatusChangeSerializer(data=request.data)
        payload.is_valid(raise_exception=True)
        appointment = self.manager.mark_no_show(payload.validated_data["business"], pk)
        return Response(AppointmentSerializer(appointment).data)

    @action(detail=False, methods=["post"])
    def recurring(self, request):
        """
        Book every occurrence independently. 201 when at least one occurrence
        was booked, 409 when none were; the body always lists every occurrence.
        """
        payload = RecurringBookingSerializer(data=request.data)
        payload.is_valid(raise_exception=True)
        data = payload.validated_data

        rule = RecurrenceRule(
            start=data["start_time"],
            unit=data["unit"],
            interval=data["interval"],
            count=data.get("count"),
            until=data.get("until"),
        )
        result = book_series(
            self.manager,
            data["business"],
            data["staff"],
            data["service"],
            data["customer"],
            rule,
            notes=data["notes"],
        )
        body = {
            "series_id": str(result.series_id),
            "booked": len(result.succeeded),
            "failed": len(result.failed),
            "partial": result.partial,
            "occurrences": OccurrenceSerializer(result.occurrences, many=True).data,
        }
        code = status.HTTP_201_CREATED if result.succeeded else status.HTTP_409_CONFLICT
        return Response(body, status=code)


# -------------------- Health --------------------
class HealthView(APIView):
    """GET /health: the process is up."""

    def get(self, request):
        return Response({"status": "ok"})


class ReadyView(APIView):
    """GET /ready: the database and the availability cache answer."""

    def get(self, request):
        checks = {}
        try:
            connection.ensure_connection()
            checks["database"] = "ok"
        except DatabaseError as e:
            logger.error("Readiness check: database unavailable: %s", e)
            checks["database"] = "unavailable"

        cache = caches[engine_setting("AVAILABILITY_CACHE_ALIAS")]
        cache.set("ready:probe", 1, timeout=5)
        checks["cache"] = "ok" if cache.get("ready:probe") == 1 else "unavailable"

        ready = all(v == "ok" for v in checks.values())
        return Response(
            {"status": "ready" if ready else "unavailable", "checks": checks},
            status=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        )
