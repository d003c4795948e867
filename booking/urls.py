# booking/urls.py
#
# Purpose:
# - Expose the scheduling API via DRF router (mounted under /api/).
#
from django.urls import include, path
from rest_framework.routers import DefaultRouter

from .views import AppointmentViewSet, AvailabilityView

router = DefaultRouter()
router.register(r"appointments", AppointmentViewSet, basename="appointment")

urlpatterns = [
    path("availability/", AvailabilityView.as_view(), name="availability"),
    path("", include(router.urls)),
]
