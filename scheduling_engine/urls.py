# scheduling_engine/urls.py
#
# Purpose:
# - Project URL router.
# - JSON APIs live under /api/; liveness/readiness probes at the root.
#
from django.contrib import admin
from django.urls import include, path

from booking.views import HealthView, ReadyView

urlpatterns = [
    # Django admin
    path("admin/", admin.site.urls),

    # =====
    # API's
    # =====
    path("api/", include("booking.urls")),
    path("api/", include("waitlist.urls")),

    # Probes
    path("health", HealthView.as_view(), name="health"),
    path("ready", ReadyView.as_view(), name="ready"),
]
